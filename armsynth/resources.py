"""Resource nodes.

``Resource`` is the interface the synthesis pipeline consumes from resource
types. Concrete types set the class attributes and implement ``serialize()``;
``GenericResource`` covers arbitrary provider types by taking them as
constructor arguments.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .construct import Capability, Node
from .naming import prefix_for_type
from .references import format_reference
from .scope import DeploymentScope
from .utils import to_compact_json
from .validation.issues import ValidationIssue

logger = logging.getLogger(__name__)

ResourceTarget = Union["Resource", str]


def _logical_id_of(target: ResourceTarget) -> str:
    if isinstance(target, Resource):
        return target.logical_id
    return target


class Resource(Node, ABC):
    """A deployable resource declared in the construct tree.

    Subclasses define:
        provider_type: e.g. 'Microsoft.Storage/storageAccounts'
        api_version: ARM API version used for the resource and its references
        deployment_scope: scope the resource deploys at (default resourceGroup)
        name_prefix: naming prefix; derived from the provider type when None
        emits_location: whether the resource body carries a location
    """

    capabilities = frozenset({Capability.RESOURCE})

    provider_type: str = ""
    api_version: str = ""
    deployment_scope: DeploymentScope = DeploymentScope.RESOURCE_GROUP
    name_prefix: Optional[str] = None
    emits_location: bool = True

    def __init__(
        self,
        scope: Node,
        node_id: str,
        *,
        name: Optional[str] = None,
        location: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
        depends_on: Optional[Iterable[ResourceTarget]] = None,
        co_locate_with: Optional[ResourceTarget] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(scope, node_id, metadata)
        self.declared_name = name
        self.location = location
        self.tags: Dict[str, str] = dict(tags or {})
        self._depends_on: List[ResourceTarget] = list(depends_on or [])
        self._co_locate_with = co_locate_with

    @property
    def logical_id(self) -> str:
        return self.path

    @property
    def prefix(self) -> str:
        return self.name_prefix or prefix_for_type(self.provider_type)

    def ref(self, attribute: str = "id") -> str:
        """Return a placeholder other resources embed to refer to this one."""
        return format_reference(self.logical_id, attribute)

    def add_dependency(self, target: ResourceTarget) -> None:
        self._depends_on.append(target)

    def co_locate(self, target: ResourceTarget) -> None:
        self._co_locate_with = target

    def depends_on_logical_ids(self) -> List[str]:
        """Explicitly declared dependencies, in declaration order."""
        return [_logical_id_of(target) for target in self._depends_on]

    def co_location_requirement(self) -> Optional[str]:
        if self._co_locate_with is None:
            return None
        return _logical_id_of(self._co_locate_with)

    @abstractmethod
    def serialize(self) -> Dict[str, Any]:
        """Return the type-specific part of the resource body.

        The collector adds ``type``, ``apiVersion``, ``name``, ``location``
        and ``tags``; everything returned here is merged on top. Reference
        placeholders may appear in any string value.
        """

    def validate(self, resolved_name: Optional[str] = None) -> List[ValidationIssue]:
        """Type-specific checks; the base class has none.

        Args:
            resolved_name: Name the collector resolved for this resource, or
                None when naming failed
        """
        return []

    def estimate_size_bytes(self, body: Mapping[str, Any]) -> int:
        """Estimated contribution to the template size, in bytes."""
        return len(to_compact_json(body).encode("utf-8"))


class GenericResource(Resource):
    """A resource of any provider type described by its raw properties.

    Args:
        scope: Parent node
        node_id: Id unique among the parent's children
        provider_type: Provider type, e.g. 'Microsoft.KeyVault/vaults'
        api_version: ARM API version
        properties: Resource ``properties`` object
        deployment_scope: Scope the resource deploys at
        name_prefix: Naming prefix; derived from the provider type when omitted
        sku: Optional ``sku`` object
        kind: Optional ``kind`` value
        size_bytes: Fixed size estimate overriding the JSON length
        max_name_length: Resolved names longer than this are reported as errors
        include_location: Whether the body carries a location
    """

    def __init__(
        self,
        scope: Node,
        node_id: str,
        provider_type: str,
        api_version: str,
        properties: Optional[Mapping[str, Any]] = None,
        *,
        deployment_scope: DeploymentScope = DeploymentScope.RESOURCE_GROUP,
        name_prefix: Optional[str] = None,
        sku: Optional[Mapping[str, Any]] = None,
        kind: Optional[str] = None,
        size_bytes: Optional[int] = None,
        max_name_length: Optional[int] = None,
        include_location: bool = True,
        **kwargs: Any,
    ) -> None:
        self.provider_type = provider_type
        self.api_version = api_version
        self.deployment_scope = DeploymentScope(deployment_scope)
        self.name_prefix = name_prefix
        self.emits_location = include_location
        self.properties: Dict[str, Any] = dict(properties or {})
        self.sku = dict(sku) if sku else None
        self.kind = kind
        self.size_bytes = size_bytes
        self.max_name_length = max_name_length
        super().__init__(scope, node_id, **kwargs)

    def serialize(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if self.sku:
            body["sku"] = self.sku
        if self.kind:
            body["kind"] = self.kind
        if self.properties:
            body["properties"] = self.properties
        return body

    def validate(self, resolved_name: Optional[str] = None) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        if not self.api_version:
            issues.append(
                ValidationIssue.error(
                    self.logical_id,
                    f"No API version declared for {self.provider_type}",
                    code="MISSING_API_VERSION",
                )
            )
        name = resolved_name or self.declared_name
        if self.max_name_length and name and len(name) > self.max_name_length:
            issues.append(
                ValidationIssue.error(
                    self.logical_id,
                    f"Name '{name}' exceeds {self.max_name_length} characters",
                    code="NAME_TOO_LONG",
                )
            )
        return issues

    def estimate_size_bytes(self, body: Mapping[str, Any]) -> int:
        if self.size_bytes is not None:
            return self.size_bytes
        return super().estimate_size_bytes(body)


__all__ = ["GenericResource", "Resource"]
