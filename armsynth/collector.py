"""Resource descriptor collection.

One pre-order walk over the construct tree. A top-down pre-pass first
resolves the ScopeContext of every node once, storing it by walk position;
each resource is then resolved against that arena instead of walking its
ancestors again.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from .construct import Capability, Node, find_ancestor, walk
from .dependency_graph import DependencyEdge, EdgeKind
from .exceptions import DeclarationError, NamingError, ScopeResolutionError
from .naming import NamingResolver
from .references import iter_references
from .resources import Resource
from .scope import DeploymentScope, ScopeContext, ScopeKey
from .stacks import ResourceGroupStack
from .utils import freeze_json
from .validation.issues import ValidationIssue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceDescriptor:
    """Immutable snapshot of one resource, produced once during collection."""

    logical_id: str
    """Path of node ids below the root, e.g. 'Prod/Data/LedgerStorage'"""

    provider_type: str
    api_version: str
    deployment_scope: DeploymentScope
    scope_key: ScopeKey

    declared_name: str
    """Resolved resource name; empty when naming failed"""

    dependencies: FrozenSet[str]
    size_estimate_bytes: int
    co_location: Optional[str]

    serialized_body: Mapping[str, Any]
    """Full resource body as a deep-frozen JSON value"""

    declaration_index: int
    location: Optional[str] = None
    parent_logical_id: Optional[str] = None
    """Nearest enclosing resource, for child resources such as subnets"""


@dataclass
class CollectionResult:
    """Descriptors in declaration order plus everything learned on the way."""

    descriptors: List[ResourceDescriptor] = field(default_factory=list)
    edges: List[DependencyEdge] = field(default_factory=list)
    issues: List[ValidationIssue] = field(default_factory=list)
    resources: Dict[str, Resource] = field(default_factory=dict)

    @property
    def by_id(self) -> Dict[str, ResourceDescriptor]:
        return {descriptor.logical_id: descriptor for descriptor in self.descriptors}

    def __len__(self) -> int:
        return len(self.descriptors)


class ResourceCollector:
    """Walks a construct tree and materializes one descriptor per resource."""

    def __init__(self, naming: Optional[NamingResolver] = None) -> None:
        self.naming = naming or NamingResolver()

    def collect(self, root: Node) -> CollectionResult:
        """Collect descriptors for every resource below ``root``.

        Raises:
            ScopeResolutionError: If a resource has no ancestor providing its
                deployment scope
            DeclarationError: If a resource body is not a JSON value
        """
        result = CollectionResult()
        nodes = list(walk(root))
        contexts = self._resolve_contexts(nodes, result.issues)
        registry = root.registry

        for position, node in enumerate(nodes):
            if not isinstance(node, Resource):
                continue
            index = registry.index_of(node) if registry is not None else position
            descriptor = self._describe(node, contexts[position], index, result)
            result.descriptors.append(descriptor)
            result.resources[descriptor.logical_id] = node
            logger.debug(
                f"Collected {descriptor.logical_id} ({descriptor.provider_type}, "
                f"{descriptor.size_estimate_bytes} bytes)"
            )

        # Declaration order, not walk order
        result.descriptors.sort(key=lambda d: d.declaration_index)
        logger.info(
            f"Collected {len(result.descriptors)} resources with "
            f"{len(result.edges)} dependency edges"
        )
        return result

    def _resolve_contexts(
        self, nodes: List[Node], issues: List[ValidationIssue]
    ) -> List[ScopeContext]:
        """Resolve every node's context top-down, indexed by walk position."""
        contexts: List[ScopeContext] = []
        positions: Dict[int, int] = {}
        for position, node in enumerate(nodes):
            positions[id(node)] = position
            parent = node.parent
            if parent is not None and id(parent) in positions:
                inherited = contexts[positions[id(parent)]]
            else:
                inherited = ScopeContext()
            context = inherited.merged(node.context_overrides())

            if isinstance(node, ResourceGroupStack) and not node.resource_group_name:
                context = self._generate_resource_group_name(node, context, issues)
            contexts.append(context)
        return contexts

    def _generate_resource_group_name(
        self, node: ResourceGroupStack, context: ScopeContext, issues: List[ValidationIssue]
    ) -> ScopeContext:
        try:
            name = self.naming.resolve(
                node,
                node.name_prefix,
                context=context,
                provider_type=node.provider_type,
            )
        except NamingError as e:
            issues.append(ValidationIssue.error(node.path, e.message, code=e.error_code))
            # Do not inherit an enclosing group's name
            return replace(context, resource_group=None)
        return context.merged({"resource_group": name})

    def _describe(
        self,
        resource: Resource,
        context: ScopeContext,
        declaration_index: int,
        result: CollectionResult,
    ) -> ResourceDescriptor:
        logical_id = resource.logical_id
        scope_key = self._resolve_scope(resource, context)

        try:
            name = self.naming.resolve(
                resource,
                resource.prefix,
                context=context,
                provider_type=resource.provider_type,
                declared_name=resource.declared_name,
            )
        except NamingError as e:
            result.issues.append(
                ValidationIssue.error(logical_id, e.message, code=e.error_code)
            )
            name = ""

        body: Dict[str, Any] = {
            "type": resource.provider_type,
            "apiVersion": resource.api_version,
            "name": name,
        }
        location = resource.location or context.location
        if resource.emits_location and location:
            body["location"] = location
        if resource.tags:
            body["tags"] = dict(resource.tags)
        body.update(resource.serialize())

        try:
            frozen_body = freeze_json(body)
        except TypeError as e:
            raise DeclarationError(
                f"Resource '{logical_id}' serialized to a non-JSON value: {e}",
                node_path=logical_id,
                cause=e,
            ) from e

        parent_resource = (
            find_ancestor(resource.parent, Capability.RESOURCE)
            if resource.parent is not None
            else None
        )
        parent_logical_id = parent_resource.path if parent_resource is not None else None
        dependencies = self._collect_edges(resource, parent_logical_id, frozen_body, result)

        return ResourceDescriptor(
            logical_id=logical_id,
            provider_type=resource.provider_type,
            api_version=resource.api_version,
            deployment_scope=resource.deployment_scope,
            scope_key=scope_key,
            declared_name=name,
            dependencies=frozenset(dependencies),
            size_estimate_bytes=resource.estimate_size_bytes(frozen_body),
            co_location=resource.co_location_requirement(),
            serialized_body=frozen_body,
            declaration_index=declaration_index,
            location=location if resource.emits_location else None,
            parent_logical_id=parent_logical_id,
        )

    def _resolve_scope(self, resource: Resource, context: ScopeContext) -> ScopeKey:
        scope = resource.deployment_scope
        required = scope.required_capability
        if required is not None and find_ancestor(resource, required) is None:
            raise ScopeResolutionError(
                f"Resource '{resource.logical_id}' deploys at {scope.value} scope "
                f"but has no ancestor providing it",
                deployment_scope=scope.value,
                node_path=resource.logical_id,
            )
        if scope is DeploymentScope.RESOURCE_GROUP and not context.subscription_id:
            raise ScopeResolutionError(
                f"Resource group of '{resource.logical_id}' is not inside a subscription",
                deployment_scope=scope.value,
                node_path=resource.logical_id,
            )
        return ScopeKey.for_scope(scope, context)

    def _collect_edges(
        self,
        resource: Resource,
        parent_logical_id: Optional[str],
        body: Mapping[str, Any],
        result: CollectionResult,
    ) -> List[str]:
        source = resource.logical_id
        targets: List[str] = []

        def add(target: str, kind: EdgeKind) -> None:
            if target in targets:
                return
            targets.append(target)
            result.edges.append(DependencyEdge(source, target, kind))

        for target in resource.depends_on_logical_ids():
            add(target, EdgeKind.EXPLICIT)

        if parent_logical_id is not None:
            add(parent_logical_id, EdgeKind.IMPLICIT_PARENT)

        for target, _attribute in iter_references(body):
            if target != source:
                add(target, EdgeKind.IMPLICIT_REFERENCE)
        return targets


__all__ = ["CollectionResult", "ResourceCollector", "ResourceDescriptor"]
