"""Root and stack nodes that provide deployment scope and naming context.

Stacks carry no resources of their own. They expose capabilities
(``SUBSCRIPTION``, ``RESOURCE_GROUP``, ...) that resources find through
ancestor lookup, and they supply the naming fields their descendants inherit.
"""

import logging
import re
from typing import Any, Dict, Optional, Union

from .construct import Capability, Node, RootNode
from .scope import Geography

logger = logging.getLogger(__name__)

InstanceValue = Union[int, str]
GeographyValue = Union[str, Geography]

_KEBAB_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|[_\s]+")


def _naming_overrides(
    organization: Optional[str] = None,
    project: Optional[str] = None,
    environment: Optional[str] = None,
    geography: Optional[GeographyValue] = None,
    instance: Optional[InstanceValue] = None,
) -> Dict[str, Any]:
    """Normalize the naming fields a stack supplies to its descendants."""
    if isinstance(instance, int):
        instance = f"{instance:02d}"
    return {
        "organization": organization,
        "project": project,
        "environment": environment,
        "geography": Geography.from_value(geography) if geography else None,
        "instance": instance,
    }


def kebab_case(value: str) -> str:
    """Convert an id such as 'PaymentsApp' to 'payments-app'."""
    return _KEBAB_BOUNDARY.sub("-", value).strip("-").lower()


class App(RootNode):
    """Root of a construct tree.

    The App owns the declaration registry for its tree and may supply
    tenant-wide naming defaults.

    Example:
        app = App("Payments", organization="acme", project="pay")
        sub = SubscriptionStack(app, "Prod", subscription_id="0000...",
                                environment="prod", geography="eastus", instance=1)
    """

    capabilities = frozenset(
        {Capability.ROOT, Capability.NAMING_CONTEXT, Capability.TENANT}
    )

    def __init__(
        self,
        app_id: str = "App",
        *,
        organization: Optional[str] = None,
        project: Optional[str] = None,
        environment: Optional[str] = None,
        geography: Optional[GeographyValue] = None,
        instance: Optional[InstanceValue] = None,
        tenant_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(app_id, metadata)
        self._overrides = _naming_overrides(
            organization, project, environment, geography, instance
        )
        self._overrides["tenant_id"] = tenant_id

    @property
    def stack_name(self) -> str:
        return kebab_case(self.node_id)

    def context_overrides(self) -> Dict[str, Any]:
        return dict(self._overrides)


class ManagementGroupStack(Node):
    """Deploys its resources at management-group scope."""

    capabilities = frozenset({Capability.MANAGEMENT_GROUP, Capability.NAMING_CONTEXT})

    def __init__(
        self,
        scope: Node,
        node_id: str,
        management_group_id: str,
        *,
        organization: Optional[str] = None,
        project: Optional[str] = None,
        environment: Optional[str] = None,
        geography: Optional[GeographyValue] = None,
        instance: Optional[InstanceValue] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(scope, node_id, metadata)
        self.management_group_id = management_group_id
        self._overrides = _naming_overrides(
            organization, project, environment, geography, instance
        )
        self._overrides["management_group_id"] = management_group_id

    def context_overrides(self) -> Dict[str, Any]:
        return dict(self._overrides)


class SubscriptionStack(Node):
    """Deploys its resources at subscription scope and hosts resource groups."""

    capabilities = frozenset({Capability.SUBSCRIPTION, Capability.NAMING_CONTEXT})

    def __init__(
        self,
        scope: Node,
        node_id: str,
        subscription_id: str,
        *,
        organization: Optional[str] = None,
        project: Optional[str] = None,
        environment: Optional[str] = None,
        geography: Optional[GeographyValue] = None,
        instance: Optional[InstanceValue] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(scope, node_id, metadata)
        self.subscription_id = subscription_id
        self._overrides = _naming_overrides(
            organization, project, environment, geography, instance
        )
        self._overrides["subscription_id"] = subscription_id

    def context_overrides(self) -> Dict[str, Any]:
        return dict(self._overrides)


class ResourceGroupStack(Node):
    """Deploys its resources into one resource group.

    When ``resource_group_name`` is omitted the name is generated by the
    naming resolver with the ``rg`` prefix during collection.
    """

    capabilities = frozenset({Capability.RESOURCE_GROUP, Capability.NAMING_CONTEXT})

    name_prefix = "rg"
    provider_type = "Microsoft.Resources/resourceGroups"

    def __init__(
        self,
        scope: Node,
        node_id: str,
        resource_group_name: Optional[str] = None,
        *,
        organization: Optional[str] = None,
        project: Optional[str] = None,
        environment: Optional[str] = None,
        geography: Optional[GeographyValue] = None,
        instance: Optional[InstanceValue] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(scope, node_id, metadata)
        self.resource_group_name = resource_group_name
        self._overrides = _naming_overrides(
            organization, project, environment, geography, instance
        )
        self._overrides["resource_group"] = resource_group_name

    def context_overrides(self) -> Dict[str, Any]:
        return dict(self._overrides)


__all__ = [
    "App",
    "ManagementGroupStack",
    "ResourceGroupStack",
    "SubscriptionStack",
    "kebab_case",
]
