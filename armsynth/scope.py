"""Deployment scopes, geographies and resolved scope context.

A ScopeContext is never stored on a node up front. It is resolved from the
fields supplied by a node's ancestors, nearest ancestor winning per field.
"""

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .construct import Capability, Node


class DeploymentScope(str, Enum):
    """ARM deployment scopes, outermost first."""

    TENANT = "tenant"
    MANAGEMENT_GROUP = "managementGroup"
    SUBSCRIPTION = "subscription"
    RESOURCE_GROUP = "resourceGroup"

    @property
    def required_capability(self) -> Optional[Capability]:
        """Capability an ancestor must expose for a resource at this scope."""
        return _SCOPE_CAPABILITIES[self]

    @property
    def schema(self) -> str:
        return _SCOPE_SCHEMAS[self]


_SCOPE_CAPABILITIES = {
    DeploymentScope.TENANT: None,
    DeploymentScope.MANAGEMENT_GROUP: Capability.MANAGEMENT_GROUP,
    DeploymentScope.SUBSCRIPTION: Capability.SUBSCRIPTION,
    DeploymentScope.RESOURCE_GROUP: Capability.RESOURCE_GROUP,
}

_SCOPE_SCHEMAS = {
    DeploymentScope.TENANT: "https://schema.management.azure.com/schemas/2019-08-01/tenantDeploymentTemplate.json#",
    DeploymentScope.MANAGEMENT_GROUP: "https://schema.management.azure.com/schemas/2019-08-01/managementGroupDeploymentTemplate.json#",
    DeploymentScope.SUBSCRIPTION: "https://schema.management.azure.com/schemas/2018-05-01/subscriptionDeploymentTemplate.json#",
    DeploymentScope.RESOURCE_GROUP: "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#",
}


@dataclass(frozen=True)
class Geography:
    """An Azure region with the short abbreviation used in resource names."""

    location: str
    abbreviation: str

    # Azure region abbreviations for common regions
    ABBREVIATIONS = {
        # US
        "eastus": "eus",
        "eastus2": "eus2",
        "westus": "wus",
        "westus2": "wus2",
        "westus3": "wus3",
        "centralus": "cus",
        "northcentralus": "ncus",
        "southcentralus": "scus",
        "westcentralus": "wcus",
        # Europe
        "northeurope": "neu",
        "westeurope": "weu",
        "francecentral": "frc",
        "germanywestcentral": "dewc",
        "norwayeast": "noe",
        "swedencentral": "sec",
        "switzerlandnorth": "chn",
        "uksouth": "uks",
        "ukwest": "ukw",
        # Asia Pacific
        "australiaeast": "aue",
        "australiasoutheast": "ause",
        "centralindia": "inc",
        "eastasia": "ea",
        "japaneast": "jpe",
        "japanwest": "jpw",
        "koreacentral": "krc",
        "southeastasia": "sea",
        "southindia": "ins",
        # Government
        "usgovvirginia": "usgv",
        "usgovarizona": "usga",
        "usgovtexas": "usgt",
        # Other
        "brazilsouth": "brs",
        "canadacentral": "cac",
        "canadaeast": "cae",
        "southafricanorth": "san",
        "uaenorth": "uaen",
    }

    @classmethod
    def from_value(cls, value: Union[str, "Geography"]) -> "Geography":
        """Create a Geography from a region name such as 'eastus' or 'east-us'.

        Unknown regions fall back to the normalized region name as abbreviation.
        """
        if isinstance(value, Geography):
            return value
        location = value.strip().lower().replace("-", "").replace(" ", "")
        if not location:
            raise ValueError("Geography value cannot be empty")
        return cls(location=location, abbreviation=cls.ABBREVIATIONS.get(location, location))

    @classmethod
    def is_known_region(cls, value: str) -> bool:
        return value.strip().lower().replace("-", "") in cls.ABBREVIATIONS


NAMING_FIELDS = ("organization", "project", "environment", "geography", "instance")


@dataclass(frozen=True)
class ScopeContext:
    """Naming and deployment-scope identifiers resolved for a node."""

    organization: Optional[str] = None
    project: Optional[str] = None
    environment: Optional[str] = None
    geography: Optional[Geography] = None
    instance: Optional[str] = None
    tenant_id: Optional[str] = None
    management_group_id: Optional[str] = None
    subscription_id: Optional[str] = None
    resource_group: Optional[str] = None

    def merged(self, overrides: Mapping[str, Any]) -> "ScopeContext":
        """Return a copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        changes = {}
        for key, value in overrides.items():
            if key not in known:
                raise KeyError(f"Unknown scope context field '{key}'")
            if value is not None:
                changes[key] = value
        if not changes:
            return self
        return replace(self, **changes)

    def missing_naming_fields(self) -> List[str]:
        return [name for name in NAMING_FIELDS if not getattr(self, name)]

    @property
    def location(self) -> Optional[str]:
        return self.geography.location if self.geography else None

    @classmethod
    def for_node(cls, node: Node) -> "ScopeContext":
        """Resolve a node's context by walking its ancestors, O(depth).

        The collector resolves every node once in a top-down pre-pass instead;
        this is for one-off lookups.
        """
        chain = []
        current: Optional[Node] = node
        while current is not None:
            chain.append(current)
            current = current.parent
        context = cls()
        for ancestor in reversed(chain):
            context = context.merged(ancestor.context_overrides())
        return context


@dataclass(frozen=True)
class ScopeKey:
    """The concrete deployment target of a resource or template unit."""

    scope: DeploymentScope
    management_group_id: Optional[str] = None
    subscription_id: Optional[str] = None
    resource_group: Optional[str] = None

    @classmethod
    def for_scope(cls, scope: DeploymentScope, context: ScopeContext) -> "ScopeKey":
        if scope is DeploymentScope.TENANT:
            return cls(scope)
        if scope is DeploymentScope.MANAGEMENT_GROUP:
            return cls(scope, management_group_id=context.management_group_id)
        if scope is DeploymentScope.SUBSCRIPTION:
            return cls(scope, subscription_id=context.subscription_id)
        return cls(
            scope,
            subscription_id=context.subscription_id,
            resource_group=context.resource_group,
        )

    @property
    def label(self) -> str:
        if self.scope is DeploymentScope.TENANT:
            return "tenant"
        if self.scope is DeploymentScope.MANAGEMENT_GROUP:
            return f"managementGroup:{self.management_group_id}"
        if self.scope is DeploymentScope.SUBSCRIPTION:
            return f"subscription:{self.subscription_id}"
        return f"resourceGroup:{self.subscription_id}/{self.resource_group}"

    def sort_key(self) -> Tuple[str, ...]:
        return (
            self.scope.value,
            self.management_group_id or "",
            self.subscription_id or "",
            self.resource_group or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"scope": self.scope.value}
        if self.management_group_id:
            data["managementGroupId"] = self.management_group_id
        if self.subscription_id:
            data["subscriptionId"] = self.subscription_id
        if self.resource_group:
            data["resourceGroup"] = self.resource_group
        return data


__all__ = [
    "DeploymentScope",
    "Geography",
    "NAMING_FIELDS",
    "ScopeContext",
    "ScopeKey",
]
