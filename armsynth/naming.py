"""Deterministic resource name generation.

Names follow the pattern ``prefix-org-project-purpose-env-geo-instance``.
The purpose is derived from the node id with words that merely repeat the
resource type stripped, e.g. a storage account declared as ``LedgerStorage``
in an ``acme``/``pay`` production stack in East US becomes
``st-acme-pay-ledger-prod-eus-01``.

Per-type length and character rules belong to the resource types themselves;
the resolver is type-agnostic.
"""

import logging
import re
from typing import List, Optional, Set

from .construct import Node
from .exceptions import NamingError
from .scope import ScopeContext

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = "-"

# Resource type to naming prefix mapping (last segment of the provider type)
RESOURCE_TYPE_PREFIXES = {
    "resourceGroups": "rg",
    "storageAccounts": "st",
    "virtualNetworks": "vnet",
    "subnets": "snet",
    "networkSecurityGroups": "nsg",
    "publicIPAddresses": "pip",
    "networkInterfaces": "nic",
    "vaults": "kv",
    "serverfarms": "asp",
    "sites": "app",
    "components": "appi",
    "workspaces": "log",
    "databaseAccounts": "cosmos",
    "userAssignedIdentities": "id",
    "service": "apim",
    "namespaces": "evhns",
    "redis": "redis",
    "accounts": "cog",
    "actionGroups": "ag",
}

_CAMEL_WORDS = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+")
_SPLIT = re.compile(r"[^A-Za-z0-9]+")


def split_words(value: str) -> List[str]:
    """Split an identifier into lower-case words on case, digit and punctuation boundaries."""
    words: List[str] = []
    for chunk in _SPLIT.split(value):
        words.extend(word.lower() for word in _CAMEL_WORDS.findall(chunk))
    return words


def prefix_for_type(provider_type: str) -> str:
    """Return the naming prefix for a provider type such as 'Microsoft.Storage/storageAccounts'."""
    last_segment = provider_type.rsplit("/", 1)[-1]
    return RESOURCE_TYPE_PREFIXES.get(last_segment, last_segment.lower())


class NamingResolver:
    """Generate names from the naming context an ancestor provides."""

    def __init__(self, separator: str = DEFAULT_SEPARATOR) -> None:
        self.separator = separator

    def resolve(
        self,
        node: Node,
        prefix: str,
        context: Optional[ScopeContext] = None,
        provider_type: Optional[str] = None,
        declared_name: Optional[str] = None,
    ) -> str:
        """Resolve the name of ``node``.

        Args:
            node: Node being named; its id supplies the purpose
            prefix: Resource-type prefix (e.g. 'st', 'rg')
            context: Pre-resolved scope context; resolved from ancestors if omitted
            provider_type: Provider type whose words are stripped from the purpose
            declared_name: Explicit name, returned as-is without consulting the context

        Returns:
            The resolved name

        Raises:
            NamingError: If the context lacks any naming field
        """
        if declared_name:
            return declared_name

        if context is None:
            context = ScopeContext.for_node(node)

        missing = context.missing_naming_fields()
        if missing:
            raise NamingError(
                f"Cannot generate a name for '{node.path or node.node_id}': "
                f"missing {', '.join(missing)}",
                missing_fields=missing,
                context={"node_path": node.path},
            )

        purpose = self.derive_purpose(node.node_id, prefix, provider_type)
        components = [prefix, context.organization, context.project]
        if purpose:
            components.append(purpose)
        components.extend(
            [context.environment, context.geography.abbreviation, context.instance]
        )
        name = self.separator.join(str(component) for component in components)
        logger.debug(f"Resolved name for '{node.path}': {name}")
        return name

    def derive_purpose(
        self, node_id: str, prefix: str, provider_type: Optional[str] = None
    ) -> str:
        """Derive the purpose component from a node id.

        Words repeating the prefix or the provider type (singular or plural)
        are dropped; an id made only of such words yields an empty purpose.
        """
        redundant = self._redundant_words(prefix, provider_type)
        words = [word for word in split_words(node_id) if word not in redundant]
        return self.separator.join(words)

    def _redundant_words(self, prefix: str, provider_type: Optional[str]) -> Set[str]:
        words = set(split_words(prefix))
        if provider_type:
            namespace, _, type_path = provider_type.partition("/")
            words.update(split_words(namespace.replace("Microsoft.", "")))
            for segment in type_path.split("/"):
                words.update(split_words(segment))
            words.add(prefix_for_type(provider_type))
        singulars = {word[:-1] for word in words if len(word) > 3 and word.endswith("s")}
        plurals = {f"{word}s" for word in words}
        return words | singulars | plurals


__all__ = [
    "DEFAULT_SEPARATOR",
    "NamingResolver",
    "RESOURCE_TYPE_PREFIXES",
    "prefix_for_type",
    "split_words",
]
