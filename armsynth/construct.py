"""Construct tree model for declaring infrastructure.

A construct tree is built single-threaded by the caller before synthesis.
Every node carries an explicit, finite set of capabilities; scope, naming and
container discovery is done exclusively by asking for the nearest ancestor
that has a given capability.

Children are owned by their parent. The parent link is a weak reference, so
callers must keep the root alive for as long as they use the tree.
"""

import logging
import re
import weakref
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Optional

from .exceptions import DeclarationError, DuplicateIdError, TreeLockedError

logger = logging.getLogger(__name__)

# Ids compose into "/"-separated paths and into reference placeholders
NODE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")

PATH_SEPARATOR = "/"


class Capability(str, Enum):
    """Named capabilities a node can expose to its descendants."""

    ROOT = "root"
    NAMING_CONTEXT = "naming-context"
    TENANT = "tenant"
    MANAGEMENT_GROUP = "management-group"
    SUBSCRIPTION = "subscription"
    RESOURCE_GROUP = "resource-group"
    RESOURCE = "resource"


class DeclarationRegistry:
    """Records every node of one tree in declaration order.

    The registry is owned by the root node and replaces any process-wide
    registry of stacks or resources. Its declaration index is the tie-breaker
    used wherever synthesis needs a deterministic order.
    """

    def __init__(self) -> None:
        self._nodes: List["Node"] = []
        self._index: Dict[int, int] = {}
        self._locked = False

    def record(self, node: "Node") -> int:
        if self._locked:
            raise TreeLockedError(
                f"Cannot declare '{node.node_id}': the construct tree is locked for synthesis"
            )
        key = id(node)
        if key in self._index:
            return self._index[key]
        self._index[key] = len(self._nodes)
        self._nodes.append(node)
        return self._index[key]

    def index_of(self, node: "Node") -> int:
        try:
            return self._index[id(node)]
        except KeyError:
            raise DeclarationError(
                f"Node '{node.node_id}' is not part of this construct tree",
                node_path=node.path,
            ) from None

    def lock(self) -> None:
        self._locked = True

    @property
    def locked(self) -> bool:
        return self._locked

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator["Node"]:
        return iter(self._nodes)


class Node:
    """A node of the construct tree.

    Subclasses declare their capabilities through the ``capabilities`` class
    attribute. Passing a parent to the constructor attaches the node.
    """

    capabilities: FrozenSet[Capability] = frozenset()

    def __init__(
        self,
        scope: Optional["Node"],
        node_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not isinstance(node_id, str) or not NODE_ID_PATTERN.match(node_id):
            raise DeclarationError(
                f"Invalid node id '{node_id}': ids must start with a letter or digit "
                "and contain only letters, digits, '_' and '-'",
                node_path=node_id if isinstance(node_id, str) else None,
            )
        self.node_id = node_id
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self._parent_ref: Optional["weakref.ReferenceType[Node]"] = None
        self._children: List[Node] = []
        self._children_by_id: Dict[str, Node] = {}
        if scope is not None:
            attach(scope, self)

    @property
    def parent(self) -> Optional["Node"]:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @property
    def children(self) -> tuple:
        return tuple(self._children)

    def child(self, node_id: str) -> Optional["Node"]:
        return self._children_by_id.get(node_id)

    @property
    def root(self) -> "Node":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def path(self) -> str:
        """Path of ids below the root; the root itself contributes nothing."""
        parts: List[str] = []
        node: Optional[Node] = self
        while node is not None and node.parent is not None:
            parts.append(node.node_id)
            node = node.parent
        return PATH_SEPARATOR.join(reversed(parts))

    @property
    def registry(self) -> Optional[DeclarationRegistry]:
        root = find_ancestor(self, Capability.ROOT)
        if isinstance(root, RootNode):
            return root.declarations
        return None

    def has_capability(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def context_overrides(self) -> Dict[str, Any]:
        """Scope context fields this node supplies to its descendants."""
        return {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.path or self.node_id!r})"


class RootNode(Node):
    """Root of a construct tree, owning the tree's declaration registry."""

    capabilities = frozenset({Capability.ROOT})

    def __init__(self, node_id: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.declarations = DeclarationRegistry()
        super().__init__(None, node_id, metadata)
        self.declarations.record(self)

    @property
    def stack_name(self) -> str:
        """Base name for the template units synthesized from this tree."""
        return self.node_id.lower()


def attach(parent: Node, child: Node) -> None:
    """Insert ``child`` under ``parent``.

    Raises:
        DuplicateIdError: If a sibling already owns the child's id
        DeclarationError: If the child already has a parent
        TreeLockedError: If the tree is locked for synthesis
    """
    if child.parent is not None:
        raise DeclarationError(
            f"Node '{child.node_id}' is already attached to '{child.parent.node_id}'",
            node_path=child.path,
        )
    if child is parent or any(node is child for node in _ancestors(parent)):
        raise DeclarationError(
            f"Cannot attach '{child.node_id}' below itself", node_path=parent.path
        )

    registry = parent.registry
    if registry is not None and registry.locked:
        raise TreeLockedError(
            f"Cannot attach '{child.node_id}': the construct tree is locked for synthesis",
            node_path=parent.path,
        )
    if child.node_id in parent._children_by_id:
        raise DuplicateIdError(
            f"'{parent.path or parent.node_id}' already has a child with id '{child.node_id}'",
            node_id=child.node_id,
            node_path=parent.path,
        )

    parent._children.append(child)
    parent._children_by_id[child.node_id] = child
    child._parent_ref = weakref.ref(parent)

    if registry is not None:
        # A subtree built before attaching is recorded in pre-order
        for node in walk(child):
            registry.record(node)

    logger.debug(f"Attached '{child.path}' ({child.__class__.__name__})")


def find_ancestor(node: Node, capability: Capability) -> Optional[Node]:
    """Return the nearest ancestor-or-self exposing ``capability``, or None."""
    current: Optional[Node] = node
    while current is not None:
        if capability in current.capabilities:
            return current
        current = current.parent
    return None


def walk(root: Node) -> Iterator[Node]:
    """Yield ``root`` and its descendants in depth-first pre-order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node._children))


def _ancestors(node: Node) -> Iterator[Node]:
    current = node.parent
    while current is not None:
        yield current
        current = current.parent


__all__ = [
    "Capability",
    "DeclarationRegistry",
    "Node",
    "RootNode",
    "attach",
    "find_ancestor",
    "walk",
]
