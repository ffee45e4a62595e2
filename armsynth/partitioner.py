"""Template partitioning.

Resources are grouped into deployable template units such that:

- co-located resources always share a unit (atomic groups),
- no unit exceeds the size or resource-count ceiling, nor the limits on
  cross-unit parameters and outputs,
- collapsing every unit to one node leaves an acyclic unit graph,
- equal trees always partition identically.

Atomic groups are packed greedily in topological order into the currently
open unit. A new unit opens when the next group would overflow a ceiling or
targets a different scope than the open unit. Output counts are estimated
conservatively: every value a unit produces for a resource outside the unit
counts, even if that consumer later joins the same unit.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from networkx.utils import UnionFind

from .collector import ResourceDescriptor
from .config.models import ARM_MAX_OUTPUTS_PER_TEMPLATE, ARM_MAX_PARAMETERS_PER_TEMPLATE
from .dependency_graph import DependencyEdge, DependencyGraph, EdgeKind
from .exceptions import InternalInvariantError, PartitionOverflowError
from .references import iter_references
from .scope import ScopeKey

logger = logging.getLogger(__name__)

# Provider limits for a single ARM template
DEFAULT_MAX_UNIT_SIZE_BYTES = 3_670_016  # 3.5 MiB, leaving headroom under 4 MiB
DEFAULT_MAX_RESOURCES_PER_UNIT = 200

# Parent and child resource types that are always deployed in the same unit
STRONG_AFFINITY: FrozenSet[Tuple[str, str]] = frozenset(
    {
        ("Microsoft.Web/sites", "Microsoft.Web/sites/functions"),
        ("Microsoft.Web/sites", "Microsoft.Web/sites/config"),
        ("Microsoft.Web/sites", "Microsoft.Web/sites/slots"),
        (
            "Microsoft.DocumentDB/databaseAccounts",
            "Microsoft.DocumentDB/databaseAccounts/sqlDatabases",
        ),
        ("Microsoft.Storage/storageAccounts", "Microsoft.Storage/storageAccounts/blobServices"),
        ("Microsoft.Storage/storageAccounts", "Microsoft.Storage/storageAccounts/fileServices"),
        ("Microsoft.Storage/storageAccounts", "Microsoft.Storage/storageAccounts/queueServices"),
        ("Microsoft.Storage/storageAccounts", "Microsoft.Storage/storageAccounts/tableServices"),
        ("Microsoft.Network/virtualNetworks", "Microsoft.Network/virtualNetworks/subnets"),
        ("Microsoft.Compute/virtualMachines", "Microsoft.Compute/virtualMachines/extensions"),
    }
)

_STRONG_AFFINITY_KEYS = frozenset((p.lower(), c.lower()) for p, c in STRONG_AFFINITY)


def has_strong_affinity(parent_type: str, child_type: str) -> bool:
    """Whether a child of ``child_type`` must share its parent's unit."""
    return (parent_type.lower(), child_type.lower()) in _STRONG_AFFINITY_KEYS


@dataclass
class AtomicGroup:
    """Resources that must be deployed in the same template unit."""

    group_id: str
    """Logical id of the first declared member"""

    members: List[ResourceDescriptor] = field(default_factory=list)
    dependencies: Set[str] = field(default_factory=set)
    """Dependencies on resources outside the group"""

    @property
    def logical_ids(self) -> List[str]:
        return [member.logical_id for member in self.members]

    @property
    def size_bytes(self) -> int:
        return sum(member.size_estimate_bytes for member in self.members)

    @property
    def scope_keys(self) -> List[ScopeKey]:
        keys: List[ScopeKey] = []
        for member in self.members:
            if member.scope_key not in keys:
                keys.append(member.scope_key)
        return keys

    @property
    def scope_key(self) -> ScopeKey:
        return self.members[0].scope_key

    def __len__(self) -> int:
        return len(self.members)


@dataclass
class TemplateUnit:
    """One deployable template document and the resources it holds."""

    name: str
    scope_key: ScopeKey
    resources: List[ResourceDescriptor] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)
    inbound: List[Any] = field(default_factory=list)
    """Cross-unit references this unit consumes"""
    outbound: List[Any] = field(default_factory=list)
    """Cross-unit references this unit produces"""
    parameters: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    bodies: List[Dict[str, Any]] = field(default_factory=list)
    """Rewritten resource bodies, filled in by the reference rewriter"""

    @property
    def size_bytes(self) -> int:
        return sum(resource.size_estimate_bytes for resource in self.resources)

    @property
    def resource_count(self) -> int:
        return len(self.resources)

    @property
    def logical_ids(self) -> List[str]:
        return [resource.logical_id for resource in self.resources]

    @property
    def location(self) -> Optional[str]:
        for resource in self.resources:
            if resource.location:
                return resource.location
        return None

    @property
    def file_name(self) -> str:
        return f"{self.name}.json"


def build_atomic_groups(
    descriptors: Iterable[ResourceDescriptor],
    rank: Optional[Dict[str, int]] = None,
) -> List[AtomicGroup]:
    """Compute co-location equivalence classes with union-find.

    Two resources share a group when one declares co-location with the
    other, or when a child resource nests under a parent of the same scope
    and the type pair is listed in ``STRONG_AFFINITY``.

    Groups are ordered by the declaration index of their first member.
    Members are ordered by ``rank`` (a topological position) when given,
    otherwise by declaration order. Co-location targets that do not exist
    are ignored here and reported by validation.
    """
    ordered = sorted(descriptors, key=lambda d: d.declaration_index)
    by_id = {descriptor.logical_id: descriptor for descriptor in ordered}

    sets = UnionFind(by_id)
    for descriptor in ordered:
        target = descriptor.co_location
        if target and target in by_id and target != descriptor.logical_id:
            sets.union(descriptor.logical_id, target)
        parent = by_id.get(descriptor.parent_logical_id or "")
        if (
            parent is not None
            and parent.scope_key == descriptor.scope_key
            and has_strong_affinity(parent.provider_type, descriptor.provider_type)
        ):
            sets.union(descriptor.logical_id, parent.logical_id)

    by_root: Dict[str, AtomicGroup] = {}
    groups: List[AtomicGroup] = []
    for descriptor in ordered:
        root = sets[descriptor.logical_id]
        group = by_root.get(root)
        if group is None:
            group = AtomicGroup(group_id=descriptor.logical_id)
            by_root[root] = group
            groups.append(group)
        group.members.append(descriptor)

    for group in groups:
        member_ids = set(group.logical_ids)
        if rank is not None:
            group.members.sort(key=lambda d: rank[d.logical_id])
        for member in group.members:
            group.dependencies.update(
                target for target in member.dependencies if target not in member_ids
            )
    return groups


class ReferenceIndex:
    """Which resource reads which ``(logical_id, attribute)`` of another.

    Every distinct value read across a unit boundary becomes one output of
    the producer's unit and one parameter of the consumer's unit.
    """

    def __init__(self, descriptors: Iterable[ResourceDescriptor]) -> None:
        descriptors = list(descriptors)
        known = {descriptor.logical_id for descriptor in descriptors}
        self.reads: Dict[str, Set[Tuple[str, str]]] = {}
        self.readers: Dict[Tuple[str, str], Set[str]] = {}
        self.produced: Dict[str, Set[Tuple[str, str]]] = {}
        for descriptor in descriptors:
            keys = {
                (target, attribute)
                for target, attribute in iter_references(descriptor.serialized_body)
                if target in known and target != descriptor.logical_id
            }
            self.reads[descriptor.logical_id] = keys
            for key in keys:
                self.readers.setdefault(key, set()).add(descriptor.logical_id)
                self.produced.setdefault(key[0], set()).add(key)

    def parameters(self, members: Set[str]) -> Set[Tuple[str, str]]:
        """Values ``members`` read from resources outside ``members``."""
        return {
            key
            for member in members
            for key in self.reads.get(member, ())
            if key[0] not in members
        }

    def outputs(self, members: Set[str]) -> Set[Tuple[str, str]]:
        """Values ``members`` produce for resources outside ``members``."""
        return {
            key
            for member in members
            for key in self.produced.get(member, ())
            if not self.readers[key] <= members
        }


def build_group_graph(groups: Sequence[AtomicGroup]) -> DependencyGraph:
    """Dependency graph whose nodes are atomic groups, keyed by group id."""
    group_of = {
        logical_id: group.group_id for group in groups for logical_id in group.logical_ids
    }
    graph = DependencyGraph()
    for group in groups:
        graph.add_node(group.group_id)
    for group in groups:
        for target in sorted(group.dependencies):
            if target in group_of:
                graph.add_edge(
                    DependencyEdge(group.group_id, group_of[target], EdgeKind.EXPLICIT)
                )
    return graph


class TemplatePartitioner:
    """Packs resources into template units under size and count ceilings."""

    def __init__(
        self,
        max_unit_size_bytes: int = DEFAULT_MAX_UNIT_SIZE_BYTES,
        max_resources_per_unit: int = DEFAULT_MAX_RESOURCES_PER_UNIT,
        stack_name: str = "app",
        max_parameters_per_unit: int = ARM_MAX_PARAMETERS_PER_TEMPLATE,
        max_outputs_per_unit: int = ARM_MAX_OUTPUTS_PER_TEMPLATE,
    ) -> None:
        self.max_unit_size_bytes = max_unit_size_bytes
        self.max_resources_per_unit = max_resources_per_unit
        self.max_parameters_per_unit = max_parameters_per_unit
        self.max_outputs_per_unit = max_outputs_per_unit
        self.stack_name = stack_name

    def partition(
        self, descriptors: Sequence[ResourceDescriptor], graph: DependencyGraph
    ) -> List[TemplateUnit]:
        """Partition ``descriptors`` into template units in deployment order.

        Args:
            descriptors: Collected resource descriptors
            graph: Resource-level dependency graph, known to be acyclic

        Returns:
            Units in deployment order; empty for an empty input

        Raises:
            PartitionOverflowError: If one atomic group alone exceeds a ceiling,
                reads more cross-unit values than a unit takes as parameters, or
                a unit ends up exposing more outputs than allowed
            CycleError: If co-location merges groups into a dependency cycle
        """
        if not descriptors:
            logger.info("No resources declared; nothing to partition")
            return []

        rank = {logical_id: i for i, logical_id in enumerate(graph.topological_order())}
        groups = build_atomic_groups(descriptors, rank)
        self._check_overflow(groups)

        group_graph = build_group_graph(groups)
        groups_by_id = {group.group_id: group for group in groups}
        ordered = [groups_by_id[group_id] for group_id in group_graph.topological_order()]

        index = ReferenceIndex(descriptors)
        units = self._pack(ordered, group_graph, index)
        self._check_outputs(units, index)
        self._link_units(units)

        logger.info(
            f"Partitioned {len(descriptors)} resources in {len(groups)} atomic groups "
            f"into {len(units)} template units"
        )
        return units

    def _check_overflow(self, groups: Sequence[AtomicGroup]) -> None:
        for group in groups:
            size = group.size_bytes
            count = len(group)
            if size > self.max_unit_size_bytes or count > self.max_resources_per_unit:
                ids = group.logical_ids
                raise PartitionOverflowError(
                    f"Atomic group {', '.join(ids)} needs {size} bytes and {count} "
                    f"resources; a unit allows at most {self.max_unit_size_bytes} bytes "
                    f"and {self.max_resources_per_unit} resources",
                    logical_ids=ids,
                    size_bytes=size,
                    resource_count=count,
                )

    def _pack(
        self,
        ordered: Sequence[AtomicGroup],
        group_graph: DependencyGraph,
        index: ReferenceIndex,
    ) -> List[TemplateUnit]:
        units: List[TemplateUnit] = []
        placed: Set[str] = set()
        current: Optional[TemplateUnit] = None

        for group in ordered:
            pending = group_graph.transitive_dependencies(group.group_id) - placed
            if pending:
                # Topological order places every dependency first
                raise InternalInvariantError(
                    f"Atomic group {group.group_id} is ready before its dependencies "
                    f"{', '.join(sorted(pending))}"
                )

            if current is None or not self._fits(current, group, index):
                self._check_parameters(group, index)
                current = TemplateUnit(
                    name=self._unit_name(len(units) + 1), scope_key=group.scope_key
                )
                units.append(current)
                logger.debug(f"Opened unit {current.name} for {current.scope_key.label}")

            current.resources.extend(group.members)
            placed.add(group.group_id)
        return units

    def _fits(self, unit: TemplateUnit, group: AtomicGroup, index: ReferenceIndex) -> bool:
        if unit.scope_key != group.scope_key:
            return False
        if unit.size_bytes + group.size_bytes > self.max_unit_size_bytes:
            return False
        if unit.resource_count + len(group) > self.max_resources_per_unit:
            return False
        current = set(unit.logical_ids)
        members = current | set(group.logical_ids)
        if len(index.parameters(members)) > self.max_parameters_per_unit:
            return False
        # Over the limit is tolerated only when the group does not add to it
        outputs = len(index.outputs(members))
        return outputs <= self.max_outputs_per_unit or outputs <= len(index.outputs(current))

    def _check_parameters(self, group: AtomicGroup, index: ReferenceIndex) -> None:
        """Raise if ``group`` alone reads more values than a unit takes as parameters."""
        parameters = len(index.parameters(set(group.logical_ids)))
        if parameters <= self.max_parameters_per_unit:
            return
        ids = group.logical_ids
        raise PartitionOverflowError(
            f"Atomic group {', '.join(ids)} reads {parameters} values from other units; "
            f"a unit allows at most {self.max_parameters_per_unit} parameters",
            logical_ids=ids,
            size_bytes=group.size_bytes,
            resource_count=len(group),
        )

    def _check_outputs(self, units: Sequence[TemplateUnit], index: ReferenceIndex) -> None:
        for unit in units:
            outputs = index.outputs(set(unit.logical_ids))
            if len(outputs) <= self.max_outputs_per_unit:
                continue
            producers = sorted({logical_id for logical_id, _ in outputs})
            raise PartitionOverflowError(
                f"Unit {unit.name} exposes {len(outputs)} values to later units; "
                f"a unit allows at most {self.max_outputs_per_unit} outputs",
                logical_ids=producers,
                size_bytes=unit.size_bytes,
                resource_count=unit.resource_count,
            )

    def _link_units(self, units: List[TemplateUnit]) -> None:
        """Derive unit dependencies from resource dependencies crossing units."""
        unit_of = {
            logical_id: index for index, unit in enumerate(units) for logical_id in unit.logical_ids
        }
        for index, unit in enumerate(units):
            required: Set[int] = set()
            for resource in unit.resources:
                for target in resource.dependencies:
                    target_index = unit_of.get(target)
                    if target_index is None or target_index == index:
                        continue
                    if target_index > index:
                        raise InternalInvariantError(
                            f"Unit {unit.name} depends on later unit {units[target_index].name}"
                        )
                    required.add(target_index)
            unit.depends_on = [units[i].name for i in sorted(required)]

    def _unit_name(self, number: int) -> str:
        return f"{self.stack_name}-{number:02d}"


__all__ = [
    "AtomicGroup",
    "DEFAULT_MAX_RESOURCES_PER_UNIT",
    "DEFAULT_MAX_UNIT_SIZE_BYTES",
    "ReferenceIndex",
    "STRONG_AFFINITY",
    "TemplatePartitioner",
    "TemplateUnit",
    "build_atomic_groups",
    "build_group_graph",
    "has_strong_affinity",
]
