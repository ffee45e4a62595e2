"""Validation aggregation.

Runs every resource's own validator plus the cross-resource checks and
collects all issues into one report. Nothing here raises for a user error;
the caller decides to abort after the whole walk.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from ..collector import CollectionResult
from ..dependency_graph import DependencyGraph
from ..partitioner import build_atomic_groups, build_group_graph
from .issues import ValidationIssue, ValidationReport

logger = logging.getLogger(__name__)


class ValidationAggregator:
    """Collects every validation issue of a synthesis run into one report."""

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict

    def validate(
        self, collection: CollectionResult, graph: Optional[DependencyGraph] = None
    ) -> ValidationReport:
        """Validate collected resources.

        Args:
            collection: Result of the collector, including naming issues
            graph: Resource dependency graph; built from the collection if omitted

        Returns:
            The aggregated report, in the order the checks ran
        """
        report = ValidationReport(strict=self.strict)
        report.extend(collection.issues)

        if graph is None:
            graph = DependencyGraph.from_edges(
                (d.logical_id for d in collection.descriptors), collection.edges
            )

        self._run_resource_validators(collection, report)
        self._check_unique_logical_ids(collection, report)
        self._check_unique_names(collection, report)
        self._check_dependency_targets(collection, report)
        self._check_co_location_targets(collection, report)
        has_cycles = self._check_cycles(graph, report)
        self._check_co_location_conflicts(collection, report, check_cycles=not has_cycles)

        if report.issues:
            logger.info(f"Validation finished: {report.summary()}")
        else:
            logger.info("Validation finished without issues")
        for issue in report.issues:
            logger.debug(str(issue))
        return report

    def _run_resource_validators(
        self, collection: CollectionResult, report: ValidationReport
    ) -> None:
        by_id = collection.by_id
        for logical_id, resource in collection.resources.items():
            descriptor = by_id.get(logical_id)
            resolved_name = descriptor.declared_name if descriptor is not None else None
            try:
                report.extend(resource.validate(resolved_name or None))
            except Exception as e:
                logger.warning(f"Validator of {logical_id} raised: {e}")
                report.add(
                    ValidationIssue.error(
                        logical_id, f"Validator raised {type(e).__name__}: {e}",
                        code="VALIDATOR_FAILED",
                    )
                )

    def _check_unique_logical_ids(
        self, collection: CollectionResult, report: ValidationReport
    ) -> None:
        seen: Dict[str, int] = {}
        for descriptor in collection.descriptors:
            seen[descriptor.logical_id] = seen.get(descriptor.logical_id, 0) + 1
        for logical_id, count in seen.items():
            if count > 1:
                report.add(
                    ValidationIssue.error(
                        logical_id,
                        f"Logical id is declared {count} times",
                        code="DUPLICATE_LOGICAL_ID",
                    )
                )

    def _check_unique_names(
        self, collection: CollectionResult, report: ValidationReport
    ) -> None:
        # ARM names are case-insensitive within a scope and type
        owners: Dict[Tuple, List[str]] = defaultdict(list)
        for descriptor in collection.descriptors:
            if not descriptor.declared_name:
                continue
            key = (
                descriptor.scope_key,
                descriptor.provider_type.lower(),
                descriptor.declared_name.casefold(),
            )
            owners[key].append(descriptor.logical_id)

        for (scope_key, provider_type, _), logical_ids in owners.items():
            if len(logical_ids) < 2:
                continue
            name = collection.by_id[logical_ids[0]].declared_name
            for logical_id in logical_ids[1:]:
                report.add(
                    ValidationIssue.error(
                        logical_id,
                        f"Name '{name}' of type {provider_type} is already used by "
                        f"{logical_ids[0]} in {scope_key.label}",
                        code="DUPLICATE_NAME",
                    )
                )

    def _check_dependency_targets(
        self, collection: CollectionResult, report: ValidationReport
    ) -> None:
        known = {descriptor.logical_id for descriptor in collection.descriptors}
        for edge in collection.edges:
            if edge.target not in known:
                report.add(
                    ValidationIssue.error(
                        edge.source,
                        f"Depends on unknown resource '{edge.target}' ({edge.kind.value})",
                        code="UNKNOWN_DEPENDENCY",
                    )
                )

    def _check_co_location_targets(
        self, collection: CollectionResult, report: ValidationReport
    ) -> None:
        known = {descriptor.logical_id for descriptor in collection.descriptors}
        for descriptor in collection.descriptors:
            target = descriptor.co_location
            if not target:
                continue
            if target not in known:
                report.add(
                    ValidationIssue.error(
                        descriptor.logical_id,
                        f"Co-location target '{target}' does not exist",
                        code="UNKNOWN_CO_LOCATION",
                    )
                )
            elif target == descriptor.logical_id:
                report.add(
                    ValidationIssue.warning(
                        descriptor.logical_id,
                        "Resource is co-located with itself",
                        code="SELF_CO_LOCATION",
                    )
                )

    def _check_cycles(self, graph: DependencyGraph, report: ValidationReport) -> bool:
        cycles = graph.find_cycles()
        for cycle in cycles:
            report.add(
                ValidationIssue.error(
                    cycle[0],
                    f"Dependency cycle: {' -> '.join(cycle)}",
                    code="DEPENDENCY_CYCLE",
                )
            )
        return bool(cycles)

    def _check_co_location_conflicts(
        self,
        collection: CollectionResult,
        report: ValidationReport,
        check_cycles: bool = True,
    ) -> None:
        groups = build_atomic_groups(collection.descriptors)
        for group in groups:
            scope_keys = group.scope_keys
            if len(scope_keys) > 1:
                labels = ", ".join(key.label for key in scope_keys)
                report.add(
                    ValidationIssue.error(
                        group.group_id,
                        f"Co-located resources {', '.join(group.logical_ids)} "
                        f"target different scopes: {labels}",
                        code="CO_LOCATION_CONFLICT",
                    )
                )

        # Merging co-located resources must not close a dependency cycle
        if not check_cycles or len(groups) == len(collection.descriptors):
            return
        for cycle in build_group_graph(groups).find_cycles():
            report.add(
                ValidationIssue.error(
                    cycle[0],
                    f"Co-location creates a dependency cycle between groups: "
                    f"{' -> '.join(cycle)}",
                    code="CO_LOCATION_CYCLE",
                )
            )


__all__ = ["ValidationAggregator"]
