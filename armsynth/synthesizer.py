"""Synthesis pipeline entry point.

tree -> collector -> validator -> graph builder -> partitioner -> rewriter
-> emitter. Every phase after collection works on immutable descriptors; the
construct tree is locked before collection starts.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog

from .collector import ResourceCollector
from .config.models import SynthesisOptions
from .construct import Node, RootNode
from .dependency_graph import DependencyGraph, first_cycle
from .emitters import TemplateEmitter, get_emitter
from .exceptions import CycleError, DeclarationError, SynthesisValidationError
from .manifest import Manifest, build_manifest
from .naming import NamingResolver
from .partitioner import TemplatePartitioner, TemplateUnit
from .rewriter import CrossUnitReference, ReferenceRewriter
from .validation.aggregator import ValidationAggregator
from .validation.issues import ValidationReport

logger = structlog.get_logger(__name__)


@dataclass
class SynthesisResult:
    """Everything one synthesis run produced."""

    units: List[TemplateUnit]
    manifest: Manifest
    report: ValidationReport
    references: List[CrossUnitReference] = field(default_factory=list)
    documents: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    files: List[Path] = field(default_factory=list)

    @property
    def deployment_order(self) -> List[str]:
        return self.manifest.deployment_order

    def unit_of(self, logical_id: str) -> Optional[TemplateUnit]:
        for unit in self.units:
            if logical_id in unit.logical_ids:
                return unit
        return None


class Synthesizer:
    """Runs the synthesis pipeline over a construct tree.

    Example:
        result = Synthesizer(SynthesisOptions(strict=True)).synthesize(app, Path("out"))
    """

    def __init__(
        self,
        options: Optional[SynthesisOptions] = None,
        emitter: Optional[TemplateEmitter] = None,
        emit_root_template: bool = True,
    ) -> None:
        self.options = options or SynthesisOptions()
        self.naming = NamingResolver(self.options.name_separator)
        self.emitter = emitter or get_emitter("arm")(
            {"emit_root_template": emit_root_template}
        )

    def synthesize(
        self, root: Node, out_dir: Optional[Union[str, Path]] = None
    ) -> SynthesisResult:
        """Synthesize ``root`` into template units.

        Args:
            root: Root of the construct tree (usually an ``App``)
            out_dir: When given, documents are also written there

        Returns:
            The synthesis result; documents are rendered either way

        Raises:
            DeclarationError: On a declaration problem, before any graph work
            SynthesisValidationError: If validation found blocking issues
            CycleError: If the dependency graph is cyclic
            PartitionOverflowError: If an atomic group exceeds a unit ceiling
            InternalInvariantError: If rewriting or emission breaks an invariant
        """
        if not isinstance(root, RootNode):
            raise DeclarationError(
                f"Synthesis must start at the root node, got '{root.node_id}'",
                node_path=root.path,
            )
        root.declarations.lock()
        stack_name = root.stack_name
        log = logger.bind(stack=stack_name)

        collection = ResourceCollector(self.naming).collect(root)
        log.info("collected", resources=len(collection), edges=len(collection.edges))

        graph = DependencyGraph.from_edges(
            (descriptor.logical_id for descriptor in collection.descriptors),
            collection.edges,
        )

        report = ValidationAggregator(strict=self.options.strict).validate(collection, graph)
        log.info(
            "validated", errors=len(report.errors), warnings=len(report.warnings)
        )
        if report.is_blocking:
            self._raise_for_report(report, graph)

        partitioner = TemplatePartitioner(
            max_unit_size_bytes=self.options.max_unit_size_bytes,
            max_resources_per_unit=self.options.max_resources_per_unit,
            stack_name=stack_name,
            max_parameters_per_unit=self.options.max_parameters_per_unit,
            max_outputs_per_unit=self.options.max_outputs_per_unit,
        )
        units = partitioner.partition(collection.descriptors, graph)
        log.info("partitioned", units=len(units))

        references = ReferenceRewriter().rewrite(units, collection.by_id)
        manifest = build_manifest(stack_name, units)
        result = SynthesisResult(
            units=units, manifest=manifest, report=report, references=references
        )

        result.documents = self.emitter.render(units, manifest)
        if out_dir is not None:
            result.files = self.emitter.write(result.documents, Path(out_dir))
        log.info(
            "synthesized",
            units=len(units),
            cross_unit_references=len(references),
            documents=len(result.documents),
        )
        return result

    def _raise_for_report(self, report: ValidationReport, graph: DependencyGraph) -> None:
        cycle = first_cycle(graph)
        if cycle:
            raise CycleError(
                f"Dependency cycle detected: {' -> '.join(cycle)}",
                cycle=cycle,
                report=report,
            )
        blocking = report.issues if report.strict else report.errors
        details = "; ".join(str(issue) for issue in blocking[:5])
        raise SynthesisValidationError(
            f"Validation failed with {report.summary()}: {details}", report=report
        )


def synthesize(
    root: Node,
    options: Optional[SynthesisOptions] = None,
    out_dir: Optional[Union[str, Path]] = None,
) -> SynthesisResult:
    """Synthesize ``root`` with ``options``; see ``Synthesizer.synthesize``."""
    return Synthesizer(options).synthesize(root, out_dir)


__all__ = ["SynthesisResult", "Synthesizer", "synthesize"]
