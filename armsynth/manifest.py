"""Deployment manifest.

The manifest lists template units in deployment order with their target
scope and the parameters each unit expects from earlier units' outputs.
It contains no timestamps so repeated synthesis stays byte-identical.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from .partitioner import TemplateUnit

MANIFEST_VERSION = "1.0"
MANIFEST_FILE = "manifest.json"


@dataclass
class ManifestEntry:
    """One unit in the manifest."""

    name: str
    file: str
    scope: Dict[str, Any]
    resource_count: int
    size_bytes: int
    depends_on: List[str] = field(default_factory=list)
    parameters: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    outputs: List[str] = field(default_factory=list)
    location: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "file": self.file,
            "scope": self.scope,
            "resourceCount": self.resource_count,
            "sizeBytes": self.size_bytes,
            "dependsOn": list(self.depends_on),
            "parameters": self.parameters,
            "outputs": list(self.outputs),
        }
        if self.location:
            data["location"] = self.location
        return data


@dataclass
class Manifest:
    """Units in deployment order; every unit follows all units it depends on."""

    stack_name: str
    entries: List[ManifestEntry] = field(default_factory=list)
    version: str = MANIFEST_VERSION

    @property
    def deployment_order(self) -> List[str]:
        return [entry.name for entry in self.entries]

    def entry(self, name: str) -> ManifestEntry:
        for entry in self.entries:
            if entry.name == name:
                return entry
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "stackName": self.stack_name,
            "totalUnits": len(self.entries),
            "totalResources": sum(entry.resource_count for entry in self.entries),
            "units": [entry.to_dict() for entry in self.entries],
        }


def build_manifest(stack_name: str, units: Sequence[TemplateUnit]) -> Manifest:
    """Build the manifest for partitioned and rewritten units.

    Units come out of the partitioner in deployment order already, so the
    manifest keeps their order.
    """
    manifest = Manifest(stack_name=stack_name)
    for unit in units:
        parameters: Dict[str, Dict[str, Any]] = {}
        for reference in unit.inbound:
            parameters[reference.output_name] = {
                "fromUnit": reference.producer_unit,
                "output": reference.output_name,
                "binding": reference.binding,
            }
        manifest.entries.append(
            ManifestEntry(
                name=unit.name,
                file=unit.file_name,
                scope=unit.scope_key.to_dict(),
                resource_count=unit.resource_count,
                size_bytes=unit.size_bytes,
                depends_on=list(unit.depends_on),
                parameters=dict(sorted(parameters.items())),
                outputs=sorted(unit.outputs),
                location=unit.location or "",
            )
        )
    return manifest


__all__ = ["MANIFEST_FILE", "Manifest", "ManifestEntry", "build_manifest"]
