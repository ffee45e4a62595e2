"""Base emitter class for template output.

This module defines the abstract base class for all emitters, providing a
common interface for rendering partitioned template units to documents.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import ArmSynthError, InternalInvariantError
from ..manifest import Manifest
from ..partitioner import TemplateUnit

logger = logging.getLogger(__name__)


class TemplateEmitter(ABC):
    """Abstract base class for template emitters.

    Rendering is a pure function of the rewritten units and the manifest;
    only ``emit`` touches the file system.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize emitter with optional configuration.

        Args:
            config: Optional emitter-specific configuration
        """
        self.config = config or {}

    @abstractmethod
    def render(
        self, units: Sequence[TemplateUnit], manifest: Manifest
    ) -> Dict[str, Dict[str, Any]]:
        """Render every output document.

        Args:
            units: Partitioned and rewritten units in deployment order
            manifest: Deployment manifest for the units

        Returns:
            Mapping of file name to JSON document
        """
        raise NotImplementedError("Template rendering not yet implemented")

    def emit(
        self, units: Sequence[TemplateUnit], manifest: Manifest, out_dir: Path
    ) -> List[Path]:
        """Render and write every document to ``out_dir``.

        Returns:
            List of written file paths

        Raises:
            InternalInvariantError: If rendering or writing fails
        """
        documents = self.render(units, manifest)
        return self.write(documents, out_dir)

    def write(self, documents: Dict[str, Dict[str, Any]], out_dir: Path) -> List[Path]:
        """Write rendered documents as 2-space indented JSON."""
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            files: List[Path] = []
            for file_name, document in documents.items():
                path = out_dir / file_name
                path.write_text(serialize_document(document), encoding="utf-8")
                files.append(path)
        except OSError as e:
            raise InternalInvariantError(
                f"Failed to write templates to {out_dir}: {e}", cause=e
            ) from e
        logger.info(f"Wrote {len(files)} documents to {out_dir}")
        return files

    def wrap_failure(self, error: Exception) -> ArmSynthError:
        if isinstance(error, ArmSynthError):
            return error
        return InternalInvariantError(
            f"{self.__class__.__name__} failed: {type(error).__name__}: {error}",
            cause=error,
        )


def serialize_document(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


__all__ = ["TemplateEmitter", "serialize_document"]
