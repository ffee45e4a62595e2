"""Resource reference placeholders embedded in serialized resource bodies.

A resource refers to another by embedding ``{{ref:<logicalId>:<attribute>}}``
in any string value of its body. The collector turns every placeholder into an
implicit-reference dependency; the rewriter later replaces it with an
intra-template expression or a cross-template parameter.
"""

import re
from typing import Any, Iterator, Tuple

REFERENCE_PATTERN = re.compile(
    r"\{\{ref:(?P<logical_id>[A-Za-z0-9][A-Za-z0-9_\-/]*):(?P<attribute>[A-Za-z_][A-Za-z0-9_.]*)\}\}"
)


def format_reference(logical_id: str, attribute: str = "id") -> str:
    """Return the placeholder for ``attribute`` of the resource ``logical_id``."""
    token = f"{{{{ref:{logical_id}:{attribute}}}}}"
    if not REFERENCE_PATTERN.fullmatch(token):
        raise ValueError(f"Invalid reference to '{logical_id}' attribute '{attribute}'")
    return token


def iter_references(value: Any) -> Iterator[Tuple[str, str]]:
    """Yield ``(logical_id, attribute)`` for every placeholder inside a JSON value."""
    if isinstance(value, str):
        for match in REFERENCE_PATTERN.finditer(value):
            yield match.group("logical_id"), match.group("attribute")
    elif isinstance(value, dict) or hasattr(value, "items"):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


__all__ = ["REFERENCE_PATTERN", "format_reference", "iter_references"]
