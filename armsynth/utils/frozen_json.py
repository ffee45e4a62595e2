"""Immutable JSON values for resource bodies captured during collection."""

import json
from types import MappingProxyType
from typing import Any, Mapping


def freeze_json(value: Any) -> Any:
    """Return a deep read-only copy: dicts become mapping proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(key): freeze_json(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_json(item) for item in value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    raise TypeError(f"Resource bodies must be JSON values, got {type(value).__name__}")


def thaw_json(value: Any) -> Any:
    """Return a mutable deep copy of a frozen JSON value."""
    if isinstance(value, Mapping):
        return {key: thaw_json(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw_json(item) for item in value]
    return value


def to_compact_json(value: Any) -> str:
    """Serialize without whitespace; the basis for size estimates."""
    return json.dumps(thaw_json(value), separators=(",", ":"), sort_keys=True)
