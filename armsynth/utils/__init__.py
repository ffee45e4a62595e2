"""
Utility modules for ARM Synth.

This package contains helpers shared by several pipeline phases.
"""

from .frozen_json import freeze_json, thaw_json, to_compact_json

__all__ = [
    "freeze_json",
    "thaw_json",
    "to_compact_json",
]
