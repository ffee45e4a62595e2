"""Validation issues and aggregation.

Only the issue types are exported here because resource types import them;
``ValidationAggregator`` lives in ``armsynth.validation.aggregator``.
"""

from .issues import Severity, ValidationIssue, ValidationReport

__all__ = ["Severity", "ValidationIssue", "ValidationReport"]
