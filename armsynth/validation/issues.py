"""Validation issues and the aggregated report.

Issues are collected into one report instead of being raised one at a time;
callers decide whether to abort only after the whole tree was checked.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class Severity(str, Enum):
    """Issue severity. Errors block synthesis, warnings do not."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """One problem found while validating the declared resources."""

    severity: Severity
    source_logical_id: Optional[str]
    message: str
    code: str = "RESOURCE_INVALID"

    @classmethod
    def error(
        cls, source_logical_id: Optional[str], message: str, code: str = "RESOURCE_INVALID"
    ) -> "ValidationIssue":
        return cls(Severity.ERROR, source_logical_id, message, code)

    @classmethod
    def warning(
        cls, source_logical_id: Optional[str], message: str, code: str = "RESOURCE_WARNING"
    ) -> "ValidationIssue":
        return cls(Severity.WARNING, source_logical_id, message, code)

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        source = self.source_logical_id or "<tree>"
        return f"{self.severity.value.upper()} [{self.code}] {source}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "sourceLogicalId": self.source_logical_id,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class ValidationReport:
    """All issues found during one synthesis run, in discovery order."""

    issues: List[ValidationIssue] = field(default_factory=list)
    strict: bool = False

    def add(self, issue: ValidationIssue) -> None:
        self.issues.append(issue)

    def extend(self, issues: Iterable[ValidationIssue]) -> None:
        self.issues.extend(issues)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.is_error]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if not issue.is_error]

    @property
    def has_errors(self) -> bool:
        return any(issue.is_error for issue in self.issues)

    @property
    def is_blocking(self) -> bool:
        """True when synthesis must abort; strict mode also blocks on warnings."""
        if self.strict:
            return bool(self.issues)
        return self.has_errors

    def by_code(self, code: str) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.code == code]

    def summary(self) -> str:
        return f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errorCount": len(self.errors),
            "warningCount": len(self.warnings),
            "issues": [issue.to_dict() for issue in self.issues],
        }
