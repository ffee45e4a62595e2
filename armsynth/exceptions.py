"""
Custom Exception Hierarchy for ARM Synth

This module provides the exception hierarchy used by the synthesis pipeline.
Declaration problems and partition overflows are fatal and raised immediately;
validation problems are aggregated into a report and raised once, after the
whole tree has been checked.
"""

from typing import Any, Dict, List, Optional, Sequence


class ArmSynthError(Exception):
    """
    Base exception class for all ARM Synth related errors.

    Provides structured error information including context, error codes,
    and optional recovery suggestions.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional dictionary with error context
            cause: Optional underlying exception that caused this error
            recovery_suggestion: Optional suggestion for error recovery
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        if self.recovery_suggestion:
            result += f" (suggestion: {self.recovery_suggestion})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Declaration-related exceptions
class DeclarationError(ArmSynthError):
    """Raised when the construct tree is declared incorrectly."""

    def __init__(
        self, message: str, node_path: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if node_path is not None:
            context["node_path"] = node_path
        kwargs["context"] = context
        kwargs.setdefault("error_code", "DECLARATION_ERROR")
        super().__init__(message, **kwargs)


class DuplicateIdError(DeclarationError):
    """Raised when a sibling already owns the id of a node being attached."""

    def __init__(
        self, message: str, node_id: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if node_id:
            context["node_id"] = node_id
        kwargs["context"] = context
        kwargs.setdefault("error_code", "DUPLICATE_ID")
        kwargs.setdefault(
            "recovery_suggestion", "Give every child of a node a distinct id"
        )
        super().__init__(message, **kwargs)


class ScopeResolutionError(DeclarationError):
    """Raised when a resource has no ancestor providing its deployment scope."""

    def __init__(
        self,
        message: str,
        deployment_scope: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if deployment_scope:
            context["deployment_scope"] = deployment_scope
        kwargs["context"] = context
        kwargs.setdefault("error_code", "SCOPE_UNRESOLVED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Declare the resource inside a stack that provides its deployment scope",
        )
        super().__init__(message, **kwargs)


class TreeLockedError(DeclarationError):
    """Raised when the construct tree is modified after synthesis started."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "TREE_LOCKED")
        super().__init__(message, **kwargs)


class NamingError(ArmSynthError):
    """Raised when a resource name cannot be resolved from its naming context."""

    def __init__(
        self, message: str, missing_fields: Optional[List[str]] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if missing_fields:
            context["missing_fields"] = missing_fields
        kwargs["context"] = context
        kwargs.setdefault("error_code", "NAMING_CONTEXT_INCOMPLETE")
        kwargs.setdefault(
            "recovery_suggestion",
            "Provide the missing naming fields on an enclosing stack or declare an explicit name",
        )
        super().__init__(message, **kwargs)


# Validation-related exceptions
class SynthesisValidationError(ArmSynthError):
    """Raised after the full validation walk when Error-severity issues exist."""

    def __init__(self, message: str, report: Any = None, **kwargs: Any) -> None:
        self.report = report
        if report is not None:
            context = kwargs.get("context", {})
            context["error_count"] = len(report.errors)
            context["warning_count"] = len(report.warnings)
            kwargs["context"] = context
        kwargs.setdefault("error_code", "VALIDATION_FAILED")
        super().__init__(message, **kwargs)


class CycleError(SynthesisValidationError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(
        self, message: str, cycle: Sequence[str] = (), **kwargs: Any
    ) -> None:
        self.cycle = list(cycle)
        kwargs.setdefault("error_code", "DEPENDENCY_CYCLE")
        kwargs.setdefault(
            "recovery_suggestion", "Remove one of the dependencies along the cycle"
        )
        super().__init__(message, **kwargs)


# Partitioning-related exceptions
class PartitionOverflowError(ArmSynthError):
    """Raised when an indivisible atomic group exceeds a unit ceiling."""

    def __init__(
        self,
        message: str,
        logical_ids: Sequence[str] = (),
        size_bytes: Optional[int] = None,
        resource_count: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.logical_ids = list(logical_ids)
        context = kwargs.get("context", {})
        context["logical_ids"] = self.logical_ids
        if size_bytes is not None:
            context["size_bytes"] = size_bytes
        if resource_count is not None:
            context["resource_count"] = resource_count
        kwargs["context"] = context
        kwargs.setdefault("error_code", "PARTITION_OVERFLOW")
        kwargs.setdefault(
            "recovery_suggestion",
            "Restructure the declaration, e.g. move large inline content out of the resource",
        )
        super().__init__(message, **kwargs)


class InternalInvariantError(ArmSynthError):
    """Raised when rewriting or emission finds a broken pipeline invariant."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "INTERNAL_INVARIANT")
        super().__init__(message, **kwargs)


# Configuration-related exceptions
class ConfigError(ArmSynthError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "INVALID_CONFIG")
        super().__init__(message, **kwargs)
