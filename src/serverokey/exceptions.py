"""
Core Exception Classes for serverokey.

This module provides the error taxonomy shared by every layer of the engine.
It has zero dependencies so that the evaluator, connectors and interpreter can
all import it without pulling in optional packages.

Taxonomy:
    ValidationError      structured user-input failure, aborts the run
    EvaluationError      expression failure, swallowed by the evaluator
    StepExecutionError   any other failure inside a step, aborts the run
    ConnectorError       storage failure (transactions roll back first)
    MigrationError       bad item shape during a migration pass
    ActionNotFoundError  unknown action name
    ActionRecursionError action:run cycle or depth overflow
    ManifestError        malformed manifest
    AuthError            login/registration failure

Design Principle:
    exceptions.py (BASE - zero dependencies)
        ^
    expressions.py / connectors / interpreter
        ^
    engine.py (BOUNDARY)
"""

import json
from typing import Any, Dict, Iterable, List, Optional


class ServerokeyError(Exception):
    """Base class for all engine errors."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary suitable for a boundary error response."""
        return {"type": type(self).__name__, "message": str(self)}


class ValidationError(ServerokeyError):
    """
    Structured validation failure raised by the schema utility namespace.

    Unlike every other evaluation failure, a ValidationError is never
    swallowed by the evaluator: it aborts the whole run so the boundary can
    map it to a 4xx-style response.

    Attributes:
        issues: List of {"path": [...], "message": str} entries.

    Example:
        >>> raise ValidationError(
        ...     "Invalid input: expected string, received object",
        ...     issues=[{"path": [], "message": "expected string"}],
        ... )
    """

    def __init__(self, message: str, issues: Optional[List[Dict[str, Any]]] = None):
        self.issues = issues or []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["issues"] = self.issues
        return data


class EvaluationError(ServerokeyError):
    """Expression could not be evaluated (syntax, type or sandbox error)."""

    def __init__(self, expression: str, cause: Optional[BaseException] = None):
        self.expression = expression
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to evaluate '{expression}'{detail}")


class StepExecutionError(ServerokeyError):
    """
    Wraps any exception raised while executing a step.

    The serialized form of the failing step is kept for diagnostics and the
    original error is chained as ``__cause__``.

    Attributes:
        step: The raw step mapping that failed.
        cause: The original exception.
    """

    def __init__(self, step: Any, cause: BaseException):
        self.step = step
        self.cause = cause
        self.serialized_step = _serialize(step)
        super().__init__(
            f"Step execution failed: {self.serialized_step}: {cause}"
        )

    @property
    def validation_error(self) -> Optional[ValidationError]:
        """The underlying ValidationError, if this failure was one."""
        error: Optional[BaseException] = self.cause
        while error is not None:
            if isinstance(error, ValidationError):
                return error
            error = getattr(error, "cause", None)
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["step"] = self.serialized_step
        data["cause"] = type(self.cause).__name__
        validation = self.validation_error
        if validation is not None:
            data["issues"] = validation.issues
        return data


class ConnectorError(ServerokeyError):
    """Storage-level failure in a connector or the document store."""


class ConnectorNotFoundError(ConnectorError):
    """Raised when a connector name is not configured."""

    def __init__(self, name: str, available: Iterable[str]):
        self.name = name
        self.available = sorted(available)
        super().__init__(
            f"Connector '{name}' not found. Available: [{', '.join(self.available)}]"
        )


class MigrationError(ConnectorError):
    """A migration rule could not be applied to stored data."""


class ActionNotFoundError(ServerokeyError):
    """Raised when an action or legacy callback name cannot be resolved."""


class ActionRecursionError(ServerokeyError):
    """Raised when action:run would re-enter an action or exceed the depth limit."""

    def __init__(self, message: str, call_stack: Iterable[str] = ()):
        self.call_stack = list(call_stack)
        super().__init__(message)


class ManifestError(ServerokeyError):
    """The manifest is malformed or references unknown parts."""


class AuthError(ServerokeyError):
    """Login or registration failed."""


def _serialize(step: Any) -> str:
    try:
        return json.dumps(step, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(step)
