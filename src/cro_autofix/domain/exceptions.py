"""Domain exceptions for the CRO autofix pipeline.

All domain-specific exceptions inherit from ``CroAutofixError`` so callers
can catch the full family with a single ``except`` clause when needed.

Propagation policy: configuration and lifecycle errors are raised to the
caller immediately.  Generation, validation and patch errors are collected
into structured results (``GeneratedFix.error``, ``ApplyResult.results``)
so partial success stays inspectable.
"""

from __future__ import annotations

from typing import Any


class CroAutofixError(Exception):
    """Base exception for all CRO autofix errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class ConfigurationError(CroAutofixError):
    """Raised when a request references something that is not there.

    Examples: an issue whose ``component_path`` does not resolve to a file,
    a missing required field, or an invalid configuration value.  Fatal to
    the current request and never retried.
    """

    def __init__(
        self,
        message: str = "Invalid configuration",
        path: str = "",
        field: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path
        self.field = field


class GenerationError(CroAutofixError):
    """Raised when the LLM collaborator fails or returns an unusable reply.

    Inside the code generator this marks one failed attempt; once the
    attempt budget is exhausted the message becomes ``GeneratedFix.error``.
    """

    def __init__(
        self,
        message: str = "Code generation failed",
        attempts: int = 0,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.attempts = attempts
        self.errors: list[str] = errors or []


class ValidationError(CroAutofixError):
    """Raised when generated code fails the syntax or a blocking guardrail gate."""

    def __init__(
        self,
        message: str = "Validation failed",
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.errors: list[str] = errors or []


class PatchNotFoundError(CroAutofixError):
    """Raised when a patch's ``old_code`` is not found verbatim in its file.

    The patch engine records this per patch and keeps processing the batch.
    """

    def __init__(
        self,
        message: str = "Code to replace not found",
        file_path: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.file_path = file_path


class LifecycleStateError(CroAutofixError):
    """Raised when a fix status transition is not allowed.

    ``current_state`` carries the status observed when the transition was
    refused (``None`` when the fix does not exist).
    """

    def __init__(
        self,
        message: str = "Invalid fix state transition",
        fix_id: str = "",
        current_state: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.fix_id = fix_id
        self.current_state = current_state


class FixNotFoundError(LifecycleStateError):
    """Raised when a lifecycle operation names an unknown fix id."""

    def __init__(
        self,
        message: str = "Fix not found",
        fix_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, fix_id=fix_id, current_state=None, details=details)


class VersionControlError(CroAutofixError):
    """Raised when a version-control operation required by a transition fails."""

    def __init__(
        self,
        message: str = "Version control operation failed",
        fix_id: str = "",
        operation: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.fix_id = fix_id
        self.operation = operation
