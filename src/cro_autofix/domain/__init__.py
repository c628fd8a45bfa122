"""Domain layer for the CRO autofix pipeline.

Re-exports all public domain types so that consumers can write::

    from cro_autofix.domain import Issue, CodePatch, PatternKind
"""

# -- Enumerations -------------------------------------------------------------
from .enums import (
    ActionType,
    EventType,
    FixStatus,
    GuardrailMode,
    GuardrailSource,
    IssueCategory,
    IssueStatus,
    LifecycleStage,
    PatternKind,
    PRStatus,
    Severity,
    ViolationSeverity,
)

# -- Value Objects ------------------------------------------------------------
from .values import (
    ApplyResult,
    BranchInfo,
    CodePatch,
    ColorPalette,
    ComponentMapping,
    Event,
    FileWriteResult,
    FixValidation,
    GeneratedFix,
    GuardrailReport,
    Guardrails,
    GuardrailViolation,
    IssueSummary,
    NewFile,
    PatchResult,
    PRInfo,
    SourceFile,
    SyntaxReport,
    SyntaxValidationResult,
    ValidationResult,
    VCSResult,
    WriteResult,
)

# -- Entities -----------------------------------------------------------------
from .entities import Fix, Issue, issue_fingerprint

# -- Domain Events ------------------------------------------------------------
from .events import (
    DomainEvent,
    FixGenerated,
    FixStatusChanged,
    IssueDetected,
    PatchesApplied,
    PatchesRolledBack,
)

# -- Exceptions ---------------------------------------------------------------
from .exceptions import (
    ConfigurationError,
    CroAutofixError,
    FixNotFoundError,
    GenerationError,
    LifecycleStateError,
    PatchNotFoundError,
    ValidationError,
    VersionControlError,
)

__all__ = [
    # enums
    "ActionType",
    "EventType",
    "FixStatus",
    "GuardrailMode",
    "GuardrailSource",
    "IssueCategory",
    "IssueStatus",
    "LifecycleStage",
    "PatternKind",
    "PRStatus",
    "Severity",
    "ViolationSeverity",
    # values
    "ApplyResult",
    "BranchInfo",
    "CodePatch",
    "ColorPalette",
    "ComponentMapping",
    "Event",
    "FileWriteResult",
    "FixValidation",
    "GeneratedFix",
    "GuardrailReport",
    "Guardrails",
    "GuardrailViolation",
    "IssueSummary",
    "NewFile",
    "PatchResult",
    "PRInfo",
    "SourceFile",
    "SyntaxReport",
    "SyntaxValidationResult",
    "ValidationResult",
    "VCSResult",
    "WriteResult",
    # entities
    "Fix",
    "Issue",
    "issue_fingerprint",
    # events
    "DomainEvent",
    "FixGenerated",
    "FixStatusChanged",
    "IssueDetected",
    "PatchesApplied",
    "PatchesRolledBack",
    # exceptions
    "ConfigurationError",
    "CroAutofixError",
    "FixNotFoundError",
    "GenerationError",
    "LifecycleStateError",
    "PatchNotFoundError",
    "ValidationError",
    "VersionControlError",
]
