"""Domain events for the CRO autofix pipeline.

Every event is a frozen dataclass inheriting from ``DomainEvent``.  The
pipeline stages emit events on the ``EventBus``; listeners (dashboards,
notifiers, audit logs) react without the stages knowing about them.

All events carry a ``timestamp`` and a ``source_id`` identifying the
originating component.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from .enums import FixStatus, PatternKind, Severity

# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    timestamp: float = field(default_factory=time.time)
    source_id: str = ""


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IssueDetected(DomainEvent):
    """The matcher saw a fingerprint for the first time."""

    issue_id: str = ""
    pattern_id: PatternKind | None = None
    severity: Severity | None = None
    element_selector: str = ""
    event_count: int = 0


# ---------------------------------------------------------------------------
# Generation and application
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FixGenerated(DomainEvent):
    """The code generator finished for an issue (successfully or not)."""

    issue_id: str = ""
    success: bool = False
    attempts: int = 0
    agent_used: str = ""
    error: str | None = None


@dataclass(frozen=True)
class PatchesApplied(DomainEvent):
    """A batch of patches went through the patch engine."""

    session_id: str = ""
    all_applied: bool = False
    applied_files: tuple[str, ...] = ()
    failed_count: int = 0


@dataclass(frozen=True)
class PatchesRolledBack(DomainEvent):
    """A patch session was rolled back."""

    session_id: str = ""
    restored: bool = False
    unrestored_paths: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FixStatusChanged(DomainEvent):
    """A fix moved between lifecycle states."""

    fix_id: str = ""
    previous_status: FixStatus | None = None
    new_status: FixStatus | None = None
    reason: str | None = None
