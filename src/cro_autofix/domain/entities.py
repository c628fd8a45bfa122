"""Domain entities for the CRO autofix pipeline.

Entities have *identity*.  ``Issue`` is identified by its fingerprint and is
only ever replaced by the pattern matcher's aggregation step.  ``Fix`` is
owned by the fix lifecycle store and changes status only through the
transitions declared here.
"""

from __future__ import annotations

import dataclasses
import hashlib
import time
import uuid
from dataclasses import dataclass, field

from .enums import (
    FixStatus,
    IssueCategory,
    IssueStatus,
    PatternKind,
    Severity,
)
from .exceptions import LifecycleStateError
from .values import Event, FixValidation, GeneratedFix, PRInfo

# ---------------------------------------------------------------------------
# Issue entity
# ---------------------------------------------------------------------------


def issue_fingerprint(pattern_id: PatternKind, element_selector: str, component_path: str) -> str:
    """Stable identity of a recurring issue."""
    raw = f"{pattern_id.value}|{element_selector}|{component_path}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class Issue:
    """A UX problem detected from aggregated interaction evidence.

    ``event_count``, ``unique_sessions`` and ``last_occurrence`` only grow:
    new evidence for the same fingerprint is folded in with :meth:`absorb`.
    ``detected_at`` is the timestamp of the earliest supporting event, so
    detection over a fixed event set is reproducible.
    """

    pattern_id: PatternKind
    element_selector: str
    component_path: str
    component_name: str
    category: IssueCategory
    severity: Severity
    event_count: int
    unique_sessions: int
    detected_at: float
    last_occurrence: float
    sample_events: tuple[Event, ...] = ()
    problem_statement: str = ""
    user_intent: str = ""
    current_outcome: str = ""
    suggested_fix: str = ""
    page_url: str = ""
    status: IssueStatus = IssueStatus.DETECTED

    def __post_init__(self) -> None:
        if self.event_count < 0:
            raise ValueError(f"event_count must be >= 0, got {self.event_count}")
        if self.unique_sessions < 0:
            raise ValueError(f"unique_sessions must be >= 0, got {self.unique_sessions}")

    @property
    def fingerprint(self) -> str:
        return issue_fingerprint(self.pattern_id, self.element_selector, self.component_path)

    @property
    def id(self) -> str:
        return f"issue_{self.fingerprint}"

    @property
    def has_component(self) -> bool:
        return bool(self.component_path) and self.component_path != "unknown"

    def absorb(self, newer: Issue) -> Issue:
        """Fold *newer* evidence for the same fingerprint into this issue.

        Counts and ``last_occurrence`` never decrease and severity never
        drops; identity, ``detected_at`` and ``status`` are preserved.
        """
        if newer.fingerprint != self.fingerprint:
            raise ValueError(
                f"Cannot absorb issue {newer.id} into {self.id}: fingerprints differ"
            )
        grew = (
            newer.event_count > self.event_count
            or newer.last_occurrence > self.last_occurrence
        )
        severity = newer.severity if newer.severity.rank > self.severity.rank else self.severity
        return dataclasses.replace(
            self,
            event_count=max(self.event_count, newer.event_count),
            unique_sessions=max(self.unique_sessions, newer.unique_sessions),
            last_occurrence=max(self.last_occurrence, newer.last_occurrence),
            severity=severity,
            sample_events=newer.sample_events if grew else self.sample_events,
            problem_statement=newer.problem_statement if grew else self.problem_statement,
        )

    def with_status(self, status: IssueStatus) -> Issue:
        return dataclasses.replace(self, status=status)


# ---------------------------------------------------------------------------
# Fix entity
# ---------------------------------------------------------------------------

_VALID_TRANSITIONS: dict[FixStatus, set[FixStatus]] = {
    FixStatus.PENDING: {FixStatus.APPROVED, FixStatus.MERGED, FixStatus.REJECTED},
    FixStatus.APPROVED: {FixStatus.MERGED, FixStatus.REJECTED},
    FixStatus.MERGED: set(),
    FixStatus.REJECTED: set(),
}


@dataclass(frozen=True)
class Fix:
    """A generated fix bundle queued for (or past) human review.

    Status changes produce a new ``Fix`` through :meth:`transition`; the
    lifecycle store is the only caller that persists them.
    """

    issue: Issue
    generated: GeneratedFix
    id: str = field(default_factory=lambda: f"fix_{uuid.uuid4().hex[:8]}")
    status: FixStatus = FixStatus.PENDING
    pr_info: PRInfo | None = None
    applied_files: tuple[str, ...] = ()
    validation: FixValidation | None = None
    rejection_reason: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return not _VALID_TRANSITIONS[self.status]

    def can_transition(self, target: FixStatus) -> bool:
        return target in _VALID_TRANSITIONS[self.status]

    def transition(
        self,
        target: FixStatus,
        pr_info: PRInfo | None = None,
        reason: str | None = None,
    ) -> Fix:
        """Return a copy in *target* status.

        Raises
        ------
        LifecycleStateError
            If the current status does not allow moving to *target*.
        """
        if not self.can_transition(target):
            raise LifecycleStateError(
                f"Fix is already {self.status.value}; cannot move to {target.value}",
                fix_id=self.id,
                current_state=self.status,
            )
        return dataclasses.replace(
            self,
            status=target,
            pr_info=pr_info if pr_info is not None else self.pr_info,
            rejection_reason=reason if reason is not None else self.rejection_reason,
            updated_at=time.time(),
        )

    def with_pr(self, pr_info: PRInfo | None) -> Fix:
        return dataclasses.replace(self, pr_info=pr_info, updated_at=time.time())
