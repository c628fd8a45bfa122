"""Fix lifecycle store: persistence and status transitions for fixes.

A fix is ``pending`` from the moment it is stored until a human approves
(``merged``) or rejects it (``rejected``); both are terminal.  The store
owns every status change:

* :meth:`FixLifecycleStore.update_fix_status` is a compare-and-swap under a
  lock, so a stale caller fails instead of overwriting a newer status.
* :meth:`~FixLifecycleStore.approve` and :meth:`~FixLifecycleStore.reject`
  allow at most one in-flight transition per fix id.  Approval merges the
  pull request first and does not advance if the merge fails; rejection
  tolerates a pull request that cannot be closed.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Iterable

from cro_autofix.domain.entities import Fix, Issue
from cro_autofix.domain.enums import FixStatus, LifecycleStage, PRStatus
from cro_autofix.domain.events import FixStatusChanged
from cro_autofix.domain.exceptions import (
    FixNotFoundError,
    LifecycleStateError,
    VersionControlError,
)
from cro_autofix.domain.values import FixValidation, GeneratedFix, PRInfo
from cro_autofix.infrastructure.event_bus import EventBus
from cro_autofix.infrastructure.kv_store import KeyValueStore
from cro_autofix.infrastructure.serialization import fix_from_dict, fix_to_dict
from cro_autofix.infrastructure.vcs import VersionControl

logger = logging.getLogger(__name__)

KEY_PREFIX = "fix:"


def _key(fix_id: str) -> str:
    return f"{KEY_PREFIX}{fix_id}"


class FixLifecycleStore:
    """Persists ``Fix`` records and coordinates their status transitions.

    Parameters
    ----------
    store:
        Key-value persistence; each fix is stored under ``fix:<id>``.
    vcs:
        Optional version-control collaborator for pull requests.
    event_bus:
        Optional bus receiving ``FixStatusChanged``.
    open_prs:
        Open a pull request when a fix is created.
    """

    def __init__(
        self,
        store: KeyValueStore,
        vcs: VersionControl | None = None,
        event_bus: EventBus | None = None,
        open_prs: bool = True,
    ) -> None:
        self._store = store
        self._vcs = vcs
        self._event_bus = event_bus
        self._open_prs = open_prs
        self._lock = threading.RLock()
        self._in_flight: set[str] = set()

    # -- persistence -------------------------------------------------------------

    def _save(self, fix: Fix) -> None:
        self._store.write(_key(fix.id), fix_to_dict(fix))

    def _load(self, fix_id: str) -> Fix:
        data = self._store.read(_key(fix_id))
        if data is None:
            raise FixNotFoundError(f"Fix {fix_id} not found", fix_id=fix_id)
        return fix_from_dict(data)

    def _publish(self, fix: Fix, previous: FixStatus | None, reason: str | None = None) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(
                FixStatusChanged(
                    source_id="fix_lifecycle",
                    fix_id=fix.id,
                    previous_status=previous,
                    new_status=fix.status,
                    reason=reason,
                )
            )

    # -- queries -----------------------------------------------------------------

    def get_fix(self, fix_id: str) -> Fix | None:
        data = self._store.read(_key(fix_id))
        return fix_from_dict(data) if data is not None else None

    def list_fixes(self, status: FixStatus | None = None) -> list[Fix]:
        """All stored fixes, oldest first, optionally filtered by *status*."""
        fixes: Iterable[Fix] = (
            fix
            for fix in (self.get_fix(k[len(KEY_PREFIX):]) for k in self._store.keys(KEY_PREFIX))
            if fix is not None
        )
        if status is not None:
            fixes = (f for f in fixes if f.status is status)
        return sorted(fixes, key=lambda f: (f.created_at, f.id))

    def pending_fixes(self) -> list[Fix]:
        return self.list_fixes(FixStatus.PENDING)

    def fixes_for_issue(self, issue_id: str) -> list[Fix]:
        return [f for f in self.list_fixes() if f.issue.id == issue_id]

    def stage_for(self, issue: Issue) -> LifecycleStage:
        """``detected`` until a fix exists, then the latest fix's status."""
        fixes = self.fixes_for_issue(issue.id)
        if not fixes:
            return LifecycleStage.DETECTED
        return LifecycleStage(fixes[-1].status.value)

    # -- creation and removal ----------------------------------------------------

    def create_fix(
        self,
        issue: Issue,
        generated: GeneratedFix,
        applied_files: Iterable[str] = (),
        validation: FixValidation | None = None,
    ) -> Fix:
        """Store a new ``pending`` fix, opening its pull request if configured."""
        fix = Fix(
            issue=issue,
            generated=generated,
            applied_files=tuple(applied_files),
            validation=validation,
        )
        if self._vcs is not None and self._open_prs:
            try:
                fix = fix.with_pr(self._vcs.create_or_update_pr(fix.id))
            except Exception as exc:
                logger.warning("Could not open a pull request for %s: %s", fix.id, exc)
        with self._lock:
            self._save(fix)
        logger.info("Created fix %s for issue %s", fix.id, issue.id)
        self._publish(fix, None)
        return fix

    def delete_fix(self, fix_id: str) -> bool:
        with self._lock:
            return self._store.delete(_key(fix_id))

    def clear(self) -> int:
        """Delete every stored fix; returns how many were removed."""
        with self._lock:
            removed = 0
            for key in self._store.keys(KEY_PREFIX):
                removed += int(self._store.delete(key))
            self._in_flight.clear()
            return removed

    # -- transitions -------------------------------------------------------------

    def update_fix_status(
        self,
        fix_id: str,
        status: FixStatus,
        pr_info: PRInfo | None = None,
        expected: FixStatus | None = None,
        reason: str | None = None,
    ) -> Fix:
        """Move a fix to *status*, atomically.

        Parameters
        ----------
        expected:
            When given, the transition only happens if the stored status is
            still *expected* (compare-and-swap).

        Raises
        ------
        FixNotFoundError
            If *fix_id* is unknown.
        LifecycleStateError
            If the stored status differs from *expected* or does not allow
            moving to *status*; ``current_state`` carries the stored status.
        """
        with self._lock:
            fix = self._load(fix_id)
            if expected is not None and fix.status is not expected:
                raise LifecycleStateError(
                    f"Fix {fix_id} is {fix.status.value}, expected {expected.value}",
                    fix_id=fix_id,
                    current_state=fix.status,
                )
            previous = fix.status
            updated = fix.transition(status, pr_info=pr_info, reason=reason)
            self._save(updated)
        logger.info("Fix %s: %s -> %s", fix_id, previous.value, status.value)
        self._publish(updated, previous, reason)
        return updated

    def _begin(self, fix_id: str) -> Fix:
        with self._lock:
            fix = self._load(fix_id)
            if fix.status is not FixStatus.PENDING or fix_id in self._in_flight:
                raise LifecycleStateError(
                    f"Fix {fix_id} is {fix.status.value}"
                    + (" with a transition in progress" if fix_id in self._in_flight else ""),
                    fix_id=fix_id,
                    current_state=fix.status,
                )
            self._in_flight.add(fix_id)
            return fix

    def _end(self, fix_id: str) -> None:
        with self._lock:
            self._in_flight.discard(fix_id)

    def _merge(self, fix_id: str, pr_info: PRInfo | None) -> PRInfo | None:
        try:
            current = self._vcs.get_pr_info(fix_id)
            if current is None:
                return pr_info
            result = self._vcs.merge_pr(fix_id)
            if result.success:
                return self._vcs.get_pr_info(fix_id) or dataclasses.replace(
                    current, status=PRStatus.MERGED
                )
            message = result.message
        except VersionControlError:
            raise
        except Exception as exc:
            logger.warning("Merging pull request for %s raised: %s", fix_id, exc)
            raise VersionControlError(
                f"Could not merge pull request for {fix_id}: {exc}",
                fix_id=fix_id,
                operation="merge",
            ) from exc
        raise VersionControlError(
            f"Could not merge pull request for {fix_id}: {message}",
            fix_id=fix_id,
            operation="merge",
        )

    def approve(self, fix_id: str) -> Fix:
        """Merge the fix's pull request (if any), then mark it ``merged``.

        Raises
        ------
        LifecycleStateError
            If the fix is not pending or another transition is in flight.
        VersionControlError
            If the pull request exists but cannot be merged, or the version
            control backend raises; the fix stays pending.
        """
        fix = self._begin(fix_id)
        try:
            pr_info = fix.pr_info
            if self._vcs is not None:
                pr_info = self._merge(fix_id, pr_info)
            return self.update_fix_status(
                fix_id, FixStatus.MERGED, pr_info=pr_info, expected=FixStatus.PENDING
            )
        finally:
            self._end(fix_id)

    def reject(self, fix_id: str, reason: str | None = None) -> Fix:
        """Close the fix's pull request (failures tolerated) and mark it ``rejected``.

        Raises
        ------
        LifecycleStateError
            If the fix is not pending or another transition is in flight.
        """
        fix = self._begin(fix_id)
        try:
            pr_info = fix.pr_info
            if self._vcs is not None:
                try:
                    result = self._vcs.close_pr(fix_id)
                except Exception as exc:
                    logger.warning("Closing pull request for %s raised: %s", fix_id, exc)
                else:
                    if result.success:
                        pr_info = self._vcs.get_pr_info(fix_id) or pr_info
                    else:
                        logger.warning(
                            "Could not close pull request for %s: %s", fix_id, result.message
                        )
            return self.update_fix_status(
                fix_id,
                FixStatus.REJECTED,
                pr_info=pr_info,
                expected=FixStatus.PENDING,
                reason=reason,
            )
        finally:
            self._end(fix_id)
