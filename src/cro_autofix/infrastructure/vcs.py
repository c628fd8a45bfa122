"""Version-control collaborator used by the fix lifecycle.

Each fix gets a preview branch and pull request keyed by the fix id.  The
pipeline only depends on the ``VersionControl`` interface; hosting-specific
clients (GitHub, GitLab) implement it outside this package.
``InMemoryVersionControl`` is a complete local implementation for tests and
dry runs.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from abc import ABC, abstractmethod

from cro_autofix.domain.enums import PRStatus
from cro_autofix.domain.values import BranchInfo, PRInfo, VCSResult

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "cro-fix/"


def branch_name_for(fix_id: str) -> str:
    return f"{BRANCH_PREFIX}{fix_id}"


class VersionControl(ABC):
    """Branch and pull-request operations the lifecycle needs."""

    @abstractmethod
    def list_branches(self, prefix: str = BRANCH_PREFIX) -> list[BranchInfo]:
        """Return remote branches whose name starts with *prefix*."""

    @abstractmethod
    def read_file_at_ref(self, ref: str, path: str) -> str:
        """Return the content of *path* at *ref*.

        Raises
        ------
        FileNotFoundError
            If *path* does not exist at *ref*.
        """

    @abstractmethod
    def create_or_update_pr(self, fix_id: str) -> PRInfo:
        """Open (or refresh) the pull request for *fix_id*."""

    @abstractmethod
    def merge_pr(self, fix_id: str) -> VCSResult:
        """Merge the pull request for *fix_id*."""

    @abstractmethod
    def close_pr(self, fix_id: str) -> VCSResult:
        """Close the pull request for *fix_id* without merging."""

    @abstractmethod
    def get_pr_info(self, fix_id: str) -> PRInfo | None:
        """Return the pull request for *fix_id*, or ``None``."""


class InMemoryVersionControl(VersionControl):
    """Process-local branches and pull requests.

    Parameters
    ----------
    files:
        Optional ``{ref: {path: content}}`` snapshot served by
        :meth:`read_file_at_ref`.
    url_base:
        Prefix used to build PR URLs.
    """

    def __init__(
        self,
        files: dict[str, dict[str, str]] | None = None,
        url_base: str = "https://example.invalid/pulls",
    ) -> None:
        self._files = {ref: dict(paths) for ref, paths in (files or {}).items()}
        self._url_base = url_base
        self._prs: dict[str, PRInfo] = {}
        self._branches: dict[str, BranchInfo] = {}
        self._lock = threading.Lock()
        self._counter = 0
        self.fail_merge: set[str] = set()
        self.fail_close: set[str] = set()

    def list_branches(self, prefix: str = BRANCH_PREFIX) -> list[BranchInfo]:
        with self._lock:
            return sorted(
                (b for name, b in self._branches.items() if name.startswith(prefix)),
                key=lambda b: b.name,
            )

    def read_file_at_ref(self, ref: str, path: str) -> str:
        with self._lock:
            try:
                return self._files[ref][path]
            except KeyError:
                raise FileNotFoundError(f"{path} not found at {ref}") from None

    def create_or_update_pr(self, fix_id: str) -> PRInfo:
        branch = branch_name_for(fix_id)
        with self._lock:
            existing = self._prs.get(fix_id)
            if existing is not None and existing.status is PRStatus.OPEN:
                return existing
            self._counter += 1
            pr = PRInfo(
                branch_name=branch,
                status=PRStatus.OPEN,
                url=f"{self._url_base}/{self._counter}",
            )
            self._prs[fix_id] = pr
            self._branches[branch] = BranchInfo(
                name=branch,
                last_commit_message=f"Apply CRO fix {fix_id}",
                last_commit_date=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            )
        logger.info("Opened PR %s for %s", pr.url, fix_id)
        return pr

    def merge_pr(self, fix_id: str) -> VCSResult:
        with self._lock:
            pr = self._prs.get(fix_id)
            if pr is None:
                return VCSResult(False, f"No pull request for {fix_id}")
            if fix_id in self.fail_merge:
                return VCSResult(False, f"Merge conflict on {pr.branch_name}")
            if pr.status is not PRStatus.OPEN:
                return VCSResult(False, f"Pull request is {pr.status.value}")
            self._prs[fix_id] = dataclasses.replace(pr, status=PRStatus.MERGED)
            self._branches.pop(pr.branch_name, None)
        return VCSResult(True, f"Merged {pr.branch_name}")

    def close_pr(self, fix_id: str) -> VCSResult:
        with self._lock:
            pr = self._prs.get(fix_id)
            if pr is None:
                return VCSResult(False, f"No pull request for {fix_id}")
            if fix_id in self.fail_close:
                return VCSResult(False, f"Could not close {pr.branch_name}")
            if pr.status is not PRStatus.OPEN:
                return VCSResult(False, f"Pull request is already {pr.status.value}")
            self._prs[fix_id] = dataclasses.replace(pr, status=PRStatus.CLOSED)
            self._branches.pop(pr.branch_name, None)
        return VCSResult(True, f"Closed {pr.branch_name}")

    def get_pr_info(self, fix_id: str) -> PRInfo | None:
        with self._lock:
            return self._prs.get(fix_id)
