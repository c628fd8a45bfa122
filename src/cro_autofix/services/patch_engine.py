"""Patch engine: exact-match find-and-replace against the working tree.

A patch applies only if its ``old_code`` occurs verbatim in the file; the
first occurrence is replaced and the file is rewritten atomically (temp
file + ``os.replace``).  A patch that does not match leaves the file
byte-identical and is recorded as a failure; the rest of the batch still
runs.

Concurrency: every read-modify-write holds a per-file lock shared by all
engines in the process, so two requests touching the same file serialize
while requests on different files proceed in parallel.

A ``PatchSession`` remembers what one request changed so the request can
be undone: :meth:`PatchEngine.rollback` applies the inverse patches in
reverse order and removes or restores the files the session wrote.  An
inverse carries enough surrounding text to find the exact spot it undoes,
so deletions (empty ``new_code``) roll back too.  Nothing is restored over
a change made outside the session; such paths stay in
:meth:`PatchSession.unrestored_paths`.

Rewritten files keep their permission bits; new files get the usual
``0o666 & ~umask`` mode.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from cro_autofix.domain.events import PatchesApplied, PatchesRolledBack
from cro_autofix.domain.exceptions import ConfigurationError, PatchNotFoundError
from cro_autofix.domain.values import (
    ApplyResult,
    CodePatch,
    FileWriteResult,
    NewFile,
    PatchResult,
    WriteResult,
)
from cro_autofix.infrastructure.config import PatchConfig
from cro_autofix.infrastructure.event_bus import EventBus

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Per-file locks
# ---------------------------------------------------------------------------

_FILE_LOCKS: dict[Path, threading.Lock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    with _FILE_LOCKS_GUARD:
        lock = _FILE_LOCKS.get(path)
        if lock is None:
            lock = _FILE_LOCKS[path] = threading.Lock()
        return lock


def read_source(path: Path, encoding: str = "utf-8") -> str:
    """Read *path* without newline translation."""
    with open(path, encoding=encoding, newline="") as handle:
        return handle.read()


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


_UMASK = _current_umask()


def _atomic_write(path: Path, content: str, encoding: str) -> None:
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        mode = 0o666 & ~_UMASK
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def replace_first(content: str, patch: CodePatch) -> str:
    """Return *content* with the first occurrence of ``old_code`` replaced.

    Raises
    ------
    PatchNotFoundError
        If ``old_code`` is empty or does not occur verbatim in *content*.
    """
    if not patch.old_code or patch.old_code not in content:
        raise PatchNotFoundError(
            f"Code to replace not found in {patch.file_path}",
            file_path=patch.file_path,
        )
    return content.replace(patch.old_code, patch.new_code, 1)


_CONTEXT_STEP = 32


def undo_patch(before: str, patch: CodePatch) -> CodePatch:
    """Inverse of *patch* as applied to *before*, anchored by context.

    The inverse's ``old_code`` is ``new_code`` widened with the text around
    it until its first occurrence in the patched content is the one the
    patch wrote.  An empty ``new_code`` always gets some context.
    """
    start = before.index(patch.old_code)
    after = before[:start] + patch.new_code + before[start + len(patch.old_code):]
    end = start + len(patch.new_code)
    width = 0 if patch.new_code else _CONTEXT_STEP
    while True:
        lo = max(start - width, 0)
        hi = min(end + width, len(after))
        anchor = after[lo:hi]
        if anchor and after.find(anchor) == lo:
            break
        if lo == 0 and hi == len(after):
            break
        width += _CONTEXT_STEP
    return CodePatch(
        file_path=patch.file_path,
        old_code=anchor,
        new_code=after[lo:start] + patch.old_code + after[end:hi],
        description=f"Undo: {patch.description}" if patch.description else "Undo",
    )


# ---------------------------------------------------------------------------
# PatchSession
# ---------------------------------------------------------------------------


@dataclass
class PatchSession:
    """What one request changed in the working tree.

    Attributes
    ----------
    backups:
        Content of each patched file at first touch, keyed by relative path.
    applied:
        Successfully applied patches in application order.
    undo:
        Context-anchored inverse of each entry in ``applied``.
    created:
        New files written by the session and the content written.
    replaced:
        Pre-existing files overwritten by ``write_new_files`` and their
        previous content.
    overwritten:
        Content the session wrote over each path in ``replaced``.
    """

    root: Path
    encoding: str = "utf-8"
    id: str = field(default_factory=lambda: f"session_{uuid.uuid4().hex[:8]}")
    backups: dict[str, str] = field(default_factory=dict)
    applied: list[CodePatch] = field(default_factory=list)
    undo: list[CodePatch] = field(default_factory=list)
    created: dict[str, str] = field(default_factory=dict)
    replaced: dict[str, str] = field(default_factory=dict)
    overwritten: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.applied or self.created or self.replaced)

    def unrestored_paths(self) -> list[str]:
        """Paths whose current state differs from before the session."""
        found: list[str] = []
        for rel, original in {**self.backups, **self.replaced}.items():
            path = self.root / rel
            try:
                current = read_source(path, self.encoding)
            except FileNotFoundError:
                found.append(rel)
                continue
            if current != original:
                found.append(rel)
        for rel in self.created:
            if (self.root / rel).exists():
                found.append(rel)
        return sorted(set(found))


# ---------------------------------------------------------------------------
# PatchEngine
# ---------------------------------------------------------------------------


class PatchEngine:
    """Applies ``CodePatch`` batches and writes ``NewFile`` objects under *root*.

    Parameters
    ----------
    root:
        Working-tree root; every path is resolved relative to it and may
        not escape it.
    config:
        Write policy (default overwrite behaviour, encoding).
    event_bus:
        Optional bus receiving ``PatchesApplied`` / ``PatchesRolledBack``.
    """

    def __init__(
        self,
        root: str | Path,
        config: PatchConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.root = Path(root)
        self.config = config or PatchConfig()
        self._event_bus = event_bus

    def new_session(self) -> PatchSession:
        return PatchSession(root=self.root, encoding=self.config.encoding)

    def _resolve(self, relative: str) -> Path:
        root = self.root.resolve()
        candidate = (root / relative).resolve()
        if not candidate.is_relative_to(root):
            raise ConfigurationError(
                f"Path {relative} escapes the working tree", path=relative, field="file_path"
            )
        return candidate

    def read_file(self, relative: str) -> str:
        """Current content of *relative* under the root."""
        return read_source(self._resolve(relative), self.config.encoding)

    # -- code patches ------------------------------------------------------------

    def _apply_one(self, patch: CodePatch, session: PatchSession | None) -> PatchResult:
        try:
            path = self._resolve(patch.file_path)
        except ConfigurationError as exc:
            return PatchResult(patch, False, str(exc))

        encoding = self.config.encoding
        with _lock_for(path):
            try:
                content = read_source(path, encoding)
            except FileNotFoundError:
                return PatchResult(patch, False, f"File not found: {patch.file_path}")
            except (OSError, UnicodeDecodeError) as exc:
                return PatchResult(patch, False, f"Could not read {patch.file_path}: {exc}")

            try:
                updated = replace_first(content, patch)
            except PatchNotFoundError as exc:
                logger.info("Patch skipped: %s", exc)
                return PatchResult(patch, False, str(exc))

            try:
                _atomic_write(path, updated, encoding)
            except OSError as exc:
                return PatchResult(patch, False, f"Could not write {patch.file_path}: {exc}")

            if session is not None:
                session.backups.setdefault(patch.file_path, content)
                session.applied.append(patch)
                session.undo.append(undo_patch(content, patch))
        return PatchResult(patch, True)

    def apply_code_patches(
        self,
        patches: Iterable[CodePatch],
        session: PatchSession | None = None,
    ) -> ApplyResult:
        """Apply *patches* in order; a failing patch does not stop the batch.

        ``all_applied`` is true only when every patch succeeded.
        """
        results = tuple(self._apply_one(p, session) for p in patches)
        outcome = ApplyResult(all_applied=all(r.success for r in results), results=results)
        if not outcome.all_applied:
            logger.warning("Patch batch partially failed: %s", "; ".join(outcome.errors))
        if self._event_bus is not None and results:
            self._event_bus.publish(
                PatchesApplied(
                    source_id="patch_engine",
                    session_id=session.id if session is not None else "",
                    all_applied=outcome.all_applied,
                    applied_files=tuple(outcome.applied_files),
                    failed_count=sum(1 for r in results if not r.success),
                )
            )
        return outcome

    # -- new files ---------------------------------------------------------------

    def _write_one(self, new_file: NewFile, overwrite: bool, session: PatchSession | None) -> FileWriteResult:
        try:
            path = self._resolve(new_file.path)
        except ConfigurationError as exc:
            return FileWriteResult(new_file.path, False, str(exc))

        encoding = self.config.encoding
        with _lock_for(path):
            previous: str | None = None
            if path.exists():
                if not overwrite:
                    return FileWriteResult(new_file.path, False, f"File already exists: {new_file.path}")
                try:
                    previous = read_source(path, encoding)
                except (OSError, UnicodeDecodeError) as exc:
                    return FileWriteResult(new_file.path, False, f"Could not read {new_file.path}: {exc}")
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                _atomic_write(path, new_file.content, encoding)
            except OSError as exc:
                return FileWriteResult(new_file.path, False, f"Could not write {new_file.path}: {exc}")

            if session is not None:
                if previous is None:
                    session.created[new_file.path] = new_file.content
                else:
                    session.replaced.setdefault(new_file.path, previous)
                    session.overwritten[new_file.path] = new_file.content
        return FileWriteResult(new_file.path, True)

    def write_new_files(
        self,
        files: Iterable[NewFile],
        overwrite: bool | None = None,
        session: PatchSession | None = None,
    ) -> WriteResult:
        """Create *files*; existing paths fail unless overwriting is allowed."""
        allow = self.config.allow_overwrite if overwrite is None else overwrite
        results = tuple(self._write_one(f, allow, session) for f in files)
        return WriteResult(all_written=all(r.success for r in results), results=results)

    # -- rollback ----------------------------------------------------------------

    def _undo_one(self, inverse: CodePatch) -> PatchResult:
        if inverse.old_code:
            return self._apply_one(inverse, None)
        # The patch emptied the whole file; only a still-empty file is restored.
        path = self._resolve(inverse.file_path)
        encoding = self.config.encoding
        with _lock_for(path):
            try:
                current = read_source(path, encoding)
            except (OSError, UnicodeDecodeError) as exc:
                return PatchResult(inverse, False, f"Could not read {inverse.file_path}: {exc}")
            if current:
                return PatchResult(inverse, False, f"{inverse.file_path} changed since it was emptied")
            _atomic_write(path, inverse.new_code, encoding)
        return PatchResult(inverse, True)

    def rollback(self, session: PatchSession) -> ApplyResult:
        """Undo *session*: inverse patches in reverse order, then written files.

        Created files are only deleted, and replaced files only restored,
        while they still hold the content the session wrote.  Whatever could
        not be undone stays in the session, so calling this again retries
        just those steps.
        """
        pairs = list(zip(session.applied, session.undo))
        results: list[PatchResult] = []
        failed: list[tuple[CodePatch, CodePatch]] = []
        for pair in reversed(pairs):
            result = self._undo_one(pair[1])
            results.append(result)
            if not result.success:
                failed.append(pair)
        failed.reverse()
        session.applied[:] = [applied for applied, _ in failed]
        session.undo[:] = [inverse for _, inverse in failed]
        outcome = ApplyResult(all_applied=not failed, results=tuple(results))

        encoding = self.config.encoding
        for rel, written in list(session.created.items()):
            path = self._resolve(rel)
            with _lock_for(path):
                try:
                    current = read_source(path, encoding)
                except FileNotFoundError:
                    session.created.pop(rel)
                    continue
                if current == written:
                    path.unlink()
                    session.created.pop(rel)
                else:
                    logger.warning("Not removing %s: modified since it was created", rel)

        for rel, previous in list(session.replaced.items()):
            path = self._resolve(rel)
            with _lock_for(path):
                try:
                    current = read_source(path, encoding)
                except FileNotFoundError:
                    current = None
                if current != session.overwritten.get(rel):
                    logger.warning("Not restoring %s: modified since it was overwritten", rel)
                    continue
                _atomic_write(path, previous, encoding)
            session.replaced.pop(rel)
            session.overwritten.pop(rel, None)

        unrestored = session.unrestored_paths()
        if unrestored:
            logger.warning("Rollback of %s left changes in: %s", session.id, ", ".join(unrestored))
        else:
            logger.info("Rolled back %s", session.id)
        if self._event_bus is not None:
            self._event_bus.publish(
                PatchesRolledBack(
                    source_id="patch_engine",
                    session_id=session.id,
                    restored=not unrestored,
                    unrestored_paths=tuple(unrestored),
                )
            )
        return outcome
