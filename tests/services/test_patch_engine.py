"""Tests for exact-match patch application, new files and rollback."""

from __future__ import annotations

import os
import stat
import sys
import threading
from pathlib import Path

import pytest

from cro_autofix.domain.events import PatchesApplied, PatchesRolledBack
from cro_autofix.domain.exceptions import ConfigurationError, PatchNotFoundError
from cro_autofix.domain.values import CodePatch, NewFile
from cro_autofix.infrastructure.config import PatchConfig
from cro_autofix.infrastructure.event_bus import EventBus
from cro_autofix.services.patch_engine import PatchEngine, replace_first, undo_patch

FILE = "components/Widget.tsx"
ORIGINAL = "const a = 1;\r\nconst b = 2;\r\nconst a2 = 1;\r\n"


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    path = tmp_path / FILE
    path.parent.mkdir(parents=True)
    path.write_bytes(ORIGINAL.encode("utf-8"))
    return tmp_path


class TestReplaceFirst:
    def test_only_first_occurrence(self) -> None:
        patch = CodePatch(FILE, "= 1", "= 10")
        assert replace_first(ORIGINAL, patch) == ORIGINAL.replace("= 1", "= 10", 1)

    def test_missing(self) -> None:
        with pytest.raises(PatchNotFoundError, match="not found in components/Widget.tsx"):
            replace_first(ORIGINAL, CodePatch(FILE, "const z", "x"))


class TestApplyCodePatches:
    def test_exact_match_applies(self, tree: Path) -> None:
        engine = PatchEngine(tree)
        result = engine.apply_code_patches([CodePatch(FILE, "const b = 2;", "const b = 3;")])
        assert result.all_applied
        assert result.applied_files == [FILE]
        assert (tree / FILE).read_bytes() == ORIGINAL.replace("b = 2", "b = 3").encode("utf-8")

    def test_missing_old_code_leaves_file_byte_identical(self, tree: Path) -> None:
        before = (tree / FILE).read_bytes()
        result = PatchEngine(tree).apply_code_patches([CodePatch(FILE, "const b = 2;\n", "x")])
        assert not result.all_applied
        assert result.results[0].error == f"Code to replace not found in {FILE}"
        assert (tree / FILE).read_bytes() == before

    def test_partial_batch(self, tree: Path) -> None:
        patches = [
            CodePatch(FILE, "const a = 1;", "const a = 5;"),
            CodePatch(FILE, "const nope = 0;", "x"),
            CodePatch(FILE, "const b = 2;", "const b = 6;"),
        ]
        result = PatchEngine(tree).apply_code_patches(patches)
        assert not result.all_applied
        assert [r.success for r in result.results] == [True, False, True]
        assert "not found" in result.results[1].error
        content = (tree / FILE).read_bytes().decode("utf-8")
        assert "const a = 5;" in content and "const b = 6;" in content

    def test_missing_file(self, tree: Path) -> None:
        result = PatchEngine(tree).apply_code_patches([CodePatch("nope.tsx", "a", "b")])
        assert result.results[0].error == "File not found: nope.tsx"

    def test_path_outside_root(self, tree: Path) -> None:
        result = PatchEngine(tree).apply_code_patches([CodePatch("../evil.tsx", "a", "b")])
        assert not result.all_applied
        assert "escapes" in result.results[0].error
        with pytest.raises(ConfigurationError):
            PatchEngine(tree).read_file("../evil.tsx")

    def test_publishes_event(self, tree: Path) -> None:
        bus = EventBus()
        seen: list[PatchesApplied] = []
        bus.subscribe(PatchesApplied, seen.append)
        PatchEngine(tree, event_bus=bus).apply_code_patches(
            [CodePatch(FILE, "const b = 2;", "const b = 3;"), CodePatch(FILE, "zzz", "y")]
        )
        assert len(seen) == 1
        assert seen[0].failed_count == 1
        assert seen[0].applied_files == (FILE,)

    def test_concurrent_patches_on_one_file_all_land(self, tmp_path: Path) -> None:
        path = tmp_path / "list.ts"
        path.write_text("".join(f"// slot {i}\n" for i in range(20)), encoding="utf-8")
        engine = PatchEngine(tmp_path)

        def worker(i: int) -> None:
            engine.apply_code_patches([CodePatch("list.ts", f"// slot {i}\n", f"// done {i}\n")])

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        content = path.read_text(encoding="utf-8")
        assert all(f"// done {i}\n" in content for i in range(20))


class TestNewFiles:
    def test_create_and_refuse_overwrite(self, tree: Path) -> None:
        engine = PatchEngine(tree)
        created = engine.write_new_files([NewFile("components/ui/Modal.tsx", "export {}\n")])
        assert created.all_written
        assert (tree / "components/ui/Modal.tsx").read_text(encoding="utf-8") == "export {}\n"

        again = engine.write_new_files([NewFile("components/ui/Modal.tsx", "x")])
        assert not again.all_written
        assert again.results[0].error == "File already exists: components/ui/Modal.tsx"

    def test_overwrite_allowed_by_config(self, tree: Path) -> None:
        engine = PatchEngine(tree, PatchConfig(allow_overwrite=True))
        assert engine.write_new_files([NewFile(FILE, "replaced")]).all_written
        assert (tree / FILE).read_text(encoding="utf-8") == "replaced"


class TestRollback:
    def test_inverse_restores_exact_bytes(self, tree: Path) -> None:
        engine = PatchEngine(tree)
        patch = CodePatch(FILE, "const b = 2;", "const b = 42;")
        assert engine.apply_code_patches([patch]).all_applied
        assert engine.apply_code_patches([patch.inverse()]).all_applied
        assert (tree / FILE).read_bytes() == ORIGINAL.encode("utf-8")

    def test_session_rollback(self, tree: Path) -> None:
        bus = EventBus()
        seen: list[PatchesRolledBack] = []
        bus.subscribe(PatchesRolledBack, seen.append)
        engine = PatchEngine(tree, PatchConfig(allow_overwrite=True), event_bus=bus)
        extra = tree / "components/Other.tsx"
        extra.write_text("old other", encoding="utf-8")

        session = engine.new_session()
        engine.write_new_files(
            [NewFile("components/New.tsx", "new"), NewFile("components/Other.tsx", "new other")],
            session=session,
        )
        engine.apply_code_patches(
            [CodePatch(FILE, "const a = 1;", "const a = 7;"), CodePatch(FILE, "const a = 7;", "const a = 8;")],
            session=session,
        )
        assert not session.is_empty

        result = engine.rollback(session)
        assert result.all_applied
        assert (tree / FILE).read_bytes() == ORIGINAL.encode("utf-8")
        assert not (tree / "components/New.tsx").exists()
        assert extra.read_text(encoding="utf-8") == "old other"
        assert session.is_empty
        assert seen[-1].restored

        engine.rollback(session)
        assert (tree / FILE).read_bytes() == ORIGINAL.encode("utf-8")

    def test_created_file_modified_later_is_kept(self, tree: Path) -> None:
        engine = PatchEngine(tree)
        session = engine.new_session()
        engine.write_new_files([NewFile("components/New.tsx", "new")], session=session)
        (tree / "components/New.tsx").write_text("edited by someone", encoding="utf-8")
        engine.rollback(session)
        assert (tree / "components/New.tsx").exists()
        assert session.unrestored_paths() == ["components/New.tsx"]

    def test_deletion_is_rolled_back(self, tree: Path) -> None:
        engine = PatchEngine(tree)
        session = engine.new_session()
        result = engine.apply_code_patches(
            [CodePatch(FILE, "const b = 2;\r\n", ""), CodePatch(FILE, "nope", "x")], session=session
        )
        assert not result.all_applied
        assert "const b" not in (tree / FILE).read_text(encoding="utf-8")

        assert engine.rollback(session).all_applied
        assert (tree / FILE).read_bytes() == ORIGINAL.encode("utf-8")
        assert session.is_empty
        assert session.unrestored_paths() == []

    def test_emptied_file_is_refilled(self, tmp_path: Path) -> None:
        (tmp_path / "only.ts").write_text("export {};\n", encoding="utf-8")
        engine = PatchEngine(tmp_path)
        session = engine.new_session()
        engine.apply_code_patches([CodePatch("only.ts", "export {};\n", "")], session=session)
        assert (tmp_path / "only.ts").read_text(encoding="utf-8") == ""

        assert engine.rollback(session).all_applied
        assert (tmp_path / "only.ts").read_text(encoding="utf-8") == "export {};\n"

    def test_inverse_targets_the_patched_occurrence(self, tree: Path) -> None:
        engine = PatchEngine(tree)
        session = engine.new_session()
        engine.apply_code_patches([CodePatch(FILE, "const b = 2;", "const a = 1;")], session=session)
        assert engine.rollback(session).all_applied
        assert (tree / FILE).read_bytes() == ORIGINAL.encode("utf-8")

    def test_failed_inverse_stays_for_retry(self, tree: Path) -> None:
        engine = PatchEngine(tree)
        session = engine.new_session()
        engine.apply_code_patches([CodePatch(FILE, "const b = 2;", "const b = 3;")], session=session)
        patched = (tree / FILE).read_bytes()
        (tree / FILE).write_text("rewritten\n", encoding="utf-8")

        assert not engine.rollback(session).all_applied
        assert len(session.applied) == 1
        assert len(session.undo) == 1
        assert not session.is_empty

        (tree / FILE).write_bytes(patched)
        assert engine.rollback(session).all_applied
        assert (tree / FILE).read_bytes() == ORIGINAL.encode("utf-8")
        assert session.is_empty

    def test_replaced_file_modified_later_is_kept(self, tree: Path) -> None:
        bus = EventBus()
        seen: list[PatchesRolledBack] = []
        bus.subscribe(PatchesRolledBack, seen.append)
        engine = PatchEngine(tree, PatchConfig(allow_overwrite=True), event_bus=bus)
        other = tree / "components/Other.tsx"
        other.write_text("old other", encoding="utf-8")

        session = engine.new_session()
        engine.write_new_files([NewFile("components/Other.tsx", "new other")], session=session)
        other.write_text("edited by hand", encoding="utf-8")
        engine.rollback(session)

        assert other.read_text(encoding="utf-8") == "edited by hand"
        assert session.unrestored_paths() == ["components/Other.tsx"]
        assert not seen[-1].restored
        assert seen[-1].unrestored_paths == ("components/Other.tsx",)


class TestUndoPatch:
    def test_widens_until_unique(self) -> None:
        patch = CodePatch(FILE, "const b = 2;", "const a = 1;", description="swap")
        undo = undo_patch(ORIGINAL, patch)
        assert undo.old_code != "const a = 1;"
        assert undo.description == "Undo: swap"
        assert replace_first(replace_first(ORIGINAL, patch), undo) == ORIGINAL

    def test_unique_new_code_is_used_as_is(self) -> None:
        undo = undo_patch(ORIGINAL, CodePatch(FILE, "const b = 2;", "const b = 3;"))
        assert (undo.old_code, undo.new_code) == ("const b = 3;", "const b = 2;")


def _umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits")
class TestPermissions:
    def test_patched_file_keeps_mode(self, tree: Path) -> None:
        (tree / FILE).chmod(0o640)
        assert PatchEngine(tree).apply_code_patches([CodePatch(FILE, "const b = 2;", "const b = 3;")]).all_applied
        assert stat.S_IMODE((tree / FILE).stat().st_mode) == 0o640

    def test_new_file_gets_default_mode(self, tree: Path) -> None:
        PatchEngine(tree).write_new_files([NewFile("components/ui/Modal.tsx", "export {}\n")])
        mode = stat.S_IMODE((tree / "components/ui/Modal.tsx").stat().st_mode)
        assert mode == 0o666 & ~_umask()
