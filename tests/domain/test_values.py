"""Tests for domain value objects."""

from __future__ import annotations

import pytest

from cro_autofix.domain.enums import GuardrailMode, GuardrailSource, ViolationSeverity
from cro_autofix.domain.values import (
    ApplyResult,
    CodePatch,
    ColorPalette,
    Event,
    FixValidation,
    GeneratedFix,
    GuardrailReport,
    GuardrailViolation,
    Guardrails,
    NewFile,
    PatchResult,
    SyntaxReport,
    SyntaxValidationResult,
)


class TestEvent:
    def test_requires_type_and_session(self) -> None:
        with pytest.raises(ValueError):
            Event(type="", timestamp=1.0, session_id="s")
        with pytest.raises(ValueError):
            Event(type="click", timestamp=1.0, session_id="")

    def test_ids_are_unique(self) -> None:
        a = Event(type="click", timestamp=1.0, session_id="s")
        b = Event(type="click", timestamp=1.0, session_id="s")
        assert a.id != b.id


class TestCodePatch:
    def test_inverse_swaps_old_and_new(self) -> None:
        patch = CodePatch("a.tsx", "old", "new", "change")
        inverse = patch.inverse()
        assert inverse.old_code == "new"
        assert inverse.new_code == "old"
        assert inverse.inverse().old_code == "old"

    def test_empty_path_rejected(self) -> None:
        with pytest.raises(ValueError):
            CodePatch("", "a", "b")
        with pytest.raises(ValueError):
            NewFile("", "content")


class TestGeneratedFix:
    def test_touched_paths_deduplicated_in_order(self) -> None:
        fix = GeneratedFix(
            success=True,
            patches=(CodePatch("b.tsx", "x", "y"), CodePatch("a.tsx", "x", "y"), CodePatch("b.tsx", "y", "z")),
            new_files=(NewFile("c.tsx", ""),),
        )
        assert fix.touched_paths == ("b.tsx", "a.tsx", "c.tsx")


class TestApplyResult:
    def test_applied_files_and_errors(self) -> None:
        ok = PatchResult(CodePatch("a.tsx", "x", "y"), True)
        bad = PatchResult(CodePatch("b.tsx", "x", "y"), False, "not found")
        result = ApplyResult(all_applied=False, results=(ok, bad))
        assert result.applied_files == ["a.tsx"]
        assert result.errors == ["b.tsx: not found"]


class TestFixValidation:
    def _syntax(self, valid: bool) -> SyntaxReport:
        errors = () if valid else ("Unbalanced braces: missing } (diff: 1)",)
        return SyntaxReport(
            valid=valid,
            summary="",
            results=(SyntaxValidationResult("a.tsx", valid, errors),),
        )

    def _guardrails(self, mode: GuardrailMode) -> GuardrailReport:
        violation = GuardrailViolation("color", "Color #ff0000 is not allowed", found="#ff0000")
        return GuardrailReport(valid=False, violations=(violation,), mode=mode, target="a.tsx")

    def test_advisory_violation_does_not_block(self) -> None:
        validation = FixValidation(self._syntax(True), (self._guardrails(GuardrailMode.ADVISORY),))
        assert not validation.valid
        assert not validation.blocked
        assert validation.issues == ["a.tsx: Color #ff0000 is not allowed"]

    def test_blocking_violation_blocks(self) -> None:
        validation = FixValidation(self._syntax(True), (self._guardrails(GuardrailMode.BLOCKING),))
        assert validation.blocked

    def test_syntax_failure_always_blocks(self) -> None:
        validation = FixValidation(self._syntax(False))
        assert validation.blocked
        assert validation.issues == ["a.tsx: Unbalanced braces: missing } (diff: 1)"]

    def test_warnings_keep_report_valid(self) -> None:
        warning = GuardrailViolation("spacing", "odd", severity=ViolationSeverity.WARNING)
        report = GuardrailReport(valid=True, violations=(warning,), mode=GuardrailMode.BLOCKING)
        assert not report.blocks


class TestGuardrails:
    def test_allowed_colors_lower_cased(self) -> None:
        g = Guardrails(colors=ColorPalette(backgrounds=("#FFF",), accents=("#3B82F6",)))
        assert g.allowed_colors() == frozenset({"#fff", "#3b82f6"})

    def test_is_dynamic(self) -> None:
        assert Guardrails(source=GuardrailSource.HYBRID).is_dynamic
        assert not Guardrails().is_dynamic
