"""Value objects for the CRO autofix pipeline.

All types here are frozen dataclasses -- immutable, compared by value.
They represent interaction events, code changes, validation outcomes and
version-control records that have no identity beyond their content.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from .enums import (
    GuardrailMode,
    GuardrailSource,
    PRStatus,
    ViolationSeverity,
)

# ---------------------------------------------------------------------------
# Interaction events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """A single tracked interaction on the storefront.

    ``timestamp`` is in epoch milliseconds, as emitted by the browser
    tracker.  ``type`` is kept as a string so new tracker event types can be
    stored without a code change.
    """

    type: str
    timestamp: float
    session_id: str
    element_selector: str = ""
    page_url: str = ""
    element_text: str | None = None
    product_id: str | None = None
    viewport: tuple[int, int] | None = None
    id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:12]}")

    def __post_init__(self) -> None:
        if not self.type:
            raise ValueError("Event.type must be non-empty")
        if not self.session_id:
            raise ValueError("Event.session_id must be non-empty")


# ---------------------------------------------------------------------------
# Code changes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CodePatch:
    """Find-and-replace instruction against one file's exact current text.

    ``old_code`` must occur verbatim in the file; ``new_code`` replaces the
    first occurrence only.  An empty ``old_code`` is representable (it is
    the inverse of a deletion) but never applicable.
    """

    file_path: str
    old_code: str
    new_code: str
    description: str = ""

    def __post_init__(self) -> None:
        if not self.file_path:
            raise ValueError("CodePatch.file_path must be non-empty")

    def inverse(self) -> CodePatch:
        """Return the patch that undoes this one."""
        return CodePatch(
            file_path=self.file_path,
            old_code=self.new_code,
            new_code=self.old_code,
            description=f"Revert: {self.description}" if self.description else "Revert",
        )


@dataclass(frozen=True)
class NewFile:
    """A whole file the generator wants created."""

    path: str
    content: str
    description: str = ""

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("NewFile.path must be non-empty")


@dataclass(frozen=True)
class SourceFile:
    """Current contents of a source file handed to the generator as context."""

    path: str
    content: str


@dataclass(frozen=True)
class GeneratedFix:
    """The code generator's output for one issue.

    When ``success`` is true every patch, merged into its file, and every new
    file passed the syntax validator.
    """

    success: bool
    patches: tuple[CodePatch, ...] = ()
    new_files: tuple[NewFile, ...] = ()
    explanation: str = ""
    agent_used: str = ""
    error: str | None = None
    attempts: int = 0

    @property
    def touched_paths(self) -> tuple[str, ...]:
        """Distinct paths this fix modifies or creates, in first-seen order."""
        seen: dict[str, None] = {}
        for patch in self.patches:
            seen.setdefault(patch.file_path, None)
        for new_file in self.new_files:
            seen.setdefault(new_file.path, None)
        return tuple(seen)


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a single patch."""

    valid: bool
    issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class SyntaxValidationResult:
    """Syntax errors found in one patch or new file.

    ``target`` names the file the errors belong to; results are never merged
    across files.
    """

    target: str
    valid: bool
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class SyntaxReport:
    """Aggregate of per-target syntax results."""

    valid: bool
    summary: str
    results: tuple[SyntaxValidationResult, ...] = ()

    @property
    def errors(self) -> list[str]:
        """Flattened ``"<target>: <error>"`` strings for reporting."""
        return [f"{r.target}: {e}" for r in self.results for e in r.errors]


@dataclass(frozen=True)
class GuardrailViolation:
    """One literal value in generated code that the style policy forbids."""

    rule: str
    message: str
    severity: ViolationSeverity = ViolationSeverity.ERROR
    found: str = ""
    expected: str = ""


@dataclass(frozen=True)
class GuardrailReport:
    """Guardrail check outcome for one patch or new file.

    ``valid`` is true when no ``error``-severity violation was found.
    ``blocks`` tells the caller whether this report should stop application.
    """

    valid: bool
    violations: tuple[GuardrailViolation, ...] = ()
    used_dynamic_guardrails: bool = False
    guardrails_source: GuardrailSource = GuardrailSource.MANUAL
    mode: GuardrailMode = GuardrailMode.ADVISORY
    target: str = ""

    @property
    def blocks(self) -> bool:
        return self.mode is GuardrailMode.BLOCKING and not self.valid

    @property
    def issues(self) -> list[str]:
        return [v.message for v in self.violations]


@dataclass(frozen=True)
class FixValidation:
    """Combined gate outcome for one generated fix.

    Per-file reports are kept side by side, never merged.  ``blocked`` is
    true when the syntax gate failed or a blocking guardrail report was
    invalid.
    """

    syntax: SyntaxReport
    guardrails: tuple[GuardrailReport, ...] = ()

    @property
    def blocked(self) -> bool:
        return not self.syntax.valid or any(r.blocks for r in self.guardrails)

    @property
    def valid(self) -> bool:
        return self.syntax.valid and all(r.valid for r in self.guardrails)

    @property
    def issues(self) -> list[str]:
        found = list(self.syntax.errors)
        for report in self.guardrails:
            found.extend(f"{report.target}: {msg}" for msg in report.issues)
        return found


# ---------------------------------------------------------------------------
# Guardrail policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColorPalette:
    """Allowed color literals, grouped by where they may be used."""

    backgrounds: tuple[str, ...] = ()
    text: tuple[str, ...] = ()
    borders: tuple[str, ...] = ()
    accents: tuple[str, ...] = ()


@dataclass(frozen=True)
class Guardrails:
    """Site style/theme policy that generated code must respect.

    Attributes
    ----------
    colors:
        Allowed color literals per usage.
    font_weights:
        Allowed numeric font weights.
    border_radii:
        Allowed border radii in px (``(0,)`` means sharp corners only).
    spacing:
        Allowed padding/margin values in px.  Empty disables the check.
    button_font_size_range:
        Inclusive ``(min, max)`` px range for button text.
    min_tap_target:
        Minimum interactive element size in px (prompt guidance only).
    """

    site_id: str = "default"
    source: GuardrailSource = GuardrailSource.MANUAL
    colors: ColorPalette = field(default_factory=ColorPalette)
    font_weights: tuple[int, ...] = (500, 600)
    border_radii: tuple[int, ...] = (0,)
    spacing: tuple[int, ...] = ()
    button_font_size_range: tuple[int, int] = (12, 14)
    min_tap_target: int = 44

    @property
    def is_dynamic(self) -> bool:
        return self.source in (GuardrailSource.DYNAMIC, GuardrailSource.HYBRID)

    def allowed_colors(self) -> frozenset[str]:
        """Every color allowed in any position, lower-cased."""
        palette = self.colors
        return frozenset(
            c.lower()
            for group in (palette.backgrounds, palette.text, palette.borders, palette.accents)
            for c in group
        )


# ---------------------------------------------------------------------------
# Patch engine results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PatchResult:
    """Outcome of applying one patch."""

    patch: CodePatch
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of one ``apply_code_patches`` call.

    ``all_applied`` is true only when every patch in the batch succeeded.
    """

    all_applied: bool
    results: tuple[PatchResult, ...] = ()

    @property
    def applied_files(self) -> list[str]:
        seen: dict[str, None] = {}
        for result in self.results:
            if result.success:
                seen.setdefault(result.patch.file_path, None)
        return list(seen)

    @property
    def errors(self) -> list[str]:
        return [
            f"{r.patch.file_path}: {r.error}" for r in self.results if not r.success
        ]


@dataclass(frozen=True)
class FileWriteResult:
    """Outcome of writing one new file."""

    path: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one ``write_new_files`` call."""

    all_written: bool
    results: tuple[FileWriteResult, ...] = ()


# ---------------------------------------------------------------------------
# Version control records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PRInfo:
    """Pull request linked to a fix."""

    branch_name: str
    status: PRStatus = PRStatus.OPEN
    url: str | None = None


@dataclass(frozen=True)
class BranchInfo:
    """A remote branch as reported by the version-control collaborator."""

    name: str
    last_commit_message: str = ""
    last_commit_date: str = ""


@dataclass(frozen=True)
class VCSResult:
    """Outcome of a merge or close request."""

    success: bool
    message: str = ""


# ---------------------------------------------------------------------------
# Component registry entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComponentMapping:
    """Links a CSS selector to the source component that renders it."""

    selector: str
    component_path: str
    component_name: str
    data_attributes: tuple[str, ...] = ()


@dataclass(frozen=True)
class IssueSummary:
    """Counts over a batch of detected issues."""

    total: int
    by_severity: dict[str, int] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)
    top_components: tuple[tuple[str, int], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_severity": dict(self.by_severity),
            "by_category": dict(self.by_category),
            "top_components": [
                {"component": name, "count": count} for name, count in self.top_components
            ],
        }
