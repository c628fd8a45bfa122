"""Serialization utilities for the CRO autofix pipeline.

Provides ``to_dict`` / ``from_dict`` conversion for the records that cross a
persistence boundary: interaction events, issues, generated fixes, fixes,
validation reports and guardrail policies.  Field names on disk use the
camelCase keys of the storefront tracker and dashboard
(``sessionId``, ``oldCode``, ``prInfo``) so stores stay readable by them.

Design goals:
- Every ``to_dict`` output is JSON-serializable (enums as values, tuples as
  lists).
- ``from_dict`` reconstructors accept permissive input (missing optional
  keys, extra keys) and raise ``ValueError`` for unrecoverable data.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from cro_autofix.domain.entities import Fix, Issue
from cro_autofix.domain.enums import (
    FixStatus,
    GuardrailMode,
    GuardrailSource,
    IssueCategory,
    IssueStatus,
    PatternKind,
    PRStatus,
    Severity,
    ViolationSeverity,
)
from cro_autofix.domain.values import (
    CodePatch,
    ColorPalette,
    Event,
    FixValidation,
    GeneratedFix,
    GuardrailReport,
    Guardrails,
    GuardrailViolation,
    NewFile,
    PRInfo,
    SyntaxReport,
    SyntaxValidationResult,
)

logger = logging.getLogger(__name__)


def _require(data: dict[str, Any], key: str, kind: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"{kind} record is missing required field {key!r}") from None


# =========================================================================== #
#  Events                                                                      #
# =========================================================================== #

def event_to_dict(event: Event) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": event.id,
        "type": event.type,
        "timestamp": event.timestamp,
        "sessionId": event.session_id,
        "elementSelector": event.element_selector,
        "pageUrl": event.page_url,
    }
    if event.element_text is not None:
        data["elementText"] = event.element_text
    if event.product_id is not None:
        data["productId"] = event.product_id
    if event.viewport is not None:
        data["viewport"] = {"width": event.viewport[0], "height": event.viewport[1]}
    return data


def event_from_dict(data: dict[str, Any]) -> Event:
    viewport = data.get("viewport")
    if isinstance(viewport, dict):
        viewport = (int(viewport.get("width", 0)), int(viewport.get("height", 0)))
    elif viewport is not None:
        viewport = (int(viewport[0]), int(viewport[1]))
    kwargs: dict[str, Any] = {
        "type": _require(data, "type", "Event"),
        "timestamp": float(_require(data, "timestamp", "Event")),
        "session_id": _require(data, "sessionId", "Event"),
        "element_selector": data.get("elementSelector") or "",
        "page_url": data.get("pageUrl") or "",
        "element_text": data.get("elementText"),
        "product_id": data.get("productId"),
        "viewport": viewport,
    }
    if data.get("id"):
        kwargs["id"] = data["id"]
    return Event(**kwargs)


# =========================================================================== #
#  Issues                                                                      #
# =========================================================================== #

def issue_to_dict(issue: Issue) -> dict[str, Any]:
    return {
        "id": issue.id,
        "fingerprint": issue.fingerprint,
        "status": issue.status.value,
        "detectedAt": issue.detected_at,
        "lastOccurrence": issue.last_occurrence,
        "category": issue.category.value,
        "severity": issue.severity.value,
        "patternId": issue.pattern_id.value,
        "elementSelector": issue.element_selector,
        "sectionId": issue.page_url,
        "componentPath": issue.component_path,
        "componentName": issue.component_name,
        "eventCount": issue.event_count,
        "uniqueSessions": issue.unique_sessions,
        "sampleEvents": [event_to_dict(e) for e in issue.sample_events],
        "problemStatement": issue.problem_statement,
        "userIntent": issue.user_intent,
        "currentOutcome": issue.current_outcome,
        "suggestedFix": issue.suggested_fix,
    }


def issue_from_dict(data: dict[str, Any]) -> Issue:
    return Issue(
        pattern_id=PatternKind(_require(data, "patternId", "Issue")),
        element_selector=data.get("elementSelector", ""),
        component_path=data.get("componentPath", "unknown"),
        component_name=data.get("componentName", "Unknown"),
        category=IssueCategory(_require(data, "category", "Issue")),
        severity=Severity(_require(data, "severity", "Issue")),
        event_count=int(data.get("eventCount", 0)),
        unique_sessions=int(data.get("uniqueSessions", 0)),
        detected_at=float(data.get("detectedAt", 0.0)),
        last_occurrence=float(data.get("lastOccurrence", 0.0)),
        sample_events=tuple(event_from_dict(e) for e in data.get("sampleEvents", [])),
        problem_statement=data.get("problemStatement", ""),
        user_intent=data.get("userIntent", ""),
        current_outcome=data.get("currentOutcome", ""),
        suggested_fix=data.get("suggestedFix", ""),
        page_url=data.get("sectionId", ""),
        status=IssueStatus(data.get("status", IssueStatus.DETECTED.value)),
    )


# =========================================================================== #
#  Generated code                                                              #
# =========================================================================== #

def code_patch_to_dict(patch: CodePatch) -> dict[str, Any]:
    return {
        "filePath": patch.file_path,
        "description": patch.description,
        "oldCode": patch.old_code,
        "newCode": patch.new_code,
    }


def code_patch_from_dict(data: dict[str, Any]) -> CodePatch:
    return CodePatch(
        file_path=_require(data, "filePath", "CodePatch"),
        old_code=_require(data, "oldCode", "CodePatch"),
        new_code=_require(data, "newCode", "CodePatch"),
        description=data.get("description", ""),
    )


def new_file_to_dict(new_file: NewFile) -> dict[str, Any]:
    return {
        "path": new_file.path,
        "content": new_file.content,
        "description": new_file.description,
    }


def new_file_from_dict(data: dict[str, Any]) -> NewFile:
    return NewFile(
        path=_require(data, "path", "NewFile"),
        content=_require(data, "content", "NewFile"),
        description=data.get("description", ""),
    )


def generated_fix_to_dict(fix: GeneratedFix) -> dict[str, Any]:
    data: dict[str, Any] = {
        "success": fix.success,
        "patches": [code_patch_to_dict(p) for p in fix.patches],
        "newFiles": [new_file_to_dict(f) for f in fix.new_files],
        "explanation": fix.explanation,
        "agentUsed": fix.agent_used,
        "attempts": fix.attempts,
    }
    if fix.error is not None:
        data["error"] = fix.error
    return data


def generated_fix_from_dict(data: dict[str, Any]) -> GeneratedFix:
    return GeneratedFix(
        success=bool(data.get("success", False)),
        patches=tuple(code_patch_from_dict(p) for p in data.get("patches", [])),
        new_files=tuple(new_file_from_dict(f) for f in data.get("newFiles", [])),
        explanation=data.get("explanation", ""),
        agent_used=data.get("agentUsed", ""),
        error=data.get("error"),
        attempts=int(data.get("attempts", 0)),
    )


# =========================================================================== #
#  Validation reports                                                          #
# =========================================================================== #

def syntax_report_to_dict(report: SyntaxReport) -> dict[str, Any]:
    return {
        "valid": report.valid,
        "summary": report.summary,
        "results": [
            {"target": r.target, "valid": r.valid, "errors": list(r.errors)}
            for r in report.results
        ],
    }


def syntax_report_from_dict(data: dict[str, Any]) -> SyntaxReport:
    return SyntaxReport(
        valid=bool(data.get("valid", False)),
        summary=data.get("summary", ""),
        results=tuple(
            SyntaxValidationResult(
                target=r.get("target", ""),
                valid=bool(r.get("valid", False)),
                errors=tuple(r.get("errors", [])),
            )
            for r in data.get("results", [])
        ),
    )


def guardrail_report_to_dict(report: GuardrailReport) -> dict[str, Any]:
    return {
        "target": report.target,
        "valid": report.valid,
        "mode": report.mode.value,
        "usedDynamicGuardrails": report.used_dynamic_guardrails,
        "guardrailsSource": report.guardrails_source.value,
        "violations": [
            {
                "rule": v.rule,
                "message": v.message,
                "severity": v.severity.value,
                "found": v.found,
                "expected": v.expected,
            }
            for v in report.violations
        ],
    }


def guardrail_report_from_dict(data: dict[str, Any]) -> GuardrailReport:
    return GuardrailReport(
        valid=bool(data.get("valid", False)),
        violations=tuple(
            GuardrailViolation(
                rule=v.get("rule", ""),
                message=v.get("message", ""),
                severity=ViolationSeverity(v.get("severity", "error")),
                found=v.get("found", ""),
                expected=v.get("expected", ""),
            )
            for v in data.get("violations", [])
        ),
        used_dynamic_guardrails=bool(data.get("usedDynamicGuardrails", False)),
        guardrails_source=GuardrailSource(data.get("guardrailsSource", "manual")),
        mode=GuardrailMode(data.get("mode", "advisory")),
        target=data.get("target", ""),
    )


def fix_validation_to_dict(validation: FixValidation) -> dict[str, Any]:
    return {
        "valid": validation.valid,
        "blocked": validation.blocked,
        "syntax": syntax_report_to_dict(validation.syntax),
        "guardrails": [guardrail_report_to_dict(r) for r in validation.guardrails],
    }


def fix_validation_from_dict(data: dict[str, Any]) -> FixValidation:
    return FixValidation(
        syntax=syntax_report_from_dict(data.get("syntax", {})),
        guardrails=tuple(guardrail_report_from_dict(r) for r in data.get("guardrails", [])),
    )


# =========================================================================== #
#  Fixes                                                                       #
# =========================================================================== #

def pr_info_to_dict(pr: PRInfo) -> dict[str, Any]:
    return {"branchName": pr.branch_name, "status": pr.status.value, "url": pr.url}


def pr_info_from_dict(data: dict[str, Any]) -> PRInfo:
    return PRInfo(
        branch_name=_require(data, "branchName", "PRInfo"),
        status=PRStatus(data.get("status", PRStatus.OPEN.value)),
        url=data.get("url"),
    )


def fix_to_dict(fix: Fix) -> dict[str, Any]:
    return {
        "id": fix.id,
        "status": fix.status.value,
        "suggestion": issue_to_dict(fix.issue),
        "fix": generated_fix_to_dict(fix.generated),
        "prInfo": pr_info_to_dict(fix.pr_info) if fix.pr_info else None,
        "appliedFiles": list(fix.applied_files),
        "validation": fix_validation_to_dict(fix.validation) if fix.validation else None,
        "rejectionReason": fix.rejection_reason,
        "createdAt": fix.created_at,
        "updatedAt": fix.updated_at,
    }


def fix_from_dict(data: dict[str, Any]) -> Fix:
    pr = data.get("prInfo")
    validation = data.get("validation")
    return Fix(
        id=_require(data, "id", "Fix"),
        issue=issue_from_dict(_require(data, "suggestion", "Fix")),
        generated=generated_fix_from_dict(_require(data, "fix", "Fix")),
        status=FixStatus(data.get("status", FixStatus.PENDING.value)),
        pr_info=pr_info_from_dict(pr) if pr else None,
        applied_files=tuple(data.get("appliedFiles", [])),
        validation=fix_validation_from_dict(validation) if validation else None,
        rejection_reason=data.get("rejectionReason"),
        created_at=float(data.get("createdAt", 0.0)),
        updated_at=float(data.get("updatedAt", 0.0)),
    )


# =========================================================================== #
#  Guardrail policies                                                          #
# =========================================================================== #

def guardrails_to_dict(guardrails: Guardrails) -> dict[str, Any]:
    palette = guardrails.colors
    return {
        "siteId": guardrails.site_id,
        "source": guardrails.source.value,
        "colors": {
            "backgrounds": list(palette.backgrounds),
            "text": list(palette.text),
            "borders": list(palette.borders),
            "accents": list(palette.accents),
        },
        "typography": {
            "allowedFontWeights": list(guardrails.font_weights),
            "buttonFontSizeRange": list(guardrails.button_font_size_range),
        },
        "spacing": {
            "borderRadiusAllowed": list(guardrails.border_radii),
            "scale": list(guardrails.spacing),
            "minTapTarget": guardrails.min_tap_target,
        },
    }


def guardrails_from_dict(data: dict[str, Any], default: Guardrails | None = None) -> Guardrails:
    """Build a policy from a (possibly partial) document.

    Sections missing from *data* keep the values of *default*.
    """
    base = default or Guardrails()
    colors = data.get("colors") or {}
    typography = data.get("typography") or {}
    spacing = data.get("spacing") or {}
    palette = ColorPalette(
        backgrounds=tuple(colors.get("backgrounds", base.colors.backgrounds)),
        text=tuple(colors.get("text", base.colors.text)),
        borders=tuple(colors.get("borders", base.colors.borders)),
        accents=tuple(colors.get("accents", base.colors.accents)),
    )
    size_range = typography.get("buttonFontSizeRange", base.button_font_size_range)
    return Guardrails(
        site_id=data.get("siteId", base.site_id),
        source=GuardrailSource(data.get("source", base.source.value)),
        colors=palette,
        font_weights=tuple(int(w) for w in typography.get("allowedFontWeights", base.font_weights)),
        border_radii=tuple(int(r) for r in spacing.get("borderRadiusAllowed", base.border_radii)),
        spacing=tuple(int(s) for s in spacing.get("scale", base.spacing)),
        button_font_size_range=(int(size_range[0]), int(size_range[1])),
        min_tap_target=int(spacing.get("minTapTarget", base.min_tap_target)),
    )


# =========================================================================== #
#  Document helpers                                                            #
# =========================================================================== #

def load_document(path: str | Path) -> dict[str, Any]:
    """Read a JSON or YAML document (chosen by file suffix) into a dict."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return data


def dump_document(data: dict[str, Any], path: str | Path) -> None:
    """Write *data* as JSON or YAML depending on the suffix of *path*."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".yaml", ".yml"):
        text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    else:
        text = json.dumps(data, indent=2)
    path.write_text(text, encoding="utf-8")
