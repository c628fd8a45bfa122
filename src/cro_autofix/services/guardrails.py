"""Guardrail validation: generated code vs. the site's style policy.

A guardrail policy lists the literal values the storefront already uses
(colors, font weights, border radii, spacing).  Generated code that
introduces any other color, radius or weight literal is a violation.

Violations are *advisory* unless the caller asks for ``GuardrailMode.BLOCKING``;
the report says which mode it was produced under and ``report.blocks``
tells the pipeline whether to stop.  Syntax problems are handled by the
syntax validator and always block.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections import Counter
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from cro_autofix.domain.enums import GuardrailMode, GuardrailSource, ViolationSeverity
from cro_autofix.domain.values import (
    ColorPalette,
    GeneratedFix,
    GuardrailReport,
    Guardrails,
    GuardrailViolation,
)
from cro_autofix.infrastructure.serialization import (
    dump_document,
    guardrails_from_dict,
    guardrails_to_dict,
    load_document,
)

logger = logging.getLogger(__name__)

DEFAULT_GUARDRAILS = Guardrails(
    site_id="default",
    source=GuardrailSource.MANUAL,
    colors=ColorPalette(
        backgrounds=(
            "#111", "#111111", "#fff", "#ffffff", "#fafafa", "#f5f5f5",
            "white", "transparent", "inherit", "#22c55e",
        ),
        text=(
            "#111", "#111111", "#374151", "#6b7280", "#fff", "#ffffff",
            "white", "inherit", "currentcolor",
        ),
        borders=("#e5e7eb", "#111", "#111111", "transparent", "inherit"),
        accents=("#3b82f6",),
    ),
    font_weights=(500, 600),
    border_radii=(0,),
    spacing=(0, 2, 4, 6, 8, 10, 12, 14, 16, 20, 24, 32, 40, 48, 64),
    button_font_size_range=(12, 14),
    min_tap_target=44,
)

# ---------------------------------------------------------------------------
# Literal vocabularies
# ---------------------------------------------------------------------------

_NAMED_COLORS = {
    "white": "#ffffff",
    "black": "#000000",
    "red": "#ff0000",
    "green": "#008000",
    "blue": "#0000ff",
    "yellow": "#ffff00",
    "orange": "#ffa500",
    "purple": "#800080",
    "pink": "#ffc0cb",
    "gray": "#808080",
    "grey": "#808080",
    "teal": "#008080",
    "navy": "#000080",
}
_KEYWORD_COLORS = {"transparent", "inherit", "currentcolor", "initial", "unset", "none"}

_TAILWIND_HUES = (
    "slate", "gray", "zinc", "neutral", "stone", "red", "orange", "amber",
    "yellow", "lime", "green", "emerald", "teal", "cyan", "sky", "blue",
    "indigo", "violet", "purple", "fuchsia", "pink", "rose",
)

_FONT_WEIGHT_NAMES = {
    "thin": 100,
    "extralight": 200,
    "light": 300,
    "normal": 400,
    "medium": 500,
    "semibold": 600,
    "bold": 700,
    "extrabold": 800,
    "black": 900,
}

_TAILWIND_RADII = {
    "none": 0, "sm": 2, "": 4, "md": 6, "lg": 8, "xl": 12, "2xl": 16, "3xl": 24, "full": 9999,
}

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_VALUE = r"""(?:(?P<q>['"])(?P<qv>[^'"]*)(?P=q)|(?P<v>(?:[^;'"{}\n,(]|\([^)]*\))+))"""

_COLOR_DECL = re.compile(
    r"(?<![\w-])(?P<prop>background-color|backgroundColor|background|color"
    r"|border(?:-(?:top|right|bottom|left))?-color|border(?:Top|Right|Bottom|Left)?Color"
    r"|border(?:-(?:top|right|bottom|left))?|border(?:Top|Right|Bottom|Left))"
    r"\s*:\s*" + _VALUE
)
_COLOR_TOKEN = re.compile(
    r"#[0-9a-fA-F]{3,8}\b|(?:rgba?|hsla?)\([^)]*\)|\b(?:"
    + "|".join(sorted(_NAMED_COLORS, key=len, reverse=True))
    + r")\b",
    re.IGNORECASE,
)
_TAILWIND_COLOR = re.compile(
    r"(?<![\w-])(bg|text|border)-(" + "|".join(_TAILWIND_HUES) + r")-(\d{2,3})(?![\w-])"
)
_TAILWIND_ARBITRARY_COLOR = re.compile(r"(?<![\w-])(bg|text|border)-\[(#[0-9a-fA-F]{3,8})\]")

_FONT_WEIGHT_DECL = re.compile(r"(?<![\w-])(?:font-weight|fontWeight)\s*:\s*" + _VALUE)
_TAILWIND_FONT = re.compile(
    r"(?<![\w-])font-(" + "|".join(_FONT_WEIGHT_NAMES) + r")(?![\w-])"
)

_RADIUS_DECL = re.compile(r"(?<![\w-])(?:border-radius|borderRadius)\s*:\s*" + _VALUE)
_TAILWIND_ROUNDED = re.compile(
    r"(?<![\w-])rounded(?:-(?:tl|tr|bl|br|ss|se|es|ee|t|r|b|l|s|e))?"
    r"(?:-(none|sm|md|lg|xl|2xl|3xl|full))?(?![\w-])"
)

_SPACING_DECL = re.compile(
    r"(?<![\w-])(?:padding|margin)(?:-(?:top|right|bottom|left))?"
    r"(?:Top|Right|Bottom|Left|Inline|Block)?\s*:\s*" + _VALUE
)
_LENGTH = re.compile(r"(-?\d+(?:\.\d+)?)(px|rem|em|%)?")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_color(color: str) -> str:
    """Lower-case and expand a color literal (``#fff`` -> ``#ffffff``, ``white`` -> ``#ffffff``)."""
    value = color.strip().lower().replace(" ", "")
    if value in _NAMED_COLORS:
        return _NAMED_COLORS[value]
    if re.fullmatch(r"#[0-9a-f]{3}", value):
        return "#" + "".join(ch * 2 for ch in value[1:])
    return value


def _decl_value(match: re.Match[str]) -> str:
    return (match.group("qv") if match.group("q") else match.group("v") or "").strip()


def _to_px(number: str, unit: str | None) -> float | None:
    value = float(number)
    if unit in (None, "", "px"):
        return value
    if unit in ("rem", "em"):
        return value * 16
    return None  # percentages have no px equivalent


def _color_group(prop: str) -> str:
    lowered = prop.lower()
    if lowered.startswith("background"):
        return "backgrounds"
    if lowered.startswith("border"):
        return "borders"
    return "text"


# ---------------------------------------------------------------------------
# GuardrailValidator
# ---------------------------------------------------------------------------


class GuardrailValidator:
    """Checks code literals against a ``Guardrails`` policy.

    Parameters
    ----------
    check_spacing:
        Also flag padding/margin values off the spacing scale (warnings).
    """

    def __init__(self, check_spacing: bool = True) -> None:
        self.check_spacing = check_spacing

    def violations(self, code: str, guardrails: Guardrails) -> list[GuardrailViolation]:
        """Return every violation in *code*, in rule order."""
        found: list[GuardrailViolation] = []
        found.extend(self._check_colors(code, guardrails))
        found.extend(self._check_font_weights(code, guardrails))
        found.extend(self._check_radii(code, guardrails))
        if self.check_spacing and guardrails.spacing:
            found.extend(self._check_spacing(code, guardrails))
        return found

    def validate(
        self,
        code: str,
        guardrails: Guardrails,
        mode: GuardrailMode = GuardrailMode.ADVISORY,
        target: str = "",
        baseline: str | None = None,
    ) -> GuardrailReport:
        """Validate *code* and build a report.

        When *baseline* (the code being replaced) is given, only violations
        it did not already contain are reported.
        """
        found = self.violations(code, guardrails)
        if baseline:
            existing = Counter((v.rule, v.found) for v in self.violations(baseline, guardrails))
            kept: list[GuardrailViolation] = []
            for violation in found:
                key = (violation.rule, violation.found)
                if existing[key]:
                    existing[key] -= 1
                else:
                    kept.append(violation)
            found = kept

        valid = not any(v.severity is ViolationSeverity.ERROR for v in found)
        if not valid:
            logger.info(
                "Guardrail violations in %s (%s): %s",
                target or "<code>", mode.value, "; ".join(v.message for v in found),
            )
        return GuardrailReport(
            valid=valid,
            violations=tuple(found),
            used_dynamic_guardrails=guardrails.is_dynamic,
            guardrails_source=guardrails.source,
            mode=mode,
            target=target,
        )

    def validate_fix(
        self,
        generated: GeneratedFix,
        guardrails: Guardrails,
        mode: GuardrailMode = GuardrailMode.ADVISORY,
    ) -> tuple[GuardrailReport, ...]:
        """One report per patch and per new file, never merged across files."""
        reports = [
            self.validate(p.new_code, guardrails, mode, target=p.file_path, baseline=p.old_code)
            for p in generated.patches
        ]
        reports.extend(
            self.validate(f.content, guardrails, mode, target=f.path)
            for f in generated.new_files
        )
        return tuple(reports)

    # -- individual rules --------------------------------------------------------

    def _check_colors(self, code: str, guardrails: Guardrails) -> Iterable[GuardrailViolation]:
        palette = guardrails.colors
        groups = {
            "backgrounds": palette.backgrounds,
            "text": palette.text,
            "borders": palette.borders,
        }
        accents = {normalize_color(c) for c in palette.accents}

        for match in _COLOR_DECL.finditer(code):
            group = _color_group(match.group("prop"))
            allowed = {normalize_color(c) for c in groups[group]} | accents
            for token in _COLOR_TOKEN.finditer(_decl_value(match)):
                color = normalize_color(token.group(0))
                if color in _KEYWORD_COLORS or color in allowed:
                    continue
                yield GuardrailViolation(
                    rule="color",
                    message=f"Color {token.group(0)} is not an allowed {group[:-1] if group != 'text' else 'text'} color",
                    found=token.group(0),
                    expected=", ".join(groups[group]),
                )

        for match in _TAILWIND_COLOR.finditer(code):
            yield GuardrailViolation(
                rule="color",
                message=f"Tailwind color class {match.group(0)} is outside the site palette",
                found=match.group(0),
                expected="Site palette colors only",
            )

        prefix_group = {"bg": "backgrounds", "text": "text", "border": "borders"}
        for match in _TAILWIND_ARBITRARY_COLOR.finditer(code):
            group = prefix_group[match.group(1)]
            allowed = {normalize_color(c) for c in groups[group]} | accents
            if normalize_color(match.group(2)) not in allowed:
                yield GuardrailViolation(
                    rule="color",
                    message=f"Color {match.group(2)} in {match.group(0)} is not allowed",
                    found=match.group(0),
                    expected=", ".join(groups[group]),
                )

    def _check_font_weights(self, code: str, guardrails: Guardrails) -> Iterable[GuardrailViolation]:
        allowed = set(guardrails.font_weights)
        expected = ", ".join(str(w) for w in guardrails.font_weights)
        for match in _FONT_WEIGHT_DECL.finditer(code):
            raw = _decl_value(match).lower()
            weight = int(raw) if raw.isdigit() else _FONT_WEIGHT_NAMES.get(raw)
            if weight is not None and weight not in allowed:
                yield GuardrailViolation(
                    rule="font-weight",
                    message=f"Font weight {raw} is not allowed",
                    found=raw,
                    expected=expected,
                )
        for match in _TAILWIND_FONT.finditer(code):
            if _FONT_WEIGHT_NAMES[match.group(1)] not in allowed:
                yield GuardrailViolation(
                    rule="font-weight",
                    message=f"Font weight class {match.group(0)} is not allowed",
                    found=match.group(0),
                    expected=expected,
                )

    def _check_radii(self, code: str, guardrails: Guardrails) -> Iterable[GuardrailViolation]:
        allowed = set(guardrails.border_radii)
        expected = (
            "sharp corners only (0)"
            if tuple(guardrails.border_radii) == (0,)
            else ", ".join(f"{r}px" for r in guardrails.border_radii)
        )
        for match in _RADIUS_DECL.finditer(code):
            value = _decl_value(match)
            for number, unit in _LENGTH.findall(value):
                px = _to_px(number, unit)
                if px == 0 or (px is not None and px in allowed):
                    continue
                if px is None and float(number) == 0:
                    continue
                yield GuardrailViolation(
                    rule="border-radius",
                    message=f"Border radius {number}{unit or 'px'} is not allowed",
                    found=f"{number}{unit}",
                    expected=expected,
                )
                break
        for match in _TAILWIND_ROUNDED.finditer(code):
            px = _TAILWIND_RADII[match.group(1) or ""]
            if px not in allowed:
                yield GuardrailViolation(
                    rule="border-radius",
                    message=f"Rounded class {match.group(0)} is not allowed",
                    found=match.group(0),
                    expected=expected,
                )

    def _check_spacing(self, code: str, guardrails: Guardrails) -> Iterable[GuardrailViolation]:
        scale = set(guardrails.spacing)
        for match in _SPACING_DECL.finditer(code):
            value = _decl_value(match)
            for number, unit in _LENGTH.findall(value):
                px = _to_px(number, unit)
                if px is None or abs(px) in scale:
                    continue
                yield GuardrailViolation(
                    rule="spacing",
                    message=f"Spacing {number}{unit or 'px'} is off the spacing scale",
                    severity=ViolationSeverity.WARNING,
                    found=f"{number}{unit}",
                    expected=", ".join(str(s) for s in guardrails.spacing),
                )


# ---------------------------------------------------------------------------
# Policy documents
# ---------------------------------------------------------------------------


def load_guardrails(path: str | Path | None) -> Guardrails:
    """Load a static policy document, or the defaults when there is none.

    Sections missing from the document keep their default values.
    """
    if path is None or not Path(path).exists():
        logger.info("No guardrail policy at %s; using defaults", path)
        return DEFAULT_GUARDRAILS
    data = load_document(path)
    data.setdefault("source", GuardrailSource.STATIC.value)
    guardrails = guardrails_from_dict(data, DEFAULT_GUARDRAILS)
    logger.info("Loaded guardrails for site %s from %s", guardrails.site_id, path)
    return guardrails


def save_guardrails(guardrails: Guardrails, path: str | Path) -> None:
    dump_document(guardrails_to_dict(guardrails), path)


def merge_guardrails(base: Guardrails, overrides: dict[str, Any]) -> Guardrails:
    """Apply partial *overrides* on top of *base*; the result is ``hybrid``."""
    merged = guardrails_from_dict(overrides, base)
    return dataclasses.replace(merged, source=GuardrailSource.HYBRID)


def format_guardrails_for_prompt(guardrails: Guardrails) -> str:
    """Render the policy as constraints for the generation prompt."""
    palette = guardrails.colors
    if tuple(guardrails.border_radii) == (0,):
        radius = "SHARP CORNERS ONLY (no rounded corners)"
    else:
        radius = "allowed values: " + ", ".join(f"{r}px" for r in guardrails.border_radii)
    low, high = guardrails.button_font_size_range
    lines = [
        "## Site design constraints",
        "",
        "### Colors",
        f"- Backgrounds: {', '.join(palette.backgrounds)}",
        f"- Text: {', '.join(palette.text)}",
        f"- Borders: {', '.join(palette.borders)}",
        f"- Accents (sparingly): {', '.join(palette.accents) or 'none'}",
        "",
        "### Typography",
        f"- Font weights: {', '.join(str(w) for w in guardrails.font_weights)} only",
        f"- Button font size: {low}px to {high}px",
        "",
        "### Shape and spacing",
        f"- Border radius: {radius}",
    ]
    if guardrails.spacing:
        lines.append(f"- Spacing scale (px): {', '.join(str(s) for s in guardrails.spacing)}")
    lines.append(f"- Minimum tap target: {guardrails.min_tap_target}px")
    lines.append("")
    lines.append("Do not introduce any color, font weight or radius outside these lists.")
    return "\n".join(lines)
