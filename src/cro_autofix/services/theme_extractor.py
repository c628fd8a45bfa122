"""Derive a guardrail policy from the storefront's own source.

The extractor walks component and stylesheet files and collects the
literal style values already in use.  The result is a ``dynamic``
``Guardrails`` policy: generated code may reuse anything the site already
uses and nothing else.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from pathlib import Path

from cro_autofix.domain.enums import GuardrailSource
from cro_autofix.domain.values import ColorPalette, Guardrails
from cro_autofix.services.guardrails import DEFAULT_GUARDRAILS, normalize_color

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = (".tsx", ".jsx", ".ts", ".css")
DEFAULT_SCAN_DIRS = ("components", "app", "src", "styles")

_SKIP_DIRS = {"node_modules", ".next", "dist", "build", ".git"}

_HEX = r"#[0-9a-fA-F]{3,8}\b"
_CSS_COLOR = re.compile(
    r"(?<![\w-])(background(?:-color)?|backgroundColor|color|border(?:-color)?|borderColor)"
    r"\s*:\s*['\"]?(" + _HEX + r"|white|black|transparent)",
)
_TW_COLOR = re.compile(r"(?<![\w-])(bg|text|border)-(white|black|transparent|\[" + _HEX + r"\])")
_WEIGHT = re.compile(r"(?<![\w-])(?:font-weight|fontWeight)\s*:\s*['\"]?(\d{3})")
_TW_WEIGHT = re.compile(r"(?<![\w-])font-(thin|extralight|light|normal|medium|semibold|bold|extrabold|black)(?![\w-])")
_RADIUS = re.compile(r"(?<![\w-])(?:border-radius|borderRadius)\s*:\s*['\"]?(\d+)(?:px)?")
_TW_ROUNDED = re.compile(r"(?<![\w-])rounded(?:-(none|sm|md|lg|xl|2xl|3xl|full))?(?![\w-])")
_SPACING = re.compile(r"(?<![\w-])(?:padding|margin)[\w-]*\s*:\s*['\"]?(\d+)px")
_TW_SPACING = re.compile(r"(?<![\w-])-?[pm][xytrbl]?-(\d+(?:\.5)?)(?![\w.-])")

_TW_WEIGHTS = {
    "thin": 100, "extralight": 200, "light": 300, "normal": 400, "medium": 500,
    "semibold": 600, "bold": 700, "extrabold": 800, "black": 900,
}
_TW_RADII = {None: 4, "none": 0, "sm": 2, "md": 6, "lg": 8, "xl": 12, "2xl": 16, "3xl": 24, "full": 9999}


class ThemeExtractor:
    """Scans a working tree for the style values it already uses.

    Parameters
    ----------
    root:
        Storefront working-tree root.
    site_id:
        Identifier stored on the extracted policy.
    """

    def __init__(self, root: str | Path, site_id: str = "default") -> None:
        self.root = Path(root)
        self.site_id = site_id

    def _files(self, scan_dirs: Iterable[str]) -> Iterator[Path]:
        seen: set[Path] = set()
        for name in scan_dirs:
            base = self.root / name
            if not base.is_dir():
                continue
            for path in sorted(base.rglob("*")):
                if path in seen or not path.is_file() or path.suffix not in SOURCE_SUFFIXES:
                    continue
                if _SKIP_DIRS.intersection(path.relative_to(self.root).parts):
                    continue
                seen.add(path)
                yield path

    def extract(self, scan_dirs: Iterable[str] | None = None) -> Guardrails:
        """Return a ``dynamic`` policy built from the values found.

        Groups with no values found fall back to the default policy's
        values so an empty tree does not forbid everything.
        """
        backgrounds: set[str] = set()
        text: set[str] = set()
        borders: set[str] = set()
        weights: set[int] = set()
        radii: set[int] = set()
        spacing: set[int] = set()

        files = 0
        for path in self._files(scan_dirs or DEFAULT_SCAN_DIRS):
            try:
                code = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping %s during theme extraction: %s", path, exc)
                continue
            files += 1

            for prop, color in _CSS_COLOR.findall(code):
                target = (
                    backgrounds if prop.lower().startswith("background")
                    else borders if prop.lower().startswith("border")
                    else text
                )
                target.add(normalize_color(color))
            for prefix, value in _TW_COLOR.findall(code):
                color = normalize_color(value.strip("[]"))
                {"bg": backgrounds, "text": text, "border": borders}[prefix].add(color)

            weights.update(int(w) for w in _WEIGHT.findall(code))
            weights.update(_TW_WEIGHTS[w] for w in _TW_WEIGHT.findall(code))
            radii.update(int(r) for r in _RADIUS.findall(code))
            radii.update(_TW_RADII[m.group(1)] for m in _TW_ROUNDED.finditer(code))
            spacing.update(int(s) for s in _SPACING.findall(code))
            # Tailwind spacing unit is 4px
            spacing.update(int(float(s) * 4) for s in _TW_SPACING.findall(code))

        logger.info(
            "Extracted theme from %d file(s): %d colors, %d weights, %d radii",
            files, len(backgrounds | text | borders), len(weights), len(radii),
        )
        default = DEFAULT_GUARDRAILS
        return Guardrails(
            site_id=self.site_id,
            source=GuardrailSource.DYNAMIC,
            colors=ColorPalette(
                backgrounds=tuple(sorted(backgrounds)) or default.colors.backgrounds,
                text=tuple(sorted(text)) or default.colors.text,
                borders=tuple(sorted(borders)) or default.colors.borders,
                accents=default.colors.accents,
            ),
            font_weights=tuple(sorted(weights)) or default.font_weights,
            border_radii=tuple(sorted(radii)) or default.border_radii,
            spacing=tuple(sorted(spacing)),
            button_font_size_range=default.button_font_size_range,
            min_tap_target=default.min_tap_target,
        )

