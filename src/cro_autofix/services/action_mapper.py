"""Action mapper: issue -> remediation action + generation request.

Each pattern kind maps to exactly one canonical action type.  The mapping
is checked for completeness when this module is imported, so a new
``PatternKind`` without an action fails loudly instead of falling through
to a default.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from cro_autofix.domain.entities import Issue
from cro_autofix.domain.enums import ActionType, PatternKind
from cro_autofix.domain.exceptions import ConfigurationError
from cro_autofix.domain.values import SourceFile
from cro_autofix.services.patch_engine import read_source

logger = logging.getLogger(__name__)

_ACTION_FOR_PATTERN: dict[PatternKind, ActionType] = {
    PatternKind.IMAGE_GALLERY_NEEDED: ActionType.IMAGE_GALLERY,
    PatternKind.BUTTON_NO_FEEDBACK: ActionType.LOADING_STATE,
    PatternKind.DEAD_CLICK_ZONE: ActionType.GENERIC,
    PatternKind.COMPARISON_FEATURE_NEEDED: ActionType.PRODUCT_COMPARISON,
    PatternKind.COLOR_PREVIEW_NEEDED: ActionType.COLOR_PREVIEW,
    PatternKind.ADDRESS_AUTOCOMPLETE_NEEDED: ActionType.ADDRESS_AUTOCOMPLETE,
    PatternKind.FORM_FRICTION: ActionType.GENERIC,
    PatternKind.SCROLL_CONFUSION: ActionType.GENERIC,
}

_unmapped = set(PatternKind) - set(_ACTION_FOR_PATTERN)
if _unmapped:
    raise RuntimeError(
        f"No action type for pattern kinds: {sorted(k.value for k in _unmapped)}"
    )

_ACTION_RATIONALE: dict[ActionType, str] = {
    ActionType.IMAGE_GALLERY: "Open a gallery modal when the product image is clicked",
    ActionType.LOADING_STATE: "Show a loading state and disable the control while busy",
    ActionType.PRODUCT_COMPARISON: "Let shoppers compare products side by side",
    ActionType.COLOR_PREVIEW: "Preview the hovered color on the product image",
    ActionType.ADDRESS_AUTOCOMPLETE: "Autocomplete address fields",
    ActionType.GENERIC: "Apply the suggested fix to the affected component",
}


def action_type_for(pattern: PatternKind) -> ActionType:
    """Return the canonical remediation for *pattern*."""
    return _ACTION_FOR_PATTERN[pattern]


@dataclass(frozen=True)
class GenerationRequest:
    """Everything the code generator needs for one issue.

    ``source_files`` hold the current contents of the component files the
    generator must read; the first entry is the issue's own component.
    """

    issue: Issue
    action_type: ActionType
    source_files: tuple[SourceFile, ...] = ()
    rationale: str = ""
    extra_context: dict[str, str] = field(default_factory=dict)

    @property
    def primary_file(self) -> SourceFile | None:
        return self.source_files[0] if self.source_files else None

    def content_of(self, path: str) -> str | None:
        for source in self.source_files:
            if source.path == path:
                return source.content
        return None


class ActionMapper:
    """Builds ``GenerationRequest`` objects rooted at a working tree.

    Parameters
    ----------
    root:
        Working-tree root that component paths are relative to.
    reader:
        Optional ``reader(path) -> str`` used instead of the filesystem.
    related_files:
        Extra files (relative to *root*) to include as context for given
        action types, e.g. a shared modal component for image galleries.
    encoding:
        Encoding used when reading from disk.  Line endings are kept as
        they are on disk so ``old_code`` matches what the patch engine sees.
    """

    def __init__(
        self,
        root: str | Path,
        reader: Callable[[Path], str] | None = None,
        related_files: dict[ActionType, tuple[str, ...]] | None = None,
        encoding: str = "utf-8",
    ) -> None:
        self.root = Path(root)
        self._reader = reader or (lambda p: read_source(p, encoding))
        self._related = related_files or {}

    def resolve_path(self, component_path: str) -> Path:
        """Return the absolute path for *component_path* inside the root.

        Raises
        ------
        ConfigurationError
            If the path is missing, unknown, escapes the root, or the file
            does not exist.
        """
        if not component_path or component_path == "unknown":
            raise ConfigurationError(
                "Issue has no resolvable component path",
                path=component_path,
                field="component_path",
            )
        root = self.root.resolve()
        candidate = (root / component_path).resolve()
        if not candidate.is_relative_to(root):
            raise ConfigurationError(
                f"Component path {component_path} escapes the working tree",
                path=component_path,
                field="component_path",
            )
        if not candidate.is_file():
            raise ConfigurationError(
                f"Component file {component_path} does not exist under {self.root}",
                path=component_path,
                field="component_path",
            )
        return candidate

    def map(self, issue: Issue) -> GenerationRequest:
        """Build the generation request for *issue*.

        Fails before any generation attempt when the component file is
        missing; that is a configuration problem, not an LLM one.
        """
        action = action_type_for(issue.pattern_id)
        primary = self.resolve_path(issue.component_path)
        sources = [SourceFile(issue.component_path, self._reader(primary))]

        for related in self._related.get(action, ()):
            if related == issue.component_path:
                continue
            try:
                path = self.resolve_path(related)
            except ConfigurationError:
                logger.warning("Related file %s for %s not found; skipping", related, action.value)
                continue
            sources.append(SourceFile(related, self._reader(path)))

        logger.info(
            "Mapped %s (%s) to %s using %d source file(s)",
            issue.id, issue.pattern_id.value, action.value, len(sources),
        )
        return GenerationRequest(
            issue=issue,
            action_type=action,
            source_files=tuple(sources),
            rationale=_ACTION_RATIONALE[action],
        )
