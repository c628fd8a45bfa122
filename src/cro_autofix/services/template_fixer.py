"""Deterministic fixes for requests processed without the LLM.

Only a few action types have a template: each finds the first matching
element in the component source and adds self-contained attributes to its
opening tag, so the patch needs no new imports or state.  The patch's
``old_code`` is the tag text exactly as it appears in the file.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from cro_autofix.domain.enums import ActionType
from cro_autofix.domain.values import CodePatch, GeneratedFix
from cro_autofix.services.action_mapper import GenerationRequest
from cro_autofix.services.syntax_validator import validate_all

logger = logging.getLogger(__name__)

AGENT_NAME = "template"

_IMAGE_TAG = re.compile(r"<(img|Image)\b")
_BUTTON_TAG = re.compile(r"<(button|Button)\b")

_GALLERY_ATTRS = (
    ' role="button" data-cro-fix="image-gallery"'
    " onClick={(e) => e.currentTarget.requestFullscreen?.()}"
)
_LOADING_ATTRS = (
    ' data-cro-fix="loading-state"'
    " onClickCapture={(e) => {"
    " const button = e.currentTarget;"
    " button.disabled = true;"
    ' button.setAttribute("aria-busy", "true");'
    " window.setTimeout(() => {"
    " button.disabled = false;"
    ' button.removeAttribute("aria-busy");'
    " }, 1200);"
    " }}"
)


@dataclass(frozen=True)
class _Template:
    element: str
    tag: re.Pattern[str]
    attributes: str
    skip_if: str
    description: str
    explanation: str


_TEMPLATES: dict[ActionType, _Template] = {
    ActionType.IMAGE_GALLERY: _Template(
        element="img",
        tag=_IMAGE_TAG,
        attributes=_GALLERY_ATTRS,
        skip_if="onClick",
        description="Make the product image open full screen on click",
        explanation="Shoppers click product images expecting a larger view; "
        "the image now opens full screen.",
    ),
    ActionType.LOADING_STATE: _Template(
        element="button",
        tag=_BUTTON_TAG,
        attributes=_LOADING_ATTRS,
        skip_if="aria-busy",
        description="Disable the button and mark it busy while the click is handled",
        explanation="Repeated clicks showed the button gives no feedback; "
        "it is now disabled and marked busy briefly after each click.",
    ),
}


def _opening_tag_end(code: str, start: int) -> int:
    """Index just past the ``>`` closing the tag opened at *start*, or -1."""
    depth = 0
    for i in range(start, len(code)):
        ch = code[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        elif ch == ">" and depth == 0:
            return i + 1
    return -1


class TemplateFixer:
    """Builds ``GeneratedFix`` objects from fixed templates."""

    name = AGENT_NAME

    def _fail(self, error: str) -> GeneratedFix:
        logger.info("Template fix unavailable: %s", error)
        return GeneratedFix(success=False, agent_used=AGENT_NAME, error=error, attempts=1)

    @staticmethod
    def _patch_for(template: _Template, path: str, content: str) -> CodePatch | None:
        for match in template.tag.finditer(content):
            end = _opening_tag_end(content, match.start())
            if end < 0:
                return None
            tag = content[match.start() : end]
            if template.skip_if in tag:
                continue
            name_end = match.end() - match.start()
            return CodePatch(
                file_path=path,
                old_code=tag,
                new_code=tag[:name_end] + template.attributes + tag[name_end:],
                description=template.description,
            )
        return None

    def generate(self, request: GenerationRequest) -> GeneratedFix:
        template = _TEMPLATES.get(request.action_type)
        if template is None:
            return self._fail(f"No template fix for action type {request.action_type.value}")
        source = request.primary_file
        if source is None:
            return self._fail("Request has no source file")

        patch = self._patch_for(template, source.path, source.content)
        if patch is None:
            return self._fail(f"No suitable <{template.element}> element in {source.path}")

        report = validate_all(
            [patch],
            read_file=lambda path: request.content_of(path) or "",
        )
        if not report.valid:
            return self._fail("; ".join(report.errors))
        return GeneratedFix(
            success=True,
            patches=(patch,),
            explanation=template.explanation,
            agent_used=AGENT_NAME,
            attempts=1,
        )
