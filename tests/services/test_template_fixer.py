"""Tests for the deterministic template fixes."""

from __future__ import annotations

import dataclasses
from pathlib import Path

from cro_autofix.domain.entities import Issue
from cro_autofix.domain.enums import ActionType, PatternKind
from cro_autofix.domain.values import SourceFile
from cro_autofix.services.action_mapper import ActionMapper, GenerationRequest
from cro_autofix.services.syntax_validator import check_syntax
from cro_autofix.services.template_fixer import AGENT_NAME, TemplateFixer


class TestTemplateFixer:
    def test_image_gallery(self, storefront: Path, gallery_issue: Issue) -> None:
        request = ActionMapper(storefront).map(gallery_issue)
        result = TemplateFixer().generate(request)

        assert result.success
        assert result.agent_used == AGENT_NAME
        assert result.attempts == 1
        (patch,) = result.patches
        assert patch.old_code == "<img src={product.image} alt={product.name} />"
        assert patch.new_code.startswith('<img role="button" data-cro-fix="image-gallery"')
        assert patch.new_code.endswith(" src={product.image} alt={product.name} />")

        merged = request.primary_file.content.replace(patch.old_code, patch.new_code, 1)
        assert check_syntax(merged) == []

    def test_loading_state(self, storefront: Path, gallery_issue: Issue) -> None:
        issue = dataclasses.replace(
            gallery_issue,
            pattern_id=PatternKind.BUTTON_NO_FEEDBACK,
            element_selector="[data-add-to-cart]",
        )
        request = ActionMapper(storefront).map(issue)
        assert request.action_type is ActionType.LOADING_STATE

        result = TemplateFixer().generate(request)
        assert result.success
        (patch,) = result.patches
        assert patch.old_code == '<button className="bg-[#111111] text-white" data-add-to-cart>'
        assert 'aria-busy' in patch.new_code

    def test_no_template_for_generic(self, storefront: Path, gallery_issue: Issue) -> None:
        issue = dataclasses.replace(gallery_issue, pattern_id=PatternKind.DEAD_CLICK_ZONE)
        result = TemplateFixer().generate(ActionMapper(storefront).map(issue))
        assert not result.success
        assert result.error == "No template fix for action type generic"

    def test_no_matching_element(self, gallery_issue: Issue) -> None:
        request = GenerationRequest(
            issue=gallery_issue,
            action_type=ActionType.IMAGE_GALLERY,
            source_files=(SourceFile("components/Text.tsx", "export const T = () => <p>hi</p>;"),),
        )
        result = TemplateFixer().generate(request)
        assert not result.success
        assert result.error == "No suitable <img> element in components/Text.tsx"

    def test_already_clickable_image_is_skipped(self, gallery_issue: Issue) -> None:
        code = (
            "export const G = () => (\n"
            "  <div>\n"
            "    <img src={a} onClick={() => zoom(a)} />\n"
            "    <Image src={b} alt={alt} />\n"
            "  </div>\n"
            ");\n"
        )
        request = GenerationRequest(
            issue=gallery_issue,
            action_type=ActionType.IMAGE_GALLERY,
            source_files=(SourceFile("components/G.tsx", code),),
        )
        result = TemplateFixer().generate(request)
        assert result.success
        assert result.patches[0].old_code == "<Image src={b} alt={alt} />"

    def test_request_without_source(self, gallery_issue: Issue) -> None:
        request = GenerationRequest(issue=gallery_issue, action_type=ActionType.IMAGE_GALLERY)
        assert TemplateFixer().generate(request).error == "Request has no source file"
