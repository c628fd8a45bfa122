"""Tests for the bounded LLM generation loop."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from cro_autofix.domain.entities import Issue
from cro_autofix.domain.events import FixGenerated
from cro_autofix.domain.exceptions import GenerationError
from cro_autofix.infrastructure.config import GenerationConfig
from cro_autofix.infrastructure.event_bus import EventBus
from cro_autofix.infrastructure.llm import (
    FunctionGenerator,
    LLMConnectionError,
    LLMTimeoutError,
)
from cro_autofix.infrastructure.llm.chat_model import ChatModelGenerator
from cro_autofix.services.action_mapper import ActionMapper, GenerationRequest
from cro_autofix.services.code_generator import (
    CANCELLED,
    CodeGenerator,
    complete_with_timeout,
    build_prompt,
    parse_reply,
)
from cro_autofix.services.guardrails import DEFAULT_GUARDRAILS
from cro_autofix.testing.mock_llm import ScriptedChatModel, ScriptedGenerator

IMG_TAG = "<img src={product.image} alt={product.name} />"


def _reply(new_code: str, old_code: str = IMG_TAG, path: str = "components/store/ProductGrid.tsx") -> str:
    return json.dumps(
        {
            "patches": [{"filePath": path, "oldCode": old_code, "newCode": new_code}],
            "explanation": "Open the gallery",
        }
    )


BROKEN = _reply("<img src={product.image} onClick={() => open(product) />")


@pytest.fixture
def request_(storefront: Path, gallery_issue: Issue) -> GenerationRequest:
    return ActionMapper(storefront).map(gallery_issue)


class TestParseReply:
    def test_plain_json(self, valid_reply: str) -> None:
        draft = parse_reply(valid_reply)
        assert len(draft.to_patches()) == 1
        assert draft.explanation.startswith("Clicking")

    def test_fenced_json_with_prose(self, valid_reply: str) -> None:
        draft = parse_reply(f"Here is the fix:\n```json\n{valid_reply}\n```\nLet me know.")
        assert draft.to_patches()[0].file_path == "components/store/ProductGrid.tsx"

    def test_new_files_only(self) -> None:
        draft = parse_reply(json.dumps({"newFiles": [{"path": "a.tsx", "content": "export {}"}]}))
        assert draft.to_new_files()[0].path == "a.tsx"

    @pytest.mark.parametrize(
        ("text", "message"),
        [
            ("no json here", "no JSON object"),
            ("{not valid}", "not valid JSON"),
            ('{"patches": [{"filePath": "a.tsx"}]}', "expected shape"),
            ('{"patches": [], "newFiles": []}', "no patches or new files"),
        ],
    )
    def test_unusable_replies(self, text: str, message: str) -> None:
        with pytest.raises(GenerationError, match=message):
            parse_reply(text)


class TestPrompt:
    def test_includes_issue_source_and_guardrails(self, request_: GenerationRequest) -> None:
        prompt = build_prompt(request_, DEFAULT_GUARDRAILS)
        assert "image_gallery_needed" in prompt
        assert "components/store/ProductGrid.tsx" in prompt
        assert IMG_TAG in prompt
        assert "SHARP CORNERS ONLY" in prompt
        assert "previous attempt" not in prompt

    def test_feedback_section(self, request_: GenerationRequest) -> None:
        prompt = build_prompt(request_, None, ["a.tsx: Unbalanced braces: missing } (diff: 1)"])
        assert "## Fix these errors from your previous attempt" in prompt
        assert "- a.tsx: Unbalanced braces: missing } (diff: 1)" in prompt


class TestCodeGenerator:
    def test_first_attempt_success(self, request_: GenerationRequest, valid_reply: str) -> None:
        generator = ScriptedGenerator([valid_reply])
        result = CodeGenerator(generator).generate(request_)
        assert result.success
        assert result.attempts == 1
        assert result.agent_used == "scripted"
        assert len(result.patches) == 1
        assert generator.calls == 1

    def test_retry_bound(self, request_: GenerationRequest) -> None:
        generator = ScriptedGenerator([BROKEN])
        result = CodeGenerator(generator, GenerationConfig(max_attempts=3)).generate(request_)
        assert not result.success
        assert generator.calls == 3
        assert result.attempts == 3
        assert result.error.startswith("Failed after 3 attempt(s)")
        assert "Unbalanced braces" in result.error

    def test_errors_fed_back_on_retry(self, request_: GenerationRequest, valid_reply: str) -> None:
        generator = ScriptedGenerator([BROKEN, valid_reply])
        result = CodeGenerator(generator).generate(request_)
        assert result.success
        assert result.attempts == 2
        assert "previous attempt" not in generator.prompts[0]
        assert "Unbalanced braces" in generator.prompts[1]

    def test_llm_errors_count_as_attempts(self, request_: GenerationRequest, valid_reply: str) -> None:
        generator = ScriptedGenerator([LLMTimeoutError("slow"), "not json", valid_reply])
        result = CodeGenerator(generator).generate(request_)
        assert result.success
        assert result.attempts == 3

    def test_patch_not_matching_source_fails(self, request_: GenerationRequest) -> None:
        generator = ScriptedGenerator([_reply("<img />", old_code="<img missing />")])
        result = CodeGenerator(generator, GenerationConfig(max_attempts=2)).generate(request_)
        assert not result.success
        assert "Old code not found" in result.error

    def test_unknown_file_uses_read_file(self, request_: GenerationRequest) -> None:
        files = {"components/ui/Modal.tsx": "export function Modal() { return null; }\n"}
        reply = _reply(
            "export function Modal({ open }: { open: boolean }) { return null; }\n",
            old_code="export function Modal() { return null; }\n",
            path="components/ui/Modal.tsx",
        )
        result = CodeGenerator(ScriptedGenerator([reply]), read_file=files.__getitem__).generate(request_)
        assert result.success

    def test_cancelled_before_first_attempt(self, request_: GenerationRequest, valid_reply: str) -> None:
        cancel = threading.Event()
        cancel.set()
        generator = ScriptedGenerator([valid_reply])
        result = CodeGenerator(generator).generate(request_, cancel_event=cancel)
        assert not result.success
        assert result.error == CANCELLED
        assert generator.calls == 0

    def test_publishes_fix_generated(self, request_: GenerationRequest, valid_reply: str) -> None:
        bus = EventBus()
        seen: list[FixGenerated] = []
        bus.subscribe(FixGenerated, seen.append)
        CodeGenerator(ScriptedGenerator([valid_reply]), event_bus=bus).generate(request_)
        assert len(seen) == 1
        assert seen[0].success
        assert seen[0].issue_id == request_.issue.id

    def test_through_chat_model_adapter(self, request_: GenerationRequest, valid_reply: str) -> None:
        model = ScriptedChatModel(responses=[f"```json\n{valid_reply}\n```"])
        result = CodeGenerator(ChatModelGenerator(model)).generate(request_)
        assert result.success
        assert result.agent_used == "scripted"
        assert "ProductGrid" in model.prompts[0]


class TestCallFailures:
    def test_unexpected_exception_counts_as_attempt(self, request_: GenerationRequest) -> None:
        def fn(prompt: str) -> str:
            raise RuntimeError("connection reset")

        result = CodeGenerator(FunctionGenerator(fn), GenerationConfig(max_attempts=2)).generate(request_)
        assert not result.success
        assert result.attempts == 2
        assert "connection reset" in result.error

    def test_config_timeout_applies(self, request_: GenerationRequest) -> None:
        release = threading.Event()

        def fn(prompt: str) -> str:
            release.wait(5)
            return "late"

        try:
            result = CodeGenerator(
                FunctionGenerator(fn, name="slow"), GenerationConfig(max_attempts=1, timeout=0.2)
            ).generate(request_)
        finally:
            release.set()
        assert not result.success
        assert result.attempts == 1
        assert "slow did not answer within 0.2s" in result.error


class TestCompleteWithTimeout:
    def test_returns_reply(self) -> None:
        assert complete_with_timeout(ScriptedGenerator(["ok"]), "p", 1.0) == "ok"
        assert complete_with_timeout(ScriptedGenerator(["ok"]), "p", None) == "ok"

    def test_timeout(self) -> None:
        release = threading.Event()
        generator = FunctionGenerator(lambda prompt: str(release.wait(5)), name="slow")
        try:
            with pytest.raises(LLMTimeoutError, match="within 0.1s"):
                complete_with_timeout(generator, "p", 0.1)
        finally:
            release.set()

    def test_other_exceptions_become_connection_errors(self) -> None:
        with pytest.raises(LLMConnectionError, match="scripted call failed: boom"):
            complete_with_timeout(ScriptedGenerator([ValueError("boom")]), "p", None)

    def test_llm_errors_pass_through(self) -> None:
        with pytest.raises(LLMTimeoutError, match="slow"):
            complete_with_timeout(ScriptedGenerator([LLMTimeoutError("slow")]), "p", 1.0)
