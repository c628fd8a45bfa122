"""LLM code generator: a bounded draft/check/retry loop on LangGraph.

``CodeGenerator.generate()`` compiles a small ``StateGraph``::

    START -> draft -> check --(valid | cancelled | budget spent)--> finish -> END
                ^        |
                +-retry--+

``draft`` prompts the injected ``Generator`` and parses its JSON reply;
``check`` merges every patch into its file and runs the syntax validator.
Errors from a failed round are appended to the next prompt.  Nothing is
written to the working tree.

Note: this module intentionally does NOT use ``from __future__ import
annotations`` because LangGraph resolves the state ``TypedDict`` hints at
runtime via ``get_type_hints()``.
"""

import concurrent.futures
import json
import logging
import operator
import re
import threading
from collections.abc import Callable
from typing import Annotated, Any, Literal, Optional, TypedDict

from langchain_core.prompts import ChatPromptTemplate
from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from cro_autofix.domain.events import FixGenerated
from cro_autofix.domain.exceptions import GenerationError
from cro_autofix.domain.values import CodePatch, GeneratedFix, Guardrails, NewFile
from cro_autofix.infrastructure.config import GenerationConfig
from cro_autofix.infrastructure.event_bus import EventBus
from cro_autofix.infrastructure.llm import (
    Generator,
    LLMConnectionError,
    LLMError,
    LLMTimeoutError,
)
from cro_autofix.services.action_mapper import GenerationRequest
from cro_autofix.services.guardrails import format_guardrails_for_prompt
from cro_autofix.services.syntax_validator import validate_all

logger = logging.getLogger(__name__)

CANCELLED = "Generation cancelled"


# -- Reply schema ------------------------------------------------------------


class PatchDraft(BaseModel):
    """One find-and-replace patch as returned by the model."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath", min_length=1)
    description: str = ""
    old_code: str = Field(alias="oldCode", min_length=1)
    new_code: str = Field(alias="newCode")


class NewFileDraft(BaseModel):
    """One whole new file as returned by the model."""

    path: str = Field(min_length=1)
    content: str
    description: str = ""


class FixDraft(BaseModel):
    """The JSON object the model must reply with."""

    model_config = ConfigDict(populate_by_name=True)

    patches: list[PatchDraft] = Field(default_factory=list)
    new_files: list[NewFileDraft] = Field(default_factory=list, alias="newFiles")
    explanation: str = ""

    def to_patches(self) -> tuple[CodePatch, ...]:
        return tuple(
            CodePatch(p.file_path, p.old_code, p.new_code, p.description) for p in self.patches
        )

    def to_new_files(self) -> tuple[NewFile, ...]:
        return tuple(NewFile(f.path, f.content, f.description) for f in self.new_files)


_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def parse_reply(text: str) -> FixDraft:
    """Extract and validate the JSON object in *text*.

    Code fences and prose around the object are tolerated.

    Raises
    ------
    GenerationError
        If no valid object is found or it holds no changes.
    """
    candidates = [m.group(1) for m in _FENCE.finditer(text)]
    start, end = text.find("{"), text.rfind("}")
    if start >= 0 and end > start:
        candidates.append(text[start : end + 1])

    last_error = "Response contained no JSON object"
    for candidate in candidates:
        try:
            draft = FixDraft.model_validate(json.loads(candidate))
        except json.JSONDecodeError as exc:
            last_error = f"Response is not valid JSON: {exc.msg} at line {exc.lineno}"
            continue
        except SchemaError as exc:
            last_error = f"Response does not match the expected shape: {exc.error_count()} error(s)"
            continue
        if not draft.patches and not draft.new_files:
            raise GenerationError("Response contained no patches or new files")
        return draft
    raise GenerationError(last_error)


# -- Prompt ------------------------------------------------------------------

_GENERATION_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "human",
            "Fix this UX issue on the storefront.\n\n"
            "## Issue\n"
            "**Pattern**: {pattern}\n"
            "**Component**: {component_name} ({component_path})\n"
            "**Element**: {selector}\n"
            "**Problem**: {problem}\n"
            "**User intent**: {intent}\n"
            "**Current outcome**: {outcome}\n"
            "**Suggested fix**: {suggested_fix}\n"
            "**Evidence**: {event_count} events from {sessions} sessions\n\n"
            "## Action\n"
            "{action_type}: {rationale}\n\n"
            "{guardrails}\n\n"
            "## Source files\n"
            "{sources}\n\n"
            "## Reply format\n"
            "Reply with one JSON object:\n"
            '{{"patches": [{{"filePath": "...", "description": "...", '
            '"oldCode": "exact text currently in the file", "newCode": "replacement"}}], '
            '"newFiles": [{{"path": "...", "content": "...", "description": "..."}}], '
            '"explanation": "..."}}\n'
            "oldCode must be copied verbatim from the file, including whitespace."
            "{feedback}",
        ),
    ]
)


def build_prompt(
    request: GenerationRequest,
    guardrails: Guardrails | None = None,
    previous_errors: list[str] | None = None,
) -> str:
    """Render the generation prompt for *request*."""
    issue = request.issue
    sources = "\n\n".join(
        f"### {source.path}\n```tsx\n{source.content}\n```" for source in request.source_files
    )
    feedback = ""
    if previous_errors:
        feedback = "\n\n## Fix these errors from your previous attempt\n" + "\n".join(
            f"- {error}" for error in previous_errors
        )
    messages = _GENERATION_PROMPT.format_messages(
        pattern=issue.pattern_id.value,
        component_name=issue.component_name,
        component_path=issue.component_path,
        selector=issue.element_selector,
        problem=issue.problem_statement,
        intent=issue.user_intent or "N/A",
        outcome=issue.current_outcome or "N/A",
        suggested_fix=issue.suggested_fix or "N/A",
        event_count=issue.event_count,
        sessions=issue.unique_sessions,
        action_type=request.action_type.value,
        rationale=request.rationale,
        guardrails=format_guardrails_for_prompt(guardrails) if guardrails else "",
        sources=sources or "(none)",
        feedback=feedback,
    )
    return str(messages[0].content)


# -- Graph state -------------------------------------------------------------


class GenerationState(TypedDict, total=False):
    """State flowing through the generation graph."""

    attempt: int
    errors: list[str]
    draft: Optional[FixDraft]
    result: Optional[GeneratedFix]
    cancelled: bool
    attempt_log: Annotated[list[str], operator.add]


# -- Nodes and edges ---------------------------------------------------------


def complete_with_timeout(generator: Generator, prompt: str, timeout: Optional[float]) -> str:
    """Call ``generator.complete`` with a per-call time limit.

    Raises
    ------
    LLMTimeoutError
        If the call does not return within *timeout* seconds.
    LLMError
        For any other failure; unexpected exceptions become
        ``LLMConnectionError``.
    """
    if timeout is None:
        call = generator.complete
    else:
        def call(text: str) -> str:
            pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
            try:
                return pool.submit(generator.complete, text).result(timeout=timeout)
            finally:
                # An abandoned call keeps running; do not wait for it.
                pool.shutdown(wait=False, cancel_futures=True)
    try:
        return call(prompt)
    except concurrent.futures.TimeoutError as exc:
        raise LLMTimeoutError(f"{generator.name} did not answer within {timeout}s") from exc
    except LLMError:
        raise
    except Exception as exc:
        raise LLMConnectionError(f"{generator.name} call failed: {exc}") from exc


def make_draft_node(
    generator: Generator,
    request: GenerationRequest,
    guardrails: Guardrails | None,
    cancel_event: threading.Event | None,
    timeout: Optional[float] = None,
) -> Callable[[GenerationState], dict[str, Any]]:
    """Create a draft node closed over the generator and request."""

    def draft_node(state: GenerationState) -> dict[str, Any]:
        if cancel_event is not None and cancel_event.is_set():
            return {"cancelled": True}

        attempt = state.get("attempt", 0) + 1
        prompt = build_prompt(request, guardrails, state.get("errors") or None)
        try:
            draft = parse_reply(complete_with_timeout(generator, prompt, timeout))
        except (LLMError, GenerationError) as exc:
            logger.warning(
                "Generation attempt %d for %s failed: %s", attempt, request.issue.id, exc
            )
            return {
                "attempt": attempt,
                "draft": None,
                "errors": [str(exc)],
                "attempt_log": [f"attempt {attempt}: {exc}"],
            }
        return {"attempt": attempt, "draft": draft}

    return draft_node


def make_check_node(
    request: GenerationRequest,
    read_file: Callable[[str], str] | None,
    agent_name: str,
) -> Callable[[GenerationState], dict[str, Any]]:
    """Create a check node that syntax-validates the current draft."""

    def lookup(path: str) -> str:
        content = request.content_of(path)
        if content is not None:
            return content
        if read_file is None:
            raise FileNotFoundError(f"{path} is not among the provided source files")
        return read_file(path)

    def check_node(state: GenerationState) -> dict[str, Any]:
        draft = state.get("draft")
        if state.get("cancelled") or draft is None:
            return {}

        patches = draft.to_patches()
        new_files = draft.to_new_files()
        report = validate_all(patches, new_files, read_file=lookup)
        attempt = state.get("attempt", 0)
        if not report.valid:
            logger.info(
                "Generation attempt %d for %s failed validation: %s",
                attempt, request.issue.id, report.summary,
            )
            return {
                "errors": report.errors,
                "attempt_log": [f"attempt {attempt}: {report.summary}"],
            }
        return {
            "errors": [],
            "result": GeneratedFix(
                success=True,
                patches=patches,
                new_files=new_files,
                explanation=draft.explanation,
                agent_used=agent_name,
                attempts=attempt,
            ),
        }

    return check_node


def make_route_after_check(max_attempts: int) -> Callable[[GenerationState], Literal["draft", "finish"]]:
    """Create the retry edge bounded by *max_attempts*."""

    def route_after_check(state: GenerationState) -> Literal["draft", "finish"]:
        if state.get("result") is not None or state.get("cancelled"):
            return "finish"
        if state.get("attempt", 0) >= max_attempts:
            return "finish"
        return "draft"

    return route_after_check


def make_finish_node(agent_name: str) -> Callable[[GenerationState], dict[str, Any]]:
    """Create the node that turns an unfinished state into a failure result."""

    def finish_node(state: GenerationState) -> dict[str, Any]:
        if state.get("result") is not None:
            return {}
        attempts = state.get("attempt", 0)
        if state.get("cancelled"):
            error = CANCELLED
        else:
            details = "; ".join(state.get("errors") or ["no usable reply"])
            error = f"Failed after {attempts} attempt(s): {details}"
        return {
            "result": GeneratedFix(
                success=False, agent_used=agent_name, error=error, attempts=attempts
            )
        }

    return finish_node


def build_generation_graph(
    generator: Generator,
    request: GenerationRequest,
    max_attempts: int,
    guardrails: Guardrails | None = None,
    read_file: Callable[[str], str] | None = None,
    cancel_event: threading.Event | None = None,
    timeout: Optional[float] = None,
) -> Any:
    """Build and compile the draft/check/retry graph for one request.

    Returns
    -------
    CompiledStateGraph
        A compiled graph ready for ``.invoke()``.
    """
    graph = StateGraph(GenerationState)
    graph.add_node("draft", make_draft_node(generator, request, guardrails, cancel_event, timeout))
    graph.add_node("check", make_check_node(request, read_file, generator.name))
    graph.add_node("finish", make_finish_node(generator.name))

    graph.add_edge(START, "draft")
    graph.add_edge("draft", "check")
    graph.add_conditional_edges(
        "check",
        make_route_after_check(max_attempts),
        {"draft": "draft", "finish": "finish"},
    )
    graph.add_edge("finish", END)
    return graph.compile()


# -- CodeGenerator -----------------------------------------------------------


class CodeGenerator:
    """Turns a ``GenerationRequest`` into a syntax-clean ``GeneratedFix``.

    Parameters
    ----------
    generator:
        The LLM capability (``complete(prompt) -> str``).
    config:
        Attempt budget and the per-call timeout applied to *generator*.
    guardrails:
        Policy summarised in the prompt; ``None`` omits the section.
    read_file:
        Fallback ``read_file(path) -> str`` for patches targeting files
        that are not in the request's source files.
    event_bus:
        Optional bus receiving ``FixGenerated``.
    """

    def __init__(
        self,
        generator: Generator,
        config: GenerationConfig | None = None,
        guardrails: Guardrails | None = None,
        read_file: Callable[[str], str] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.generator = generator
        self.config = config or GenerationConfig()
        self.guardrails = guardrails
        self._read_file = read_file
        self._event_bus = event_bus

    def generate(
        self,
        request: GenerationRequest,
        cancel_event: threading.Event | None = None,
    ) -> GeneratedFix:
        """Run the bounded loop; never raises for LLM or validation failures."""
        max_attempts = self.config.max_attempts
        app = build_generation_graph(
            self.generator,
            request,
            max_attempts,
            guardrails=self.guardrails,
            read_file=self._read_file,
            cancel_event=cancel_event,
            timeout=self.config.timeout,
        )
        # Two nodes per attempt plus the finish node.
        final = app.invoke(
            {"attempt": 0, "errors": [], "draft": None, "result": None, "cancelled": False},
            config={"recursion_limit": 2 * max_attempts + 5},
        )
        result: GeneratedFix = final["result"]

        if result.success:
            logger.info(
                "Generated fix for %s in %d attempt(s): %d patch(es), %d new file(s)",
                request.issue.id, result.attempts, len(result.patches), len(result.new_files),
            )
        else:
            logger.warning("Generation for %s failed: %s", request.issue.id, result.error)
        if self._event_bus is not None:
            self._event_bus.publish(
                FixGenerated(
                    source_id="code_generator",
                    issue_id=request.issue.id,
                    success=result.success,
                    attempts=result.attempts,
                    agent_used=result.agent_used,
                    error=result.error,
                )
            )
        return result
