"""LangChain chat-model adapter for the ``Generator`` interface.

Any ``BaseChatModel`` (Anthropic, OpenAI, a local server, or the scripted
test model) can drive the code generator through this wrapper.  Calls run
on a single-worker thread pool so a hung request turns into an
``LLMTimeoutError`` the retry loop can count, instead of a stuck pipeline.
"""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from cro_autofix.infrastructure.llm import (
    Generator,
    LLMConnectionError,
    LLMResponseError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a senior React/TypeScript engineer fixing UX issues on an "
    "e-commerce storefront. Reply with exactly one JSON object and nothing else."
)


class ChatModelGenerator(Generator):
    """Runs prompts through a LangChain chat model.

    Parameters
    ----------
    model:
        A LangChain chat model.
    timeout:
        Seconds allowed per call; ``None`` disables the limit.
    system_prompt:
        System message sent before every prompt.
    """

    def __init__(
        self,
        model: BaseChatModel,
        timeout: float | None = 60.0,
        system_prompt: str = _SYSTEM_PROMPT,
    ) -> None:
        self.model = model
        self._timeout = timeout
        self._system_prompt = system_prompt
        self.name = getattr(model, "model_name", None) or getattr(model, "model", None) or model._llm_type

    def _invoke_with_timeout(self, messages: list[Any]) -> Any:
        """Invoke the model with the optional timeout."""
        if self._timeout is None:
            return self.model.invoke(messages)
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(self.model.invoke, messages)
            return future.result(timeout=self._timeout)
        finally:
            # Do not wait for an abandoned call that is still running.
            pool.shutdown(wait=False, cancel_futures=True)

    def complete(self, prompt: str) -> str:
        messages = [SystemMessage(content=self._system_prompt), HumanMessage(content=prompt)]
        try:
            reply = self._invoke_with_timeout(messages)
        except concurrent.futures.TimeoutError as exc:
            raise LLMTimeoutError(
                f"{self.name} did not answer within {self._timeout}s"
            ) from exc
        except Exception as exc:
            logger.warning("Chat model %s call failed: %s", self.name, exc)
            raise LLMConnectionError(f"{self.name} call failed: {exc}") from exc

        content = getattr(reply, "content", reply)
        if isinstance(content, list):
            # Content blocks: keep the text parts only.
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        if not isinstance(content, str) or not content.strip():
            raise LLMResponseError(f"{self.name} returned an empty reply")
        return content
