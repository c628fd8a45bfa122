"""LLM integration layer for the CRO autofix pipeline.

The code generator only needs one capability from a language model:
prompt text in, reply text out.  That capability is the ``Generator``
interface; this package provides adapters for it.

Public API
----------
Generator
    Abstract ``complete(prompt) -> str`` capability.
FunctionGenerator
    Wraps a plain callable (handy for stubs and scripted tests).
ChatModelGenerator
    Wraps a LangChain ``BaseChatModel`` with a per-call timeout.
LLMError
    Base exception for all LLM-related failures.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

logger = logging.getLogger(__name__)


# =========================================================================== #
#  Exceptions                                                                  #
# =========================================================================== #

class LLMError(Exception):
    """Base exception for LLM collaborator errors."""


class LLMConnectionError(LLMError):
    """Raised when the model cannot be reached or the call itself fails."""


class LLMTimeoutError(LLMError):
    """Raised when a call exceeds its timeout.  Retryable."""


class LLMResponseError(LLMError):
    """Raised when the model returns an empty or unusable reply."""


# =========================================================================== #
#  Generator capability                                                        #
# =========================================================================== #

class Generator(ABC):
    """Prompt-in, text-out language model capability."""

    name: str = "generator"

    @abstractmethod
    def complete(self, prompt: str) -> str:
        """Return the model's reply to *prompt*.

        Raises
        ------
        LLMError
            On connection failure, timeout or an unusable reply.
        """


class FunctionGenerator(Generator):
    """Adapts ``fn(prompt) -> str`` to the ``Generator`` interface.

    Anything *fn* raises other than an ``LLMError`` is reported as an
    ``LLMConnectionError`` so the retry loop can count it.
    """

    def __init__(self, fn: Callable[[str], str], name: str = "function") -> None:
        self._fn = fn
        self.name = name

    def complete(self, prompt: str) -> str:
        try:
            return self._fn(prompt)
        except LLMError:
            raise
        except Exception as exc:
            logger.warning("Generator %s call failed: %s", self.name, exc)
            raise LLMConnectionError(f"{self.name} call failed: {exc}") from exc


from cro_autofix.infrastructure.llm.chat_model import ChatModelGenerator  # noqa: E402

__all__ = [
    "ChatModelGenerator",
    "FunctionGenerator",
    "Generator",
    "LLMConnectionError",
    "LLMError",
    "LLMResponseError",
    "LLMTimeoutError",
]
