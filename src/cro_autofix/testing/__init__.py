"""Public testing utilities for CRO autofix.

Provides scripted LLM stand-ins for writing self-contained examples and
tests without requiring API keys.
"""

from cro_autofix.testing.mock_llm import ScriptedChatModel, ScriptedGenerator

__all__ = ["ScriptedChatModel", "ScriptedGenerator"]
