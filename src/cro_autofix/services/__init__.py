"""Service layer for the CRO autofix pipeline.

Re-exports public service types for convenient top-level access::

    from cro_autofix.services import (
        ComponentRegistry, PatternMatcher, ActionMapper,
        CodeGenerator, TemplateFixer, GuardrailValidator, ThemeExtractor,
        PatchEngine, PatchSession, FixLifecycleStore,
        FixPipeline, PatchRequest, PatchResponse,
    )
"""

from cro_autofix.services.action_mapper import ActionMapper, GenerationRequest, action_type_for
from cro_autofix.services.code_generator import CodeGenerator, FixDraft, build_generation_graph
from cro_autofix.services.component_registry import DEFAULT_COMPONENTS, ComponentRegistry
from cro_autofix.services.fix_lifecycle import FixLifecycleStore
from cro_autofix.services.guardrails import (
    DEFAULT_GUARDRAILS,
    GuardrailValidator,
    format_guardrails_for_prompt,
    load_guardrails,
    merge_guardrails,
    save_guardrails,
)
from cro_autofix.services.patch_engine import PatchEngine, PatchSession
from cro_autofix.services.pattern_matcher import (
    DEFAULT_SIGNATURES,
    PatternMatcher,
    Signature,
    summarize_issues,
)
from cro_autofix.services.pipeline import FixPipeline, PatchRequest, PatchResponse
from cro_autofix.services.syntax_validator import check_syntax, validate_all, validate_patch
from cro_autofix.services.template_fixer import TemplateFixer
from cro_autofix.services.theme_extractor import ThemeExtractor

__all__ = [
    "DEFAULT_COMPONENTS",
    "DEFAULT_GUARDRAILS",
    "DEFAULT_SIGNATURES",
    "ActionMapper",
    "CodeGenerator",
    "ComponentRegistry",
    "FixDraft",
    "FixLifecycleStore",
    "FixPipeline",
    "GenerationRequest",
    "GuardrailValidator",
    "PatchEngine",
    "PatchRequest",
    "PatchResponse",
    "PatchSession",
    "PatternMatcher",
    "Signature",
    "TemplateFixer",
    "ThemeExtractor",
    "action_type_for",
    "build_generation_graph",
    "check_syntax",
    "format_guardrails_for_prompt",
    "load_guardrails",
    "merge_guardrails",
    "save_guardrails",
    "summarize_issues",
    "validate_all",
    "validate_patch",
]
