"""Issue-to-patch pipeline.

Wires the stages together for one issue at a time::

    Issue -> ActionMapper -> CodeGenerator | TemplateFixer
          -> guardrails + syntax gate -> PatchEngine -> FixLifecycleStore

``FixPipeline.process`` handles a single ``PatchRequest``;
``FixPipeline.run`` detects issues from events first and processes each
one that has a known component.  Nothing is written to the working tree
before the gate passes, and a request whose patches only partly apply is
rolled back (unless configured otherwise), so the tree never keeps half a
fix.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from cro_autofix.domain.entities import Fix, Issue
from cro_autofix.domain.enums import FixStatus
from cro_autofix.domain.exceptions import ConfigurationError
from cro_autofix.domain.values import (
    ApplyResult,
    Event,
    FixValidation,
    GeneratedFix,
    Guardrails,
    WriteResult,
)
from cro_autofix.infrastructure.config import PipelineConfig
from cro_autofix.infrastructure.event_bus import EventBus
from cro_autofix.infrastructure.kv_store import InMemoryKeyValueStore
from cro_autofix.infrastructure.llm import Generator
from cro_autofix.infrastructure.vcs import VersionControl
from cro_autofix.services.action_mapper import ActionMapper, GenerationRequest
from cro_autofix.services.code_generator import CodeGenerator
from cro_autofix.services.component_registry import ComponentRegistry
from cro_autofix.services.fix_lifecycle import FixLifecycleStore
from cro_autofix.services.guardrails import DEFAULT_GUARDRAILS, GuardrailValidator
from cro_autofix.services.patch_engine import PatchEngine
from cro_autofix.services.pattern_matcher import PatternMatcher
from cro_autofix.services.syntax_validator import validate_all
from cro_autofix.services.template_fixer import TemplateFixer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatchRequest:
    """One issue to fix, with or without the LLM."""

    issue: Issue
    use_llm: bool = True


@dataclass(frozen=True)
class PatchResponse:
    """Everything the pipeline produced for one request.

    Attributes
    ----------
    mapping:
        The generation request built by the action mapper.
    validation_result:
        Syntax and guardrail reports for the generated code (``None`` when
        generation failed).
    generated_code:
        The generator's output.
    apply_result, write_result:
        Patch engine outcomes (``None`` when nothing was applied).
    fix:
        The stored ``pending`` fix when the request went all the way.
    rolled_back:
        A partial application was undone.
    error:
        Why the request stopped, when it did.
    """

    mapping: GenerationRequest
    validation_result: FixValidation | None = None
    generated_code: GeneratedFix | None = None
    apply_result: ApplyResult | None = None
    write_result: WriteResult | None = None
    fix: Fix | None = None
    rolled_back: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.fix is not None


class FixPipeline:
    """Drives issues through mapping, generation, validation and patching.

    Parameters
    ----------
    root:
        Storefront working-tree root.
    generator:
        LLM capability; required only for ``use_llm=True`` requests.
    config:
        Pipeline configuration.
    registry:
        Selector-to-component table used by detection.
    guardrails:
        Style policy; defaults to :data:`DEFAULT_GUARDRAILS`.
    vcs:
        Version-control collaborator for pull requests.
    fix_store:
        Lifecycle store; an in-memory one is created when omitted.
    event_bus:
        Bus shared by every stage.
    """

    def __init__(
        self,
        root: str | Path,
        generator: Generator | None = None,
        config: PipelineConfig | None = None,
        registry: ComponentRegistry | None = None,
        guardrails: Guardrails | None = None,
        vcs: VersionControl | None = None,
        fix_store: FixLifecycleStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.root = Path(root)
        self.config = config or PipelineConfig()
        self.config.validate()
        self.event_bus = event_bus or EventBus()
        self.guardrails = guardrails or DEFAULT_GUARDRAILS

        self.matcher = PatternMatcher(self.config.detection, registry, self.event_bus)
        self.mapper = ActionMapper(self.root, encoding=self.config.patching.encoding)
        self.engine = PatchEngine(self.root, self.config.patching, self.event_bus)
        self.validator = GuardrailValidator()
        self.template_fixer = TemplateFixer()
        self.code_generator = (
            CodeGenerator(
                generator,
                self.config.generation,
                guardrails=self.guardrails,
                read_file=self._read_current,
                event_bus=self.event_bus,
            )
            if generator is not None
            else None
        )
        self.fix_store = fix_store or FixLifecycleStore(
            InMemoryKeyValueStore(),
            vcs=vcs,
            event_bus=self.event_bus,
            open_prs=self.config.create_pr,
        )

    def _read_current(self, path: str) -> str:
        try:
            return self.engine.read_file(path)
        except ConfigurationError as exc:
            raise FileNotFoundError(str(exc)) from exc

    # -- stages ------------------------------------------------------------------

    def _generate(
        self,
        mapping: GenerationRequest,
        use_llm: bool,
        cancel_event: threading.Event | None,
    ) -> GeneratedFix:
        if not use_llm:
            return self.template_fixer.generate(mapping)
        if self.code_generator is None:
            raise ConfigurationError(
                "LLM generation requested but no generator is configured", field="generator"
            )
        return self.code_generator.generate(mapping, cancel_event=cancel_event)

    def validate(self, generated: GeneratedFix) -> FixValidation:
        """Gate *generated* against the current working tree."""
        syntax = validate_all(generated.patches, generated.new_files, read_file=self._read_current)
        reports = self.validator.validate_fix(generated, self.guardrails, self.config.mode)
        return FixValidation(syntax=syntax, guardrails=reports)

    def process(
        self,
        request: PatchRequest,
        cancel_event: threading.Event | None = None,
    ) -> PatchResponse:
        """Take one issue as far through the pipeline as it can go.

        Raises
        ------
        ConfigurationError
            If the issue's component file is missing, or LLM generation is
            requested without a generator.
        """
        issue = request.issue
        mapping = self.mapper.map(issue)

        generated = self._generate(mapping, request.use_llm, cancel_event)
        if not generated.success:
            return PatchResponse(mapping=mapping, generated_code=generated, error=generated.error)

        validation = self.validate(generated)
        if not validation.valid:
            logger.info("Validation issues for %s: %s", issue.id, "; ".join(validation.issues))
        if validation.blocked:
            return PatchResponse(
                mapping=mapping,
                validation_result=validation,
                generated_code=generated,
                error="Validation blocked application: " + "; ".join(validation.issues),
            )

        session = self.engine.new_session()
        write_result = self.engine.write_new_files(generated.new_files, session=session)
        apply_result = self.engine.apply_code_patches(generated.patches, session=session)

        if not (write_result.all_written and apply_result.all_applied):
            failures = apply_result.errors + [
                f"{r.path}: {r.error}" for r in write_result.results if not r.success
            ]
            error = "Partial application: " + "; ".join(failures)
            rolled_back = False
            if self.config.rollback_on_partial:
                self.engine.rollback(session)
                rolled_back = True
            return PatchResponse(
                mapping=mapping,
                validation_result=validation,
                generated_code=generated,
                apply_result=apply_result,
                write_result=write_result,
                rolled_back=rolled_back,
                error=error,
            )

        applied_files = apply_result.applied_files + [
            r.path for r in write_result.results if r.success and r.path not in apply_result.applied_files
        ]
        fix = self.fix_store.create_fix(issue, generated, applied_files, validation)
        return PatchResponse(
            mapping=mapping,
            validation_result=validation,
            generated_code=generated,
            apply_result=apply_result,
            write_result=write_result,
            fix=fix,
        )

    def run(
        self,
        events: Iterable[Event],
        use_llm: bool = True,
        now: float | None = None,
    ) -> list[PatchResponse]:
        """Detect issues in *events* and process each fixable one.

        Issues without a known component, and issues that already have a
        pending or merged fix, are skipped.  A configuration problem with one
        issue is logged and does not stop the others.
        """
        responses: list[PatchResponse] = []
        for issue in self.matcher.detect(events, now=now):
            if not issue.has_component:
                logger.info("Skipping %s: no component for %s", issue.id, issue.element_selector)
                continue
            existing = self.fix_store.fixes_for_issue(issue.id)
            if any(f.status in (FixStatus.PENDING, FixStatus.MERGED) for f in existing):
                logger.info("Skipping %s: already has a fix", issue.id)
                continue
            try:
                responses.append(self.process(PatchRequest(issue, use_llm)))
            except ConfigurationError as exc:
                logger.warning("Skipping %s: %s", issue.id, exc)
        return responses
