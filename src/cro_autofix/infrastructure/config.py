"""Configuration dataclasses for the CRO autofix pipeline.

Each config is a plain ``dataclass`` with a ``validate()`` method that raises
``ValueError`` on invalid combinations, plus ``to_dict()`` / ``from_dict()``
for JSON round-trips.

Configs are **frozen** (``frozen=True``) so one instance can be shared by
every stage of a pipeline without risking silent mutation.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from cro_autofix.domain.enums import GuardrailMode


# ===================================================================== #
#  Detection Configuration                                               #
# ===================================================================== #

@dataclass(frozen=True)
class SignatureThresholds:
    """Count thresholds for one problem signature.

    Attributes
    ----------
    min_events:
        Minimum qualifying events (or click/rage pairs) for a group to
        become an issue.
    min_sessions:
        Minimum distinct sessions contributing to the group.
    medium_sessions, high_sessions, critical_sessions:
        Severity escalates to the named level once ``unique_sessions``
        reaches the threshold; below ``medium_sessions`` it is ``low``.
    """

    min_events: int
    min_sessions: int
    medium_sessions: int
    high_sessions: int
    critical_sessions: int

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.min_events < 1:
            raise ValueError(f"min_events must be >= 1, got {self.min_events}")
        if self.min_sessions < 1:
            raise ValueError(f"min_sessions must be >= 1, got {self.min_sessions}")
        if not (self.medium_sessions <= self.high_sessions <= self.critical_sessions):
            raise ValueError(
                "severity thresholds must satisfy medium <= high <= critical, got "
                f"{self.medium_sessions}/{self.high_sessions}/{self.critical_sessions}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignatureThresholds:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


@dataclass(frozen=True)
class DetectionConfig:
    """Parameters of the pattern matcher.

    Attributes
    ----------
    window_hours:
        Only events this recent (relative to the newest event, or to an
        explicit ``now``) are considered.
    sample_cap:
        Maximum supporting events copied onto an issue.
    rage_pair_window_ms:
        A ``rage_click`` pairs with a preceding ``click`` on the same
        selector in the same session at most this long before it.
    thresholds:
        Per-pattern overrides keyed by ``PatternKind`` value.  Patterns not
        listed keep their catalogue defaults.
    """

    window_hours: float = 24.0
    sample_cap: int = 10
    rage_pair_window_ms: float = 2000.0
    thresholds: dict[str, SignatureThresholds] = field(default_factory=dict)

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.window_hours <= 0:
            raise ValueError(f"window_hours must be > 0, got {self.window_hours}")
        if self.sample_cap < 1:
            raise ValueError(f"sample_cap must be >= 1, got {self.sample_cap}")
        if self.rage_pair_window_ms <= 0:
            raise ValueError(
                f"rage_pair_window_ms must be > 0, got {self.rage_pair_window_ms}"
            )
        for thresholds in self.thresholds.values():
            thresholds.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_hours": self.window_hours,
            "sample_cap": self.sample_cap,
            "rage_pair_window_ms": self.rage_pair_window_ms,
            "thresholds": {k: v.to_dict() for k, v in self.thresholds.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DetectionConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        if "thresholds" in filtered:
            filtered["thresholds"] = {
                k: SignatureThresholds.from_dict(v)
                for k, v in filtered["thresholds"].items()
            }
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Generation Configuration                                              #
# ===================================================================== #

@dataclass(frozen=True)
class GenerationConfig:
    """Bounds on the code generator's retry loop.

    Attributes
    ----------
    max_attempts:
        LLM calls made before giving up with ``success=False``.
    timeout:
        Seconds allowed per LLM call.  A timeout counts as a failed attempt.
    """

    max_attempts: int = 3
    timeout: float = 60.0

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Patch Configuration                                                   #
# ===================================================================== #

@dataclass(frozen=True)
class PatchConfig:
    """Working-tree write policy.

    Attributes
    ----------
    allow_overwrite:
        Default for ``write_new_files``: replace files that already exist.
    encoding:
        Text encoding used to read and write source files.
    """

    allow_overwrite: bool = False
    encoding: str = "utf-8"

    def validate(self) -> None:
        if not self.encoding:
            raise ValueError("encoding must be non-empty")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatchConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Pipeline Configuration                                                #
# ===================================================================== #

_VALID_GUARDRAIL_MODES = frozenset(m.value for m in GuardrailMode)


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level configuration of the issue-to-patch pipeline.

    Attributes
    ----------
    guardrail_mode:
        ``"advisory"`` reports theme violations without blocking;
        ``"blocking"`` refuses to apply a fix with an invalid report.
    rollback_on_partial:
        Roll back the whole request when any patch or new file fails.
    create_pr:
        Ask the version-control collaborator for a PR when a fix is stored.
    """

    guardrail_mode: str = GuardrailMode.ADVISORY.value
    rollback_on_partial: bool = True
    create_pr: bool = True
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    patching: PatchConfig = field(default_factory=PatchConfig)

    @property
    def mode(self) -> GuardrailMode:
        return GuardrailMode(self.guardrail_mode)

    def validate(self) -> None:
        """Raise ``ValueError`` if any field (or nested config) is invalid."""
        if self.guardrail_mode not in _VALID_GUARDRAIL_MODES:
            raise ValueError(
                f"guardrail_mode must be one of {sorted(_VALID_GUARDRAIL_MODES)}, "
                f"got {self.guardrail_mode!r}"
            )
        self.detection.validate()
        self.generation.validate()
        self.patching.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "guardrail_mode": self.guardrail_mode,
            "rollback_on_partial": self.rollback_on_partial,
            "create_pr": self.create_pr,
            "detection": self.detection.to_dict(),
            "generation": self.generation.to_dict(),
            "patching": self.patching.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        nested = {
            "detection": DetectionConfig,
            "generation": GenerationConfig,
            "patching": PatchConfig,
        }
        for key, sub_cls in nested.items():
            if isinstance(filtered.get(key), dict):
                filtered[key] = sub_cls.from_dict(filtered[key])
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  JSON helpers                                                          #
# ===================================================================== #

def load_config_from_json(source: str | Path) -> PipelineConfig:
    """Load a ``PipelineConfig`` from a JSON file path or JSON string."""
    if isinstance(source, Path) or not source.lstrip().startswith("{"):
        text = Path(source).read_text(encoding="utf-8")
    else:
        text = source
    raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("Top-level JSON must be an object")
    return PipelineConfig.from_dict(raw)


def save_config_to_json(config: PipelineConfig, path: str | Path) -> None:
    """Write *config* to *path* as indented JSON."""
    Path(path).write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
