"""Infrastructure layer: configuration, persistence, event bus, LLM and VCS adapters."""

from cro_autofix.infrastructure.config import (
    DetectionConfig,
    GenerationConfig,
    PatchConfig,
    PipelineConfig,
    SignatureThresholds,
    load_config_from_json,
    save_config_to_json,
)
from cro_autofix.infrastructure.event_bus import EventBus
from cro_autofix.infrastructure.event_store import (
    InMemoryEventStore,
    InteractionEventStore,
    JsonlEventStore,
)
from cro_autofix.infrastructure.kv_store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
)
from cro_autofix.infrastructure.vcs import InMemoryVersionControl, VersionControl

__all__ = [
    "DetectionConfig",
    "EventBus",
    "GenerationConfig",
    "InMemoryEventStore",
    "InMemoryKeyValueStore",
    "InMemoryVersionControl",
    "InteractionEventStore",
    "JsonFileKeyValueStore",
    "JsonlEventStore",
    "KeyValueStore",
    "PatchConfig",
    "PipelineConfig",
    "SignatureThresholds",
    "VersionControl",
    "load_config_from_json",
    "save_config_to_json",
]
