"""Domain enumerations for the CRO autofix pipeline.

These enums capture the fixed vocabularies used across the domain layer:
interaction event types, issue statuses and severities, the closed
catalogue of pattern kinds, remediation action types, fix lifecycle states,
pull-request states, and guardrail settings.
"""

from enum import Enum


class EventType(Enum):
    """Interaction event types emitted by the storefront tracker.

    The stored ``Event.type`` is a plain string so additive tracker types
    never break ingestion; this enum names the ones the matcher knows.
    """

    CLICK = "click"
    DEAD_CLICK = "dead_click"  # click with no observable page change
    RAGE_CLICK = "rage_click"
    DOUBLE_CLICK = "double_click"
    IMAGE_CLICK = "image_click"
    SCROLL = "scroll"
    SCROLL_REVERSAL = "scroll_reversal"
    HOVER_INTENT = "hover_intent"
    COLOR_SWATCH_HOVER = "color_swatch_hover"
    FORM_FOCUS = "form_focus"
    FORM_BLUR = "form_blur"
    PRODUCT_COMPARE = "product_compare"
    PRICE_CHECK = "price_check"
    PAGE_VIEW = "page_view"


class IssueStatus(Enum):
    """Lifecycle status of a detected Issue."""

    DETECTED = "detected"
    PROCESSING = "processing"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class IssueCategory(Enum):
    """Broad classification of a UX issue."""

    FRUSTRATION = "frustration"
    MISSING_FEATURE = "missing_feature"
    CONVERSION_BLOCKER = "conversion_blocker"


class Severity(Enum):
    """Issue severity, ordered from least to most urgent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class PatternKind(Enum):
    """Closed catalogue of problem signatures the matcher recognises."""

    IMAGE_GALLERY_NEEDED = "image_gallery_needed"
    BUTTON_NO_FEEDBACK = "button_no_feedback"
    DEAD_CLICK_ZONE = "dead_click_zone"
    COMPARISON_FEATURE_NEEDED = "comparison_feature_needed"
    COLOR_PREVIEW_NEEDED = "color_preview_needed"
    ADDRESS_AUTOCOMPLETE_NEEDED = "address_autocomplete_needed"
    FORM_FRICTION = "form_friction"
    SCROLL_CONFUSION = "scroll_confusion"


class ActionType(Enum):
    """Canonical remediation applied to a pattern."""

    LOADING_STATE = "loading_state"
    IMAGE_GALLERY = "image_gallery"
    PRODUCT_COMPARISON = "product_comparison"
    COLOR_PREVIEW = "color_preview"
    ADDRESS_AUTOCOMPLETE = "address_autocomplete"
    GENERIC = "generic"


class FixStatus(Enum):
    """Status of a Fix awaiting or past human review."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MERGED = "merged"


class LifecycleStage(Enum):
    """Stage of an issue in the fix lifecycle."""

    DETECTED = "detected"  # issue only, no fix yet
    PENDING = "pending"
    APPROVED = "approved"
    MERGED = "merged"
    REJECTED = "rejected"


class PRStatus(Enum):
    """State of a version-control pull request."""

    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class ViolationSeverity(Enum):
    """Severity of a single guardrail violation."""

    ERROR = "error"
    WARNING = "warning"


class GuardrailMode(Enum):
    """Whether guardrail violations block patch application."""

    ADVISORY = "advisory"
    BLOCKING = "blocking"


class GuardrailSource(Enum):
    """Where a guardrail policy came from."""

    STATIC = "static"  # policy document on disk
    DYNAMIC = "dynamic"  # extracted from the live source tree
    MANUAL = "manual"  # built-in defaults
    HYBRID = "hybrid"  # extracted policy with manual overrides
