"""Pattern matcher: interaction events -> UX issues.

Scans the event log for a fixed catalogue of problem signatures (repeated
unproductive clicks on images, rage clicks right after a click, dead-click
zones, comparison and address-entry friction...) and emits ``Issue``
records carrying a bounded sample of supporting events.

Detection is deterministic: the window is anchored on the newest event (or
an explicit ``now``), groups are visited in sorted order, and issue
identity is the fingerprint of (pattern, selector, component path).
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

import numpy as np

from cro_autofix.domain.entities import Issue, issue_fingerprint
from cro_autofix.domain.enums import (
    EventType,
    IssueCategory,
    PatternKind,
    Severity,
)
from cro_autofix.domain.events import IssueDetected
from cro_autofix.domain.values import Event, IssueSummary
from cro_autofix.infrastructure.config import DetectionConfig, SignatureThresholds
from cro_autofix.infrastructure.event_bus import EventBus
from cro_autofix.services.component_registry import ComponentRegistry

logger = logging.getLogger(__name__)

_MS_PER_HOUR = 3_600_000.0

# ---------------------------------------------------------------------------
# Selector predicates
# ---------------------------------------------------------------------------


def is_image_selector(selector: str) -> bool:
    lowered = selector.lower()
    return any(token in lowered for token in ("img", "image", "photo"))


def is_color_selector(selector: str) -> bool:
    lowered = selector.lower()
    return any(token in lowered for token in ("color", "colour", "swatch", "variant"))


def is_address_selector(selector: str) -> bool:
    lowered = selector.lower()
    return any(
        token in lowered
        for token in ("address", "street", "city", "zip", "postal", "postcode")
    )


# ---------------------------------------------------------------------------
# Signature catalogue
# ---------------------------------------------------------------------------

GROUP_BY_SELECTOR = "selector"
GROUP_BY_PAGE = "page"


@dataclass(frozen=True)
class Signature:
    """One recognisable problem pattern.

    Templates may use ``{count}``, ``{sessions}`` and ``{selector}``.
    ``paired`` signatures count ``click`` -> ``rage_click`` pairs instead
    of raw events.  ``min_per_session`` requires that many qualifying events
    inside at least one session.
    """

    kind: PatternKind
    category: IssueCategory
    event_types: frozenset[str]
    thresholds: SignatureThresholds
    problem: str
    intent: str
    outcome: str
    fix: str
    group_by: str = GROUP_BY_SELECTOR
    selector_filter: Callable[[str], bool] | None = None
    min_per_session: int = 1
    paired: bool = False


def _types(*members: EventType) -> frozenset[str]:
    return frozenset(m.value for m in members)


DEFAULT_SIGNATURES: tuple[Signature, ...] = (
    Signature(
        kind=PatternKind.IMAGE_GALLERY_NEEDED,
        category=IssueCategory.FRUSTRATION,
        event_types=_types(EventType.DEAD_CLICK, EventType.DOUBLE_CLICK, EventType.IMAGE_CLICK),
        thresholds=SignatureThresholds(3, 1, 2, 5, 10),
        problem="Users clicked the image {selector} {count} times across {sessions} sessions and nothing happened",
        intent="View a larger image or more product photos",
        outcome="Nothing happens - the image is not clickable",
        fix="Make the image open a gallery/lightbox modal with the product's photos",
        selector_filter=is_image_selector,
        min_per_session=3,
    ),
    Signature(
        kind=PatternKind.BUTTON_NO_FEEDBACK,
        category=IssueCategory.FRUSTRATION,
        event_types=_types(EventType.CLICK, EventType.RAGE_CLICK),
        thresholds=SignatureThresholds(2, 1, 2, 4, 8),
        problem="Users rage-clicked {selector} right after clicking it ({count} times, {sessions} sessions)",
        intent="Get confirmation that the click registered",
        outcome="No visible feedback while the action is processing",
        fix="Show a loading state on click and disable the control until the action completes",
        paired=True,
    ),
    Signature(
        kind=PatternKind.DEAD_CLICK_ZONE,
        category=IssueCategory.FRUSTRATION,
        event_types=_types(EventType.DEAD_CLICK),
        thresholds=SignatureThresholds(8, 4, 6, 10, 20),
        problem="{count} dead clicks on {selector} across {sessions} sessions",
        intent="Interact with an element that looks clickable",
        outcome="The element does not respond",
        fix="Make the element interactive or change its styling so it no longer looks clickable",
        selector_filter=lambda s: not is_image_selector(s),
    ),
    Signature(
        kind=PatternKind.COMPARISON_FEATURE_NEEDED,
        category=IssueCategory.MISSING_FEATURE,
        event_types=_types(EventType.PRODUCT_COMPARE, EventType.PRICE_CHECK),
        thresholds=SignatureThresholds(15, 8, 10, 15, 25),
        problem="Users flipped between products and prices {count} times across {sessions} sessions",
        intent="Compare products side by side",
        outcome="Having to remember details while switching between products",
        fix="Add a product comparison view",
        group_by=GROUP_BY_PAGE,
    ),
    Signature(
        kind=PatternKind.COLOR_PREVIEW_NEEDED,
        category=IssueCategory.MISSING_FEATURE,
        event_types=_types(EventType.HOVER_INTENT, EventType.COLOR_SWATCH_HOVER, EventType.CLICK),
        thresholds=SignatureThresholds(10, 5, 8, 12, 20),
        problem="Users hovered or clicked color options on {selector} {count} times across {sessions} sessions",
        intent="See the product in the chosen color",
        outcome="The product image does not change with the color option",
        fix="Preview the selected color on the product image",
        selector_filter=is_color_selector,
    ),
    Signature(
        kind=PatternKind.ADDRESS_AUTOCOMPLETE_NEEDED,
        category=IssueCategory.CONVERSION_BLOCKER,
        event_types=_types(EventType.FORM_FOCUS, EventType.FORM_BLUR),
        thresholds=SignatureThresholds(10, 5, 8, 12, 20),
        problem="Users re-entered the address field {selector} {count} times across {sessions} sessions",
        intent="Enter an address quickly",
        outcome="Typing the full address by hand, prone to errors",
        fix="Add address autocomplete and proper autocomplete attributes",
        selector_filter=is_address_selector,
    ),
    Signature(
        kind=PatternKind.FORM_FRICTION,
        category=IssueCategory.CONVERSION_BLOCKER,
        event_types=_types(EventType.FORM_FOCUS, EventType.FORM_BLUR),
        thresholds=SignatureThresholds(10, 5, 8, 12, 20),
        problem="Users kept leaving and re-entering {selector} ({count} times, {sessions} sessions)",
        intent="Fill in the form without hesitation",
        outcome="Unclear what the field expects",
        fix="Clarify the field with a label, placeholder or inline validation",
        selector_filter=lambda s: not is_address_selector(s),
    ),
    Signature(
        kind=PatternKind.SCROLL_CONFUSION,
        category=IssueCategory.MISSING_FEATURE,
        event_types=_types(EventType.SCROLL_REVERSAL),
        thresholds=SignatureThresholds(10, 5, 8, 15, 30),
        problem="Users reversed scroll direction {count} times across {sessions} sessions",
        intent="Find information they expected on the page",
        outcome="Searching back and forth for content",
        fix="Surface key information higher on the page or add in-page navigation",
        group_by=GROUP_BY_PAGE,
    ),
)

_covered = {s.kind for s in DEFAULT_SIGNATURES}
if _covered != set(PatternKind):
    raise RuntimeError(
        f"Signature catalogue misses pattern kinds: {sorted(k.value for k in set(PatternKind) - _covered)}"
    )


def severity_for(unique_sessions: int, thresholds: SignatureThresholds) -> Severity:
    """Escalate severity with the number of affected sessions."""
    if unique_sessions >= thresholds.critical_sessions:
        return Severity.CRITICAL
    if unique_sessions >= thresholds.high_sessions:
        return Severity.HIGH
    if unique_sessions >= thresholds.medium_sessions:
        return Severity.MEDIUM
    return Severity.LOW


def _issue_order(issue: Issue) -> tuple[int, int, str]:
    return (-issue.severity.rank, -issue.event_count, issue.fingerprint)


def _event_order(event: Event) -> tuple[float, str]:
    return (event.timestamp, event.id)


# ---------------------------------------------------------------------------
# PatternMatcher
# ---------------------------------------------------------------------------


class PatternMatcher:
    """Turns interaction events into aggregated ``Issue`` records.

    The matcher remembers every fingerprint it has emitted; later evidence
    for the same fingerprint is merged with ``Issue.absorb`` so counts
    only grow.

    Parameters
    ----------
    config:
        Window, sample cap, pairing window and threshold overrides.
    registry:
        Resolves selectors to source components.
    event_bus:
        Optional bus receiving ``IssueDetected`` for new fingerprints.
    signatures:
        Signature catalogue; defaults to :data:`DEFAULT_SIGNATURES`.
    """

    def __init__(
        self,
        config: DetectionConfig | None = None,
        registry: ComponentRegistry | None = None,
        event_bus: EventBus | None = None,
        signatures: Sequence[Signature] = DEFAULT_SIGNATURES,
    ) -> None:
        self.config = config or DetectionConfig()
        self.config.validate()
        self.registry = registry or ComponentRegistry()
        self._event_bus = event_bus
        self._signatures = tuple(signatures)
        self._known: dict[str, Issue] = {}
        self._lock = threading.Lock()

    # -- public API -------------------------------------------------------------

    def thresholds_for(self, signature: Signature) -> SignatureThresholds:
        return self.config.thresholds.get(signature.kind.value, signature.thresholds)

    def detect(self, events: Iterable[Event], now: float | None = None) -> list[Issue]:
        """Return issues supported by *events*, most severe first.

        Parameters
        ----------
        events:
            The full log or any caller-chosen subset.
        now:
            Window anchor in epoch ms.  Defaults to the newest event so the
            result depends only on the data.
        """
        recent = self._within_window(list(events), now)
        if not recent:
            return []

        candidates: list[Issue] = []
        for signature in self._signatures:
            relevant = [e for e in recent if e.type in signature.event_types]
            if not relevant:
                continue
            if signature.paired:
                candidates.extend(self._match_pairs(signature, relevant))
            else:
                candidates.extend(self._match_counts(signature, relevant))

        issues = [self._aggregate(issue) for issue in candidates]
        logger.info("Detected %d issue(s) from %d recent event(s)", len(issues), len(recent))
        return sorted(issues, key=_issue_order)

    def known_issues(self) -> list[Issue]:
        with self._lock:
            return sorted(self._known.values(), key=_issue_order)

    def reset(self) -> None:
        with self._lock:
            self._known.clear()

    # -- windowing ---------------------------------------------------------------

    def _within_window(self, events: list[Event], now: float | None) -> list[Event]:
        if not events:
            return []
        timestamps = np.fromiter((e.timestamp for e in events), dtype=float, count=len(events))
        anchor = float(timestamps.max()) if now is None else float(now)
        cutoff = anchor - self.config.window_hours * _MS_PER_HOUR
        keep = (timestamps >= cutoff) & (timestamps <= anchor)
        return sorted((e for e, k in zip(events, keep) if k), key=_event_order)

    # -- grouping ----------------------------------------------------------------

    @staticmethod
    def _group_key(signature: Signature, event: Event) -> str:
        if signature.group_by == GROUP_BY_PAGE:
            return event.page_url or "unknown"
        return event.element_selector

    def _match_counts(self, signature: Signature, events: list[Event]) -> Iterable[Issue]:
        thresholds = self.thresholds_for(signature)
        groups: dict[str, list[Event]] = defaultdict(list)
        for event in events:
            key = self._group_key(signature, event)
            if key:
                groups[key].append(event)

        for key in sorted(groups):
            if (
                signature.group_by == GROUP_BY_SELECTOR
                and signature.selector_filter is not None
                and not signature.selector_filter(key)
            ):
                continue
            group = groups[key]
            per_session = Counter(e.session_id for e in group)
            if len(group) < thresholds.min_events or len(per_session) < thresholds.min_sessions:
                continue
            if max(per_session.values()) < signature.min_per_session:
                continue
            yield self._build_issue(signature, thresholds, key, group, len(per_session))

    def _match_pairs(self, signature: Signature, events: list[Event]) -> Iterable[Issue]:
        """Pair each rage click with the latest click before it on the same element.

        Pairs are formed per (selector, session) and must fall within
        ``rage_pair_window_ms``.  The signature threshold applies to the
        number of pairs; ``event_count`` counts the events taking part.
        """
        thresholds = self.thresholds_for(signature)
        window = self.config.rage_pair_window_ms
        streams: dict[str, dict[str, list[Event]]] = defaultdict(lambda: defaultdict(list))
        for event in events:
            if event.element_selector:
                streams[event.element_selector][event.session_id].append(event)

        for selector in sorted(streams):
            pairs = 0
            participants: list[Event] = []
            sessions: set[str] = set()
            for session_id in sorted(streams[selector]):
                stream = streams[selector][session_id]
                clicks = [e for e in stream if e.type == EventType.CLICK.value]
                rages = [e for e in stream if e.type == EventType.RAGE_CLICK.value]
                if not clicks or not rages:
                    continue
                click_ts = np.array([e.timestamp for e in clicks], dtype=float)
                rage_ts = np.array([e.timestamp for e in rages], dtype=float)
                idx = np.searchsorted(click_ts, rage_ts, side="right") - 1
                has_click = idx >= 0
                gaps = rage_ts - click_ts[np.clip(idx, 0, None)]
                paired = has_click & (gaps <= window)
                count = int(paired.sum())
                if count == 0:
                    continue
                pairs += count
                sessions.add(session_id)
                used_clicks = sorted(set(idx[paired].tolist()))
                participants.extend(clicks[i] for i in used_clicks)
                participants.extend(r for r, p in zip(rages, paired) if p)

            if pairs < thresholds.min_events or len(sessions) < thresholds.min_sessions:
                continue
            participants.sort(key=_event_order)
            yield self._build_issue(signature, thresholds, selector, participants, len(sessions))

    # -- issue construction ------------------------------------------------------

    def _build_issue(
        self,
        signature: Signature,
        thresholds: SignatureThresholds,
        key: str,
        group: list[Event],
        unique_sessions: int,
    ) -> Issue:
        if signature.group_by == GROUP_BY_PAGE:
            selector_counts = Counter(e.element_selector for e in group if e.element_selector)
            # most frequent selector, ties broken alphabetically
            selector = min(selector_counts, key=lambda s: (-selector_counts[s], s)) if selector_counts else ""
            page_url = key
        else:
            selector = key
            page_url = group[0].page_url

        text = next((e.element_text for e in group if e.element_text), None)
        component = self.registry.resolve(selector, text)
        context = {"count": len(group), "sessions": unique_sessions, "selector": selector or page_url}
        return Issue(
            pattern_id=signature.kind,
            element_selector=selector,
            component_path=component.component_path if component else "unknown",
            component_name=component.component_name if component else "Unknown",
            category=signature.category,
            severity=severity_for(unique_sessions, thresholds),
            event_count=len(group),
            unique_sessions=unique_sessions,
            detected_at=group[0].timestamp,
            last_occurrence=max(e.timestamp for e in group),
            sample_events=tuple(group[: self.config.sample_cap]),
            problem_statement=signature.problem.format(**context),
            user_intent=signature.intent,
            current_outcome=signature.outcome,
            suggested_fix=signature.fix,
            page_url=page_url,
        )

    def _aggregate(self, issue: Issue) -> Issue:
        fingerprint = issue.fingerprint
        with self._lock:
            known = self._known.get(fingerprint)
            merged = issue if known is None else known.absorb(issue)
            self._known[fingerprint] = merged

        if known is None and self._event_bus is not None:
            self._event_bus.publish(
                IssueDetected(
                    source_id="pattern_matcher",
                    issue_id=merged.id,
                    pattern_id=merged.pattern_id,
                    severity=merged.severity,
                    element_selector=merged.element_selector,
                    event_count=merged.event_count,
                )
            )
        return merged


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def summarize_issues(issues: Sequence[Issue], top_n: int = 5) -> IssueSummary:
    """Count issues by severity and category and rank the busiest components."""
    by_severity = {s.value: 0 for s in Severity}
    by_category = {c.value: 0 for c in IssueCategory}
    components: Counter[str] = Counter()
    for issue in issues:
        by_severity[issue.severity.value] += 1
        by_category[issue.category.value] += 1
        components[issue.component_name] += 1

    top = sorted(components.items(), key=lambda item: (-item[1], item[0]))[:top_n]
    return IssueSummary(
        total=len(issues),
        by_severity=by_severity,
        by_category=by_category,
        top_components=tuple(top),
    )


__all__ = [
    "DEFAULT_SIGNATURES",
    "PatternMatcher",
    "Signature",
    "issue_fingerprint",
    "is_image_selector",
    "severity_for",
    "summarize_issues",
]
