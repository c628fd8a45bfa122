"""Tests for issue detection from interaction events."""

from __future__ import annotations

import random
from collections.abc import Callable

from cro_autofix.domain.enums import IssueCategory, PatternKind, Severity
from cro_autofix.domain.events import IssueDetected
from cro_autofix.domain.values import Event
from cro_autofix.infrastructure.config import DetectionConfig, SignatureThresholds
from cro_autofix.infrastructure.event_bus import EventBus
from cro_autofix.services.pattern_matcher import (
    PatternMatcher,
    is_image_selector,
    severity_for,
    summarize_issues,
)

GALLERY_SELECTOR = 'img[data-product-id="prod_001"]'
HOUR_MS = 3_600_000.0


def _rage_stream(selector: str, session: str, start: float, gap: float = 500.0, pairs: int = 2) -> list[Event]:
    events: list[Event] = []
    ts = start
    for _ in range(pairs):
        events.append(Event(type="click", timestamp=ts, session_id=session, element_selector=selector))
        events.append(Event(type="rage_click", timestamp=ts + gap, session_id=session, element_selector=selector))
        ts += 10_000.0
    return events


class TestGalleryDetection:
    def test_dead_clicks_on_product_image(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("dead_click", GALLERY_SELECTOR, sessions=3, per_session=5)
        issues = PatternMatcher().detect(events)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.pattern_id is PatternKind.IMAGE_GALLERY_NEEDED
        assert issue.category is IssueCategory.FRUSTRATION
        assert issue.event_count == 15
        assert issue.unique_sessions == 3
        assert issue.severity is Severity.MEDIUM
        assert issue.component_path == "components/store/ProductGrid.tsx"
        assert issue.component_name == "ProductGrid"
        assert issue.detected_at == events[0].timestamp
        assert issue.last_occurrence == events[-1].timestamp
        assert len(issue.sample_events) == 10
        assert "15 times across 3 sessions" in issue.problem_statement

    def test_needs_three_in_one_session(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("dead_click", GALLERY_SELECTOR, sessions=4, per_session=2)
        kinds = {i.pattern_id for i in PatternMatcher().detect(events)}
        assert PatternKind.IMAGE_GALLERY_NEEDED not in kinds

    def test_image_clicks_never_count_as_dead_zone(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("dead_click", GALLERY_SELECTOR, sessions=6, per_session=4)
        kinds = [i.pattern_id for i in PatternMatcher().detect(events)]
        assert kinds == [PatternKind.IMAGE_GALLERY_NEEDED]


class TestOtherSignatures:
    def test_dead_click_zone(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("dead_click", ".promo-badge", sessions=4, per_session=2)
        issues = PatternMatcher().detect(events)
        assert [i.pattern_id for i in issues] == [PatternKind.DEAD_CLICK_ZONE]
        assert issues[0].severity is Severity.LOW
        assert not issues[0].has_component

    def test_rage_click_pairs(self) -> None:
        events = _rage_stream("[data-add-to-cart]", "s1", 0.0) + _rage_stream("[data-add-to-cart]", "s2", 100_000.0)
        issues = PatternMatcher().detect(events)
        assert len(issues) == 1
        issue = issues[0]
        assert issue.pattern_id is PatternKind.BUTTON_NO_FEEDBACK
        assert issue.event_count == 8
        assert issue.unique_sessions == 2
        assert issue.component_name == "ProductGrid"

    def test_rage_click_outside_pair_window_is_ignored(self) -> None:
        events = _rage_stream("[data-add-to-cart]", "s1", 0.0, gap=5_000.0, pairs=3)
        assert PatternMatcher().detect(events) == []

    def test_rage_click_without_click_is_ignored(self) -> None:
        events = [
            Event(type="rage_click", timestamp=float(i), session_id="s1", element_selector="#buy")
            for i in range(5)
        ]
        assert PatternMatcher().detect(events) == []

    def test_page_level_scroll_confusion(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("scroll_reversal", "#specs", sessions=5, per_session=2, page_url="/products/1")
        issues = PatternMatcher().detect(events)
        assert len(issues) == 1
        assert issues[0].pattern_id is PatternKind.SCROLL_CONFUSION
        assert issues[0].page_url == "/products/1"
        assert issues[0].element_selector == "#specs"

    def test_address_fields_split_from_form_friction(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("form_focus", "input[name=address]", sessions=5, per_session=2)
        events += make_events("form_blur", "input[name=email]", sessions=5, per_session=2, start=5_000_000.0)
        kinds = sorted(i.pattern_id.value for i in PatternMatcher().detect(events))
        assert kinds == ["address_autocomplete_needed", "form_friction"]

    def test_color_swatch_clicks(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("click", ".color-swatch", sessions=5, per_session=2)
        issues = PatternMatcher().detect(events)
        assert [i.pattern_id for i in issues] == [PatternKind.COLOR_PREVIEW_NEEDED]
        assert issues[0].event_count == 10
        assert issues[0].unique_sessions == 5

    def test_plain_clicks_elsewhere_are_not_color_preview(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("click", "[data-add-to-cart]", sessions=5, per_session=2)
        assert PatternMatcher().detect(events) == []

    def test_threshold_override(self, make_events: Callable[..., list[Event]]) -> None:
        config = DetectionConfig(thresholds={"dead_click_zone": SignatureThresholds(2, 1, 1, 2, 3)})
        events = make_events("dead_click", ".promo-badge", sessions=1, per_session=2)
        issues = PatternMatcher(config).detect(events)
        assert [i.severity for i in issues] == [Severity.MEDIUM]


class TestWindowAndDeterminism:
    def test_events_outside_window_are_dropped(self, make_events: Callable[..., list[Event]]) -> None:
        old = make_events("dead_click", GALLERY_SELECTOR, sessions=2, per_session=3, start=0.0)
        recent = make_events("dead_click", "img.hero", sessions=1, per_session=3, start=30 * HOUR_MS)
        issues = PatternMatcher().detect(old + recent)
        assert [i.element_selector for i in issues] == ["img.hero"]

    def test_explicit_now(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("dead_click", GALLERY_SELECTOR, sessions=2, per_session=3, start=0.0)
        assert PatternMatcher().detect(events, now=48 * HOUR_MS) == []
        assert len(PatternMatcher().detect(events, now=HOUR_MS)) == 1

    def test_same_events_same_issues(self, make_events: Callable[..., list[Event]]) -> None:
        events = (
            make_events("dead_click", GALLERY_SELECTOR, sessions=3, per_session=4)
            + make_events("dead_click", ".promo-badge", sessions=4, per_session=2)
            + _rage_stream("[data-add-to-cart]", "s9", 50_000.0)
        )
        shuffled = list(events)
        random.Random(7).shuffle(shuffled)

        first = PatternMatcher().detect(events)
        second = PatternMatcher().detect(shuffled)
        assert [(i.fingerprint, i.event_count, i.unique_sessions) for i in first] == [
            (i.fingerprint, i.event_count, i.unique_sessions) for i in second
        ]

    def test_repeated_detection_does_not_inflate_counts(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("dead_click", GALLERY_SELECTOR, sessions=3, per_session=5)
        matcher = PatternMatcher()
        matcher.detect(events)
        again = matcher.detect(events)
        assert again[0].event_count == 15
        assert len(matcher.known_issues()) == 1

    def test_new_evidence_grows_known_issue(self, make_events: Callable[..., list[Event]]) -> None:
        matcher = PatternMatcher()
        events = make_events("dead_click", GALLERY_SELECTOR, sessions=2, per_session=3)
        first = matcher.detect(events)[0]
        more = events + make_events("dead_click", GALLERY_SELECTOR, sessions=3, per_session=3, start=2_000_000.0)
        grown = matcher.detect(more)[0]
        assert grown.fingerprint == first.fingerprint
        assert grown.event_count > first.event_count
        assert grown.detected_at == first.detected_at

        matcher.reset()
        assert matcher.known_issues() == []


class TestHelpers:
    def test_issue_detected_published_once(self, make_events: Callable[..., list[Event]]) -> None:
        bus = EventBus()
        seen: list[IssueDetected] = []
        bus.subscribe(IssueDetected, seen.append)
        matcher = PatternMatcher(event_bus=bus)
        events = make_events("dead_click", GALLERY_SELECTOR, sessions=3, per_session=5)
        matcher.detect(events)
        matcher.detect(events)
        assert len(seen) == 1
        assert seen[0].event_count == 15

    def test_severity_escalation(self) -> None:
        thresholds = SignatureThresholds(3, 1, 2, 5, 10)
        assert severity_for(1, thresholds) is Severity.LOW
        assert severity_for(2, thresholds) is Severity.MEDIUM
        assert severity_for(5, thresholds) is Severity.HIGH
        assert severity_for(10, thresholds) is Severity.CRITICAL

    def test_is_image_selector(self) -> None:
        assert is_image_selector(GALLERY_SELECTOR)
        assert is_image_selector(".product-photo")
        assert not is_image_selector(".promo-badge")

    def test_summary(self, make_events: Callable[..., list[Event]]) -> None:
        events = make_events("dead_click", GALLERY_SELECTOR, sessions=3, per_session=5)
        events += make_events("dead_click", ".promo-badge", sessions=4, per_session=2, start=2_000_000.0)
        summary = summarize_issues(PatternMatcher().detect(events))
        assert summary.total == 2
        assert summary.by_severity == {"low": 1, "medium": 1, "high": 0, "critical": 0}
        assert summary.by_category["frustration"] == 2
        assert summary.to_dict()["top_components"] == [
            {"component": "ProductGrid", "count": 1},
            {"component": "Unknown", "count": 1},
        ]
