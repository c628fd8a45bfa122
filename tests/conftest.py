"""Shared fixtures for the CRO autofix test suite."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from cro_autofix.domain.entities import Issue
from cro_autofix.domain.enums import IssueCategory, PatternKind, Severity
from cro_autofix.domain.values import CodePatch, Event, GeneratedFix
from cro_autofix.infrastructure.event_bus import EventBus

PRODUCT_GRID = "components/store/ProductGrid.tsx"

PRODUCT_GRID_SOURCE = """\
import { Product } from "@/lib/products";

export function ProductGrid({ products }: { products: Product[] }) {
  return (
    <div className="grid grid-cols-3 gap-4">
      {products.map((product) => (
        <div key={product.id} data-product-id={product.id}>
          <img src={product.image} alt={product.name} />
          <p className="font-medium">{product.name}</p>
          <button className="bg-[#111111] text-white" data-add-to-cart>
            Add to cart
          </button>
        </div>
      ))}
    </div>
  );
}
"""

IMG_TAG = "<img src={product.image} alt={product.name} />"
IMG_TAG_WITH_CLICK = "<img src={product.image} alt={product.name} onClick={() => setActive(product)} />"


# ---------------------------------------------------------------------------
# Working tree
# ---------------------------------------------------------------------------


@pytest.fixture
def storefront(tmp_path: Path) -> Path:
    """A minimal storefront tree with the product grid component."""
    grid = tmp_path / PRODUCT_GRID
    grid.parent.mkdir(parents=True)
    grid.write_text(PRODUCT_GRID_SOURCE, encoding="utf-8")
    return tmp_path


# ---------------------------------------------------------------------------
# Events and issues
# ---------------------------------------------------------------------------


@pytest.fixture
def make_events() -> Callable[..., list[Event]]:
    """Factory: ``make_events(type, selector, sessions, per_session)``.

    Timestamps start at 1_000_000 ms and advance by one second per event.
    """

    def _factory(
        event_type: str,
        selector: str,
        sessions: int = 2,
        per_session: int = 3,
        start: float = 1_000_000.0,
        page_url: str = "/",
    ) -> list[Event]:
        events: list[Event] = []
        ts = start
        for s in range(sessions):
            for _ in range(per_session):
                events.append(
                    Event(
                        type=event_type,
                        timestamp=ts,
                        session_id=f"sess_{s}",
                        element_selector=selector,
                        page_url=page_url,
                    )
                )
                ts += 1000.0
        return events

    return _factory


@pytest.fixture
def gallery_issue() -> Issue:
    """An image-gallery issue on the product grid."""
    return Issue(
        pattern_id=PatternKind.IMAGE_GALLERY_NEEDED,
        element_selector='img[data-product-id="prod_001"]',
        component_path=PRODUCT_GRID,
        component_name="ProductGrid",
        category=IssueCategory.FRUSTRATION,
        severity=Severity.MEDIUM,
        event_count=15,
        unique_sessions=3,
        detected_at=1_000_000.0,
        last_occurrence=1_014_000.0,
        problem_statement="Users clicked the product image and nothing happened",
    )


@pytest.fixture
def generated_fix() -> GeneratedFix:
    return GeneratedFix(
        success=True,
        patches=(CodePatch(PRODUCT_GRID, IMG_TAG, IMG_TAG_WITH_CLICK, "open gallery"),),
        explanation="Image opens a gallery",
        agent_used="scripted",
        attempts=1,
    )


# ---------------------------------------------------------------------------
# LLM replies
# ---------------------------------------------------------------------------


@pytest.fixture
def valid_reply() -> str:
    """A JSON reply with one patch that applies to the product grid."""
    return json.dumps(
        {
            "patches": [
                {
                    "filePath": PRODUCT_GRID,
                    "description": "Open the gallery on image click",
                    "oldCode": IMG_TAG,
                    "newCode": IMG_TAG_WITH_CLICK,
                }
            ],
            "newFiles": [],
            "explanation": "Clicking the product image now opens the gallery.",
        }
    )


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()
