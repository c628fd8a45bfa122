#!/usr/bin/env python3
"""Example 01: From dead clicks on a product image to a pending fix.

Demonstrates:
- Detecting an ``image_gallery_needed`` issue from raw click events
- Running the pipeline with a scripted chat model standing in for the LLM
- Inspecting validation, applied files and the pull request
- Approving the fix through the lifecycle store

Run:
    PYTHONPATH=src python examples/01_dead_clicks_to_fix.py
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from cro_autofix import FixPipeline
from cro_autofix.domain.values import Event
from cro_autofix.infrastructure.llm.chat_model import ChatModelGenerator
from cro_autofix.infrastructure.vcs import InMemoryVersionControl
from cro_autofix.testing.mock_llm import ScriptedChatModel

GRID = "components/store/ProductGrid.tsx"
IMG_TAG = "<img src={product.image} alt={product.name} />"

GRID_SOURCE = f"""\
export function ProductGrid({{ products }}) {{
  return (
    <div className="grid grid-cols-3">
      {{products.map((product) => (
        <div key={{product.id}} data-product-id={{product.id}}>
          {IMG_TAG}
        </div>
      ))}}
    </div>
  );
}}
"""

REPLY = json.dumps(
    {
        "patches": [
            {
                "filePath": GRID,
                "description": "Open the image full screen on click",
                "oldCode": IMG_TAG,
                "newCode": IMG_TAG.replace(
                    " />", " onClick={(e) => e.currentTarget.requestFullscreen?.()} />"
                ),
            }
        ],
        "explanation": "Shoppers expect product images to open a larger view.",
    }
)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    root = Path(tempfile.mkdtemp(prefix="storefront-"))
    (root / GRID).parent.mkdir(parents=True)
    (root / GRID).write_text(GRID_SOURCE, encoding="utf-8")

    # -- 15 dead clicks on the same image across 3 sessions --
    events = [
        Event(
            type="dead_click",
            timestamp=1_000_000.0 + i * 1000.0,
            session_id=f"sess_{i % 3}",
            element_selector='img[data-product-id="prod_001"]',
            page_url="/",
        )
        for i in range(15)
    ]

    vcs = InMemoryVersionControl()
    generator = ChatModelGenerator(ScriptedChatModel(responses=[REPLY]))
    pipeline = FixPipeline(root, generator, vcs=vcs)

    print("=== Issue-to-patch pipeline ===")
    for response in pipeline.run(events):
        issue = response.mapping.issue
        print(f"Issue: {issue.pattern_id.value} on {issue.component_name} ({issue.severity.value})")
        print(f"Action: {response.mapping.action_type.value}")
        if not response.success:
            print(f"Stopped: {response.error}")
            continue
        fix = response.fix
        print(f"Validation: {response.validation_result.syntax.summary}")
        print(f"Applied to: {', '.join(fix.applied_files)}")
        print(f"Fix {fix.id} is {fix.status.value}; PR {fix.pr_info.url}")

        merged = pipeline.fix_store.approve(fix.id)
        print(f"After approval: {merged.status.value}")
    print()
    print((root / GRID).read_text(encoding="utf-8"))
    print("Done.")


if __name__ == "__main__":
    main()
