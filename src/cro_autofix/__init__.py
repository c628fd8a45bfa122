"""CRO autofix.

Turns storefront click-stream anomalies into UX issues, generates and
validates source patches for them, applies the patches to the working tree
and tracks each fix through human review.
"""

__version__ = "0.1.0"

from cro_autofix.services import (
    FixLifecycleStore,
    FixPipeline,
    PatchRequest,
    PatchResponse,
    PatternMatcher,
)

__all__ = [
    "FixLifecycleStore",
    "FixPipeline",
    "PatchRequest",
    "PatchResponse",
    "PatternMatcher",
]
