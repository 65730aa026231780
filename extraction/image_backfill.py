from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol

from telemetry.logging_utils import get_logger

from .normalization import sanitize_external_image
from .types import NormalizedListing

logger = get_logger(__name__)

# Runs in the page. Finds the first card whose text contains each title and
# returns the image source it carries, or null.
IMAGE_LOOKUP_SCRIPT = """
(titles) => {
  const results = {};
  const cards = Array.from(
    document.querySelectorAll(
      '[data-test="placard"], [data-test="property-card"], article, [role="listitem"]'
    )
  );
  for (const title of titles) {
    const lowered = title.toLowerCase();
    const container = cards.find((card) =>
      (card.textContent || "").toLowerCase().includes(lowered)
    );
    if (!container) {
      results[title] = null;
      continue;
    }
    const img = container.querySelector("img");
    if (!img) {
      results[title] = null;
      continue;
    }
    const direct = img.getAttribute("src");
    const dataSrc = (img.dataset && (img.dataset.src || img.dataset.original)) || null;
    results[title] = direct || dataSrc || null;
  }
  return results;
}
"""


class EvaluablePage(Protocol):
    async def evaluate(self, script: str, arg: Any = None) -> Any: ...


async def backfill_images(
    page: EvaluablePage,
    listings: List[NormalizedListing],
    record_log: Callable[[str], None],
) -> int:
    """Fill missing ``image_url`` values from the live DOM in one lookup pass.

    Returns the number of listings that received an image. Lookup failures are
    recorded in the transcript and leave the listings untouched.
    """
    lookup_titles = [listing.title for listing in listings if not listing.image_url]
    if not lookup_titles:
        return 0

    try:
        resolved: Optional[Dict[str, Optional[str]]] = await page.evaluate(IMAGE_LOOKUP_SCRIPT, lookup_titles)
    except Exception as exc:
        logger.warning("image_backfill_failed", extra={"error": str(exc)[:200]})
        record_log(f"Image backfill failed: {exc}")
        return 0

    if not isinstance(resolved, dict):
        return 0

    filled = 0
    for listing in listings:
        if listing.image_url:
            continue
        candidate = resolved.get(listing.title)
        image_url = sanitize_external_image(candidate if isinstance(candidate, str) else None)
        if image_url:
            listing.image_url = image_url
            filled += 1
            record_log(f"Backfilled image for {listing.title}")
    return filled
