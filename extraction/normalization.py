"""Turn raw extracted listing cards into typed, sanitized listings.

Every function here is total: malformed model output degrades to a safe
default (price 0, no bedroom count, no image) instead of raising.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable, List, Optional
from urllib.parse import urljoin, urlparse

from pydantic import ValidationError

from telemetry.logging_utils import get_logger

from .types import LISTING_SOURCE, MAX_EXTRACTED_LISTINGS, ExtractedListing, NormalizedListing

logger = get_logger(__name__)

SOURCE_BASE_URL = "https://www.apartments.com"

ALLOWED_IMAGE_HOSTS = frozenset(
    {
        "apartments.com",
        "images1.apartments.com",
        "images2.apartments.com",
        "images3.apartments.com",
        "images4.apartments.com",
        "aptcdn.com",
    }
)
TRUSTED_IMAGE_DOMAINS = ("apartments.com", "aptcdn.com")

_PRICE_RUN_RE = re.compile(r"\d[\d,.]*")
_LEADING_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?")
_BEDROOM_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:bed|br|bedroom)")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_price(price_text: Optional[str]) -> int:
    """Return the first numeric run of ``price_text`` in whole dollars, or 0."""
    if not price_text:
        return 0
    match = _PRICE_RUN_RE.search(price_text)
    if not match:
        return 0
    primary = match.group(0).replace(",", "")
    number = _LEADING_NUMBER_RE.match(primary)
    if not number:
        return 0
    value = float(number.group(0))
    if not math.isfinite(value):
        return 0
    return _round_half_up(value)


def parse_bedroom_count(text: str) -> Optional[int]:
    """Best-effort bedroom count from free text; 0 means studio."""
    normalized = (text or "").lower()
    if "studio" in normalized:
        return 0
    match = _BEDROOM_RE.search(normalized)
    if not match:
        return None
    value = float(match.group(1))
    if not math.isfinite(value):
        return None
    return _round_half_up(value)


def _is_trusted_host(hostname: str) -> bool:
    if hostname in ALLOWED_IMAGE_HOSTS:
        return True
    return any(hostname == domain or hostname.endswith("." + domain) for domain in TRUSTED_IMAGE_DOMAINS)


def sanitize_external_image(image_url: Optional[str]) -> Optional[str]:
    """Resolve ``image_url`` against the listing site and keep it only if it is a real, allow-listed image."""
    if not image_url or not image_url.strip():
        return None
    try:
        resolved = urljoin(SOURCE_BASE_URL, image_url.strip())
        parsed = urlparse(resolved)
        hostname = (parsed.hostname or "").lower()
    except ValueError:
        return None
    if parsed.scheme.lower() not in ("http", "https"):
        return None
    lowered = resolved.lower()
    if "placeholder" in lowered or "example.com" in lowered:
        return None
    if not hostname or not _is_trusted_host(hostname):
        return None
    return resolved


def normalize_listing(listing: ExtractedListing) -> NormalizedListing:
    address = listing.address.strip() if listing.address else None
    return NormalizedListing(
        title=listing.title.strip(),
        address=address or None,
        price=parse_price(listing.price),
        price_raw=listing.price,
        beds=parse_bedroom_count(f"{listing.title} {listing.address or ''}"),
        image_url=sanitize_external_image(listing.image_url),
        source=LISTING_SOURCE,
    )


def normalize_listings(listings: Iterable[ExtractedListing]) -> List[NormalizedListing]:
    return [normalize_listing(listing) for listing in listings]


def coerce_extracted_listings(raw: Any, *, limit: Optional[int] = None) -> List[ExtractedListing]:
    """Validate raw extraction output, dropping entries that fail the schema."""
    if isinstance(raw, dict):
        payload = raw.get("listings") or []
    elif isinstance(raw, list):
        payload = raw
    else:
        payload = []
    if not isinstance(payload, list):
        return []

    cap = MAX_EXTRACTED_LISTINGS if limit is None else min(limit, MAX_EXTRACTED_LISTINGS)
    cleaned: List[ExtractedListing] = []
    for entry in payload:
        if isinstance(entry, ExtractedListing):
            cleaned.append(entry)
        else:
            try:
                cleaned.append(ExtractedListing.model_validate(entry))
            except ValidationError as exc:
                logger.warning("extracted_listing_invalid", extra={"error": str(exc)[:200]})
                continue
        if len(cleaned) >= cap:
            break
    return cleaned
