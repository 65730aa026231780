from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple, Union

from extraction.types import Bedrooms, NormalizedListing

FALLBACK_LOCATION = ("New York, NY", "new-york-ny")
MISSING_ADDRESS = "Address not provided"

_STRIP_RE = re.compile(r"[^a-z0-9\s,-]")
_SEPARATOR_RE = re.compile(r"[\s,-]+")
_CITY_STATE_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*-[a-z]{2}$")


def _title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in text.lower().split())


def _slug_to_display(slug: str) -> str:
    parts = slug.split("-")
    if len(parts) >= 2 and re.fullmatch(r"[a-z]{2}", parts[-1]):
        return f"{_title_case(' '.join(parts[:-1]))}, {parts[-1].upper()}"
    return _title_case(slug.replace("-", " "))


def normalize_location(text: Optional[str]) -> Tuple[str, str]:
    """Return ``(display_query, location_slug)`` for a free-text city.

    ``"Jersey City, NJ"`` and ``"jersey-city-nj"`` both give
    ``("Jersey City, NJ", "jersey-city-nj")``.
    """
    trimmed = (text or "").strip().lower()
    if not trimmed:
        return FALLBACK_LOCATION
    cleaned = _SEPARATOR_RE.sub(" ", _STRIP_RE.sub(" ", trimmed)).strip()
    if not cleaned:
        return FALLBACK_LOCATION
    slug = re.sub(r"-+", "-", re.sub(r"\s+", "-", cleaned)).strip("-")
    if not slug:
        return FALLBACK_LOCATION
    if _CITY_STATE_SLUG_RE.match(slug):
        return _slug_to_display(slug), slug
    return _title_case(cleaned), slug


def compute_shared_tags(*, pets: Optional[bool] = None, bedrooms: Union[str, int, None] = None) -> List[str]:
    tags: List[str] = []
    if pets:
        tags.append("pets_ok")
    bed_filter = Bedrooms.parse(bedrooms)
    if bed_filter is not None:
        tags.append(bed_filter.tag())
    return tags


def to_search_estate(listing: NormalizedListing, shared_tags: List[str]) -> Dict[str, Any]:
    price_label = listing.price_raw or f"${listing.price:,}"
    location = listing.address or MISSING_ADDRESS
    beds = Bedrooms(listing.beds) if listing.beds is not None else None

    summary = f"{listing.title} — {price_label} • {location}"
    if beds is not None:
        summary += f" • {beds.label()}"

    return {
        "title": listing.title,
        "price": listing.price,
        "address": location,
        "summary": summary,
        "tags": [*shared_tags, listing.source, *([beds.tag()] if beds is not None else [])],
        "image_url": listing.image_url,
    }
