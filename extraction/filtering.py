"""Constraint filtering plus the search URL and filter steps derived from a request."""

from __future__ import annotations

import math
import re
from typing import Iterable, List, Optional, Tuple

from .normalization import SOURCE_BASE_URL
from .types import Bedrooms, NormalizedListing, RejectedListing, RejectionReason

DEFAULT_LOCATION_SLUG = "jersey-city-nj"


def _format_dollars(amount: int) -> str:
    return f"${amount:,}"


def filter_listings_by_constraints(
    listings: Iterable[NormalizedListing],
    *,
    max_price: Optional[int] = None,
) -> Tuple[List[NormalizedListing], List[RejectedListing]]:
    """Partition listings into ``(filtered, rejected)``, preserving input order.

    A price of 0 means the price text could not be parsed; such listings are
    never rejected on price grounds.
    """
    filtered: List[NormalizedListing] = []
    rejected: List[RejectedListing] = []

    for listing in listings:
        reasons: List[RejectionReason] = []
        if max_price is not None and listing.price > 0 and listing.price > max_price:
            reasons.append(
                RejectionReason(
                    type="price",
                    detail=f"Listing price {_format_dollars(listing.price)} exceeds max {_format_dollars(max_price)}",
                )
            )

        if reasons:
            rejected.append(RejectedListing(listing=listing, reasons=reasons))
        else:
            filtered.append(listing)

    return filtered, rejected


def build_filter_instructions(bedrooms: Optional[Bedrooms] = None, pets: Optional[bool] = None) -> List[str]:
    """Natural-language page actions for the bedroom and pets filters, bedrooms first."""
    steps: List[str] = []

    if bedrooms is not None:
        if bedrooms.is_studio:
            option_label = "Studio+"
            descriptor = "studio (0 bedroom)"
        else:
            option_label = f"{bedrooms.count}+"
            descriptor = f"{bedrooms.count}-bedroom"
        steps.append('Click the "Beds/Baths" filter button above the results so the beds selector popup stays open.')
        steps.append(
            f'Inside the Beds/Baths popup, select the "{option_label}" option so only {descriptor} listings remain, '
            "then apply or close the beds filter and wait for the list to refresh."
        )

    if pets is True:
        steps.append(
            "Enable any pets-allowed filter so the results only include pet-friendly properties "
            "and wait for the list to update."
        )

    return steps


def build_search_url(slug: str, max_price: Optional[float] = None) -> str:
    """Apartments.com search URL, with an ``under-N`` segment rounded down to the nearest 100."""
    normalized_slug = slug or DEFAULT_LOCATION_SLUG
    url = f"{SOURCE_BASE_URL}/{normalized_slug}/"
    if max_price is not None and math.isfinite(max_price):
        rounded = max(0, int(math.floor(max_price / 100)) * 100)
        if rounded > 0:
            url = f"{SOURCE_BASE_URL}/{normalized_slug}/under-{rounded}/"
    return url


def sanitize_slug(value: Optional[str]) -> str:
    if not value:
        return ""
    slug = value.lower().strip()
    slug = re.sub(r"[^a-z0-9\s/-]+", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def resolve_location_slug(location_slug: Optional[str], query: Optional[str]) -> str:
    return sanitize_slug(location_slug) or sanitize_slug(query) or DEFAULT_LOCATION_SLUG
