"""Tools the chat assistant can call: search apartments.com and stage listings for display."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from extraction import ExtractionRequest, perform_apartments_extraction
from extraction.run_logger import RunLogger
from extraction.types import DEFAULT_RESULT_LIMIT, MAX_RESULT_LIMIT
from extraction.workflow import BrowserFactory
from storage.factory import Store, get_store
from telemetry.logging_utils import get_logger

from .utils import compute_shared_tags, normalize_location, to_search_estate

logger = get_logger(__name__)

PUBLIC_THREAD = "public"


class SearchEstateArgs(BaseModel):
    query: str = Field(min_length=1, description="City or neighborhood to search")
    max_price: Optional[int] = Field(default=None, gt=0, description="Upper bound for monthly rent in USD")
    bedrooms: Optional[Union[Literal["studio"], int]] = Field(
        default=None,
        description="Bedroom count (use 'studio' for zero bedrooms)",
    )
    pets: Optional[bool] = Field(default=None, description="Whether listings must allow pets")
    limit: int = Field(
        default=DEFAULT_RESULT_LIMIT,
        ge=1,
        le=MAX_RESULT_LIMIT,
        description="Maximum listings to return (defaults to 3)",
    )

    @field_validator("bedrooms")
    @classmethod
    def _non_negative_bedrooms(cls, value):
        if isinstance(value, int) and value < 0:
            raise ValueError("bedrooms must be zero or positive")
        return value


class DisplayListing(BaseModel):
    title: str
    address: str
    price: float
    phone: Optional[str] = None
    image_url: Optional[str] = None


class DisplayListingsArgs(BaseModel):
    listings: List[DisplayListing] = Field(min_length=1, description="Listings to display in the UI")


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


async def search_estate(
    args: SearchEstateArgs,
    thread_id: Optional[str] = None,
    *,
    store: Optional[Store] = None,
    browser_factory: Optional[BrowserFactory] = None,
) -> List[Dict[str, Any]]:
    """Run one extraction for ``args`` and return listings shaped for the assistant."""
    store = store or get_store()
    shared_tags = compute_shared_tags(pets=args.pets, bedrooms=args.bedrooms)
    display_query, location_slug = normalize_location(args.query)
    owner = thread_id or PUBLIC_THREAD
    run_id = f"{owner}-{int(time.time() * 1000)}"
    # Follow-up lines share the run transcript so they sort after the workflow's own.
    run_logger = RunLogger(store, thread_id=thread_id, run_id=run_id)

    try:
        result = await perform_apartments_extraction(
            ExtractionRequest(
                query=display_query,
                location_slug=location_slug,
                max_price=args.max_price,
                bedrooms=args.bedrooms,
                pets=args.pets,
                limit=args.limit,
                thread_id=thread_id,
                run_id=run_id,
            ),
            log_sink=store,
            session_store=store,
            browser_factory=browser_factory,
            run_logger=run_logger,
        )
    except Exception as exc:
        logger.warning("search_estate_failed", extra={"run_id": run_id, "error": str(exc)[:200]})
        run_logger.record_log(f"Stagehand extraction failed: {exc}")
        await run_logger.flush()
        return []

    listings = result.listings[: args.limit]
    logger.info(
        "search_estate_result",
        extra={
            "run_id": run_id,
            "extracted": result.extracted_count,
            "filtered": result.filtered_count,
            "rejected": result.rejected_count,
            "returned": len(listings),
        },
    )
    run_logger.record_log(f"Agent run complete. Returning {len(listings)} listing{_plural(len(listings))}.")
    if not listings:
        run_logger.record_log("No listings matched the filters. Let the user know nothing was found.")
        await run_logger.flush()
        return []
    await run_logger.flush()

    shaped = [to_search_estate(listing, shared_tags) for listing in listings]
    await asyncio.to_thread(
        store.record_listings,
        owner,
        [
            {
                "title": item["title"],
                "address": item["address"],
                "price": item["price"],
                "image_url": item["image_url"],
            }
            for item in shaped
        ],
    )
    return shaped


async def display_listings(
    args: DisplayListingsArgs,
    thread_id: Optional[str] = None,
    *,
    store: Optional[Store] = None,
) -> str:
    store = store or get_store()
    await asyncio.to_thread(
        store.record_listings,
        thread_id or PUBLIC_THREAD,
        [listing.model_dump() for listing in args.listings],
    )
    count = len(args.listings)
    return f"Stored {count} listing{_plural(count)} for display."


TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "search_estate",
            "description": "Search apartments.com for rentals that match the requested filters.",
            "parameters": SearchEstateArgs.model_json_schema(),
        },
    },
    {
        "type": "function",
        "function": {
            "name": "display_listings",
            "description": "Persist a batch of listings so the Buscalo console can render them for the user.",
            "parameters": DisplayListingsArgs.model_json_schema(),
        },
    },
]
