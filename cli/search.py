"""
Run a single apartments.com extraction from the terminal and print the result.

    python -m cli.search "jersey city nj" --max-price 2000 --bedrooms 1 --pets --limit 3
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from agent.utils import normalize_location
from extraction import ExtractionError, ExtractionRequest, perform_apartments_extraction
from extraction.types import DEFAULT_RESULT_LIMIT
from storage.factory import get_store


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Buscalo apartments.com search")
    parser.add_argument("query", help="City to search, e.g. 'jersey city nj' or 'manhattan-ny'.")
    parser.add_argument("--max-price", type=int, default=None, help="Maximum monthly rent in USD.")
    parser.add_argument("--bedrooms", default=None, help="'studio' or a bedroom count.")
    parser.add_argument("--pets", action="store_true", help="Only pet-friendly listings.")
    parser.add_argument("--limit", type=int, default=DEFAULT_RESULT_LIMIT, help="Listings to return (1-25).")
    parser.add_argument("--thread", default=None, help="Thread id to attach the run log to.")
    return parser.parse_args(argv)


def run_search_cli(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    display_query, location_slug = normalize_location(args.query)
    try:
        request = ExtractionRequest(
            query=display_query,
            location_slug=location_slug,
            max_price=args.max_price,
            bedrooms=args.bedrooms,
            pets=args.pets or None,
            limit=args.limit,
            thread_id=args.thread,
        )
    except ValueError as exc:
        print(f"Invalid search: {exc}", file=sys.stderr)
        return 2

    store = get_store()
    print(f"Searching apartments.com for {display_query}...", file=sys.stderr)
    try:
        result = asyncio.run(perform_apartments_extraction(request, log_sink=store, session_store=store))
    except ExtractionError as exc:
        print(f"Extraction failed: {exc}", file=sys.stderr)
        return 1

    print(result.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(run_search_cli())
