"""Fixed page script that gets the search results ready for extraction."""

from __future__ import annotations

from typing import Callable, Protocol, Sequence

from telemetry.logging_utils import get_logger

logger = get_logger(__name__)

DISMISS_OVERLAYS_INSTRUCTION = "Close any popups or overlays so that the listings grid and map are both visible."


class ActionablePage(Protocol):
    async def goto(self, url: str) -> None: ...

    async def act(self, instruction: str) -> None: ...


def build_scroll_instruction(result_limit: int) -> str:
    return (
        "Scroll the listings panel slowly through multiple screens, pausing after each movement so new "
        "property cards can load. Keep going until either the bottom is reached or roughly "
        f"{result_limit} unique property cards have appeared, then scroll back near the top leaving "
        "several cards visible."
    )


async def prepare_results_view(
    page: ActionablePage,
    search_url: str,
    filter_instructions: Sequence[str],
    result_limit: int,
    record_log: Callable[[str], None],
) -> None:
    """Navigate, clear overlays, apply filters in order, then scroll to load more cards.

    Failures propagate to the caller's retry loop.
    """
    logger.info("page_navigate", extra={"url": search_url})
    record_log(f"Navigating to {search_url}")
    await page.goto(search_url)

    await page.act(DISMISS_OVERLAYS_INSTRUCTION)
    record_log("Ensuring map and results are visible")

    for step in filter_instructions:
        record_log(step)
        await page.act(step)

    await page.act(build_scroll_instruction(result_limit))
    record_log("Scrolling through results to load more listings")
