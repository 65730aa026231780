"""Top-level extraction workflow: session lease, page script, extraction, normalization, filtering."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Optional

from telemetry.logging_utils import get_logger
from telemetry.metrics import start_timer

from .config import (
    StagehandEnv,
    build_extraction_instruction,
    compute_result_limit,
    resolve_stagehand_env,
)
from .errors import BrowserSessionError
from .filtering import (
    build_filter_instructions,
    build_search_url,
    filter_listings_by_constraints,
    resolve_location_slug,
)
from .image_backfill import backfill_images
from .normalization import coerce_extracted_listings, normalize_listings
from .page_preparation import prepare_results_view
from .run_logger import LogSink, RunLogger
from .session_pool import SessionPool, SessionStore
from .types import ExtractionPayload, ExtractionRequest, ExtractionResult, SessionHandle

if TYPE_CHECKING:
    from .browser import BrowserClient

logger = get_logger(__name__)

MAX_ATTEMPTS = 2

BrowserFactory = Callable[[StagehandEnv, Optional[str]], "BrowserClient"]


def default_browser_factory(env: StagehandEnv, session_id: Optional[str]) -> "BrowserClient":
    from .browser import create_stagehand_client

    return create_stagehand_client(env, session_id)


async def _close_quietly(browser: Optional["BrowserClient"], run_id: str) -> None:
    if browser is None:
        return
    try:
        await browser.close()
    except Exception as exc:
        logger.warning("browser_close_failed", extra={"run_id": run_id, "error": str(exc)[:200]})


async def _detach_quietly(browser: "BrowserClient", run_id: str) -> None:
    try:
        await browser.detach()
    except Exception as exc:
        logger.warning("browser_detach_failed", extra={"run_id": run_id, "error": str(exc)[:200]})


@dataclass
class ExtractionWorkflow:
    """Runs one apartments.com extraction, retrying once with a fresh session on failure."""

    log_sink: Optional[LogSink]
    session_store: SessionStore
    browser_factory: BrowserFactory = field(default=default_browser_factory)
    env_resolver: Callable[[], StagehandEnv] = field(default=resolve_stagehand_env)
    max_attempts: int = MAX_ATTEMPTS
    session_pool: Optional[SessionPool] = None

    def __post_init__(self) -> None:
        if self.session_pool is None:
            self.session_pool = SessionPool(self.session_store)

    async def run(self, request: ExtractionRequest, run_logger: Optional[RunLogger] = None) -> ExtractionResult:
        """Run up to ``max_attempts`` extractions.

        Pass ``run_logger`` to keep writing to the same transcript after the run returns.
        """
        env = self.env_resolver()
        run_logger = run_logger or RunLogger(self.log_sink, thread_id=request.thread_id, run_id=request.run_id)
        fetch_window = compute_result_limit(request.limit)
        filter_instructions = build_filter_instructions(request.bedrooms, request.pets)
        extraction_instruction = build_extraction_instruction(fetch_window)
        search_url = build_search_url(
            resolve_location_slug(request.location_slug, request.query),
            request.max_price,
        )

        await run_logger.start_run_if_needed("Starting Browserbase session...")
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            logger.info(
                "extraction_attempt_start",
                extra={"attempt": attempt + 1, "run_id": run_logger.run_id, "thread_id": request.thread_id},
            )
            handle = await self.session_pool.acquire(run_logger.record_log)
            browser = None
            timer = start_timer("stagehand", env.model_name, conversation_id=request.thread_id)
            try:
                browser = self.browser_factory(env, handle.session_id)
                result = await self._attempt(
                    request,
                    browser,
                    handle,
                    run_logger,
                    search_url=search_url,
                    filter_instructions=filter_instructions,
                    extraction_instruction=extraction_instruction,
                    fetch_window=fetch_window,
                )
            except asyncio.CancelledError:
                run_logger.record_log("Extraction cancelled; discarding browser session")
                await self.session_pool.discard(handle, run_logger.record_log)
                await _close_quietly(browser, run_logger.run_id)
                timer.done(outcome="cancelled")
                raise
            except Exception as exc:
                last_error = exc
                retrying = attempt + 1 < self.max_attempts
                suffix = ", retrying with a new session" if retrying else ""
                run_logger.record_log(f"Stagehand extraction error{suffix}: {exc}")
                logger.warning(
                    "extraction_attempt_failed",
                    extra={
                        "attempt": attempt + 1,
                        "run_id": run_logger.run_id,
                        "retrying": retrying,
                        "error": str(exc)[:200],
                    },
                )
                await self.session_pool.discard(handle, run_logger.record_log)
                await _close_quietly(browser, run_logger.run_id)
                timer.done(outcome="error")
                continue

            timer.done(outcome="ok")
            await _detach_quietly(browser, run_logger.run_id)
            logger.info(
                "extraction_complete",
                extra={
                    "run_id": run_logger.run_id,
                    "extracted": result.extracted_count,
                    "returned": result.filtered_count,
                    "rejected": result.rejected_count,
                },
            )
            await run_logger.flush()
            result.logs = list(run_logger.all_logs)
            return result

        await run_logger.flush()
        if last_error is None:
            raise BrowserSessionError("Stagehand extraction failed")
        raise last_error

    async def _attempt(
        self,
        request: ExtractionRequest,
        browser: "BrowserClient",
        handle: SessionHandle,
        run_logger: RunLogger,
        *,
        search_url: str,
        filter_instructions: List[str],
        extraction_instruction: str,
        fetch_window: int,
    ) -> ExtractionResult:
        record_log = run_logger.record_log

        info = await browser.init()
        active_session_id = info.session_id or handle.session_id
        if not active_session_id:
            raise BrowserSessionError("Stagehand did not return a browser session id")
        handle.session_id = active_session_id
        record_log(f"Session ID: {active_session_id}")
        live_view_url = info.live_view_url or info.debug_url or ""

        await prepare_results_view(browser, search_url, filter_instructions, fetch_window, record_log)

        raw = await browser.extract(extraction_instruction, ExtractionPayload)
        extracted = coerce_extracted_listings(raw, limit=fetch_window)
        record_log("Extracted listing cards from the page")
        for listing in extracted:
            if listing.image_url:
                record_log(f"Extracted image URL: {listing.image_url}")
            else:
                record_log(f"No image URL extracted for: {listing.title}")

        normalized = normalize_listings(extracted)
        if any(not listing.image_url for listing in normalized):
            record_log("Attempting to backfill missing image URLs from the DOM")
            await backfill_images(browser, normalized, record_log)
        for listing in normalized:
            if not listing.image_url:
                record_log(f"Listing missing image: {listing.title}")

        filtered, rejected = filter_listings_by_constraints(normalized, max_price=request.max_price)
        if rejected:
            logger.info(
                "listings_filtered_out",
                extra={
                    "run_id": run_logger.run_id,
                    "rejected": [
                        {
                            "title": entry.listing.title,
                            "price": entry.listing.price,
                            "reasons": [f"{reason.type}: {reason.detail}" for reason in entry.reasons],
                        }
                        for entry in rejected
                    ],
                },
            )

        constrained = filtered[: request.limit]
        record_log(f"Normalized {len(normalized)} listings, returning {len(constrained)}")

        await self.session_pool.release(handle, active_session_id, record_log)

        return ExtractionResult(
            live_view_url=live_view_url,
            session_id=active_session_id,
            debug_url=info.debug_url,
            listings=constrained,
            extracted_count=len(normalized),
            filtered_count=len(constrained),
            rejected_count=len(rejected),
        )


async def perform_apartments_extraction(
    request: ExtractionRequest,
    *,
    log_sink: Optional[LogSink],
    session_store: SessionStore,
    browser_factory: Optional[BrowserFactory] = None,
    run_logger: Optional[RunLogger] = None,
) -> ExtractionResult:
    workflow = ExtractionWorkflow(
        log_sink=log_sink,
        session_store=session_store,
        browser_factory=browser_factory or default_browser_factory,
    )
    return await workflow.run(request, run_logger)
