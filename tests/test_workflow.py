import asyncio

import pytest

from extraction import ConfigurationError, ExtractionRequest, ExtractionWorkflow
from extraction.config import resolve_stagehand_env

from conftest import TEST_ENV, FakeBrowser, FakeBrowserFactory


def _workflow(store, factory, **kwargs):
    return ExtractionWorkflow(
        log_sink=store,
        session_store=store,
        browser_factory=factory,
        env_resolver=lambda: TEST_ENV,
        **kwargs,
    )


def _jersey_city_request(**overrides):
    params = dict(
        query="Jersey City, NJ",
        location_slug="jersey-city-nj",
        max_price=2000,
        limit=3,
        thread_id="thread-1",
        run_id="run-1",
    )
    params.update(overrides)
    return ExtractionRequest(**params)


def test_jersey_city_search_end_to_end(store, jersey_city_listings):
    browser = FakeBrowser(
        "bb-session-1",
        listings=jersey_city_listings,
        dom_images={"Hudson Studio Lofts": "https://images2.apartments.com/i2/hsl/lofts.jpg"},
    )
    factory = FakeBrowserFactory(browser)

    result = asyncio.run(_workflow(store, factory).run(_jersey_city_request()))

    assert [listing.title for listing in result.listings] == [
        "The Journal Squared",
        "The Beacon",
        "Hudson Studio Lofts",
    ]
    assert [listing.price for listing in result.listings] == [1850, 1995, 0]
    assert result.listings[2].price_raw == "Call for Pricing"
    assert result.listings[2].image_url == "https://images2.apartments.com/i2/hsl/lofts.jpg"
    assert result.extracted_count == 10
    assert result.rejected_count == 3
    assert result.filtered_count == 3
    assert result.session_id == "bb-session-1"
    assert result.live_view_url == "https://www.browserbase.com/sessions/bb-session-1"

    assert browser.calls[1] == ("goto", "https://www.apartments.com/jersey-city-nj/under-2000/")
    assert factory.requested_session_ids == [None]
    assert browser.closed is False
    assert browser.detached is True

    assert result.logs[0] == "Starting Browserbase session..."
    assert "Session ID: bb-session-1" in result.logs
    assert "Normalized 10 listings, returning 3" in result.logs
    assert result.logs[-1] == "Marked Browserbase session bb-session-1 available for reuse"
    persisted = [entry["message"] for entry in store.list_logs_by_thread("thread-1")]
    assert persisted == result.logs

    records = list(store.browser_sessions.values())
    assert len(records) == 1
    assert records[0]["session_id"] == "bb-session-1"
    assert records[0]["status"] == "available"


def test_call_for_pricing_survives_price_filter(store):
    browser = FakeBrowser(listings=[{"title": "Mystery Loft", "price": "Call for Pricing"}])

    result = asyncio.run(_workflow(store, FakeBrowserFactory(browser)).run(_jersey_city_request(max_price=1000)))

    assert [listing.title for listing in result.listings] == ["Mystery Loft"]
    assert result.listings[0].price == 0
    assert result.rejected_count == 0


def test_sequential_runs_reuse_session_and_reset_thread_logs(store, jersey_city_listings):
    first = FakeBrowser("bb-session-1", listings=jersey_city_listings)
    second = FakeBrowser("bb-session-1", listings=jersey_city_listings[:2])
    factory = FakeBrowserFactory(first, second)
    workflow = _workflow(store, factory)

    asyncio.run(workflow.run(_jersey_city_request(run_id="run-1")))
    result = asyncio.run(workflow.run(_jersey_city_request(run_id="run-2")))

    assert factory.requested_session_ids == [None, "bb-session-1"]
    assert "Reusing Browserbase session bb-session-1" in result.logs
    entries = store.list_logs_by_thread("thread-1")
    assert {entry["run_id"] for entry in entries} == {"run-2"}
    assert entries[0]["message"] == "Starting Browserbase session..."
    assert len(store.browser_sessions) == 1


def test_failed_attempt_discards_session_and_retries_fresh(store, jersey_city_listings):
    stale_record = store.insert_available("bb-old", 10**12)
    failing = FakeBrowser("bb-old", fail_on="extract", error=RuntimeError("extract timed out"))
    healthy = FakeBrowser("bb-new", listings=jersey_city_listings)
    factory = FakeBrowserFactory(failing, healthy)

    result = asyncio.run(_workflow(store, factory, session_pool=None).run(_jersey_city_request()))

    assert factory.requested_session_ids == ["bb-old", None]
    assert failing.closed is True
    assert failing.detached is False
    assert healthy.detached is True
    assert stale_record not in store.browser_sessions
    assert result.session_id == "bb-new"
    assert "Stagehand extraction error, retrying with a new session: extract timed out" in result.logs
    assert "Discarded Browserbase session record bb-old" in result.logs
    assert [record["session_id"] for record in store.browser_sessions.values()] == ["bb-new"]


def test_second_failure_raises_last_error(store):
    factory = FakeBrowserFactory(
        FakeBrowser("bb-1", fail_on="goto", error=RuntimeError("first failure")),
        FakeBrowser("bb-2", fail_on="init", error=RuntimeError("second failure")),
    )

    with pytest.raises(RuntimeError, match="second failure"):
        asyncio.run(_workflow(store, factory).run(_jersey_city_request()))

    messages = [entry["message"] for entry in store.list_logs_by_thread("thread-1")]
    assert "Stagehand extraction error, retrying with a new session: first failure" in messages
    assert "Stagehand extraction error: second failure" in messages
    assert store.browser_sessions == {}
    assert all(browser.closed for browser in factory.created)


def test_configuration_error_is_not_retried(store, monkeypatch):
    monkeypatch.delenv("BROWSERBASE_API_KEY", raising=False)
    factory = FakeBrowserFactory()
    workflow = ExtractionWorkflow(
        log_sink=store,
        session_store=store,
        browser_factory=factory,
        env_resolver=resolve_stagehand_env,
    )

    with pytest.raises(ConfigurationError, match="BROWSERBASE_API_KEY"):
        asyncio.run(workflow.run(_jersey_city_request()))

    assert factory.requested_session_ids == []


def test_cancellation_discards_session_and_closes_browser(store):
    record_id = store.insert_available("bb-leased", 10**12)
    browser = FakeBrowser("bb-leased", fail_on="extract", error=asyncio.CancelledError())
    factory = FakeBrowserFactory(browser)

    async def scenario():
        try:
            await _workflow(store, factory).run(_jersey_city_request())
        except asyncio.CancelledError:
            return "cancelled"
        return "finished"

    assert asyncio.run(scenario()) == "cancelled"
    assert record_id not in store.browser_sessions
    assert browser.closed is True
    assert factory.requested_session_ids == ["bb-leased"]


def test_run_without_thread_keeps_logs_local(store, jersey_city_listings):
    browser = FakeBrowser(listings=jersey_city_listings)

    result = asyncio.run(
        _workflow(store, FakeBrowserFactory(browser)).run(_jersey_city_request(thread_id=None))
    )

    assert store.exec_logs == []
    assert "Starting Browserbase session..." not in result.logs
    assert "Session ID: bb-session-1" in result.logs
