import asyncio
import threading
import time

import pytest

from extraction.session_pool import MAX_POOL_SCAN, SessionPool
from extraction.types import SessionHandle
from storage.memory_store import InMemoryStore


class FakeClock:
    def __init__(self, now: float = 10_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore(InMemoryStore):
    def get_available_session(self, cutoff):
        raise RuntimeError("store unavailable")

    def insert_available(self, session_id, timestamp):
        raise RuntimeError("store unavailable")


def test_acquire_without_records_returns_fresh_handle(store):
    pool = SessionPool(store, clock=FakeClock())
    messages = []

    handle = asyncio.run(pool.acquire(messages.append))

    assert handle == SessionHandle()
    assert messages == ["No reusable Browserbase session available; a new one will be created"]


def test_acquire_reuses_recent_session(store):
    clock = FakeClock()
    record_id = store.insert_available("bb-recent", clock.now - 10)
    pool = SessionPool(store, clock=clock)
    messages = []

    handle = asyncio.run(pool.acquire(messages.append))

    assert handle.reused is True
    assert handle.record_id == record_id
    assert handle.session_id == "bb-recent"
    assert store.browser_sessions[record_id]["status"] == "in_use"
    assert store.browser_sessions[record_id]["last_used_at"] == clock.now
    assert messages == ["Reusing Browserbase session bb-recent"]


def test_acquire_deletes_stale_sessions_before_reuse(store):
    clock = FakeClock()
    stale_id = store.insert_available("bb-stale", clock.now - 120)
    pool = SessionPool(store, clock=clock)

    handle = asyncio.run(pool.acquire())

    assert handle == SessionHandle()
    assert stale_id not in store.browser_sessions


def test_acquire_skips_stale_and_takes_fresh(store):
    clock = FakeClock()
    store.insert_available("bb-stale", clock.now - 300)
    fresh_id = store.insert_available("bb-fresh", clock.now - 5)
    pool = SessionPool(store, clock=clock)

    handle = asyncio.run(pool.acquire())

    assert handle.record_id == fresh_id
    assert handle.session_id == "bb-fresh"


def test_release_inserts_new_record_for_fresh_session(store):
    clock = FakeClock()
    pool = SessionPool(store, clock=clock)
    handle = SessionHandle()
    messages = []

    asyncio.run(pool.release(handle, "bb-new", messages.append))

    record = store.browser_sessions[handle.record_id]
    assert record["status"] == "available"
    assert record["session_id"] == "bb-new"
    assert record["last_used_at"] == clock.now
    assert messages == ["Marked Browserbase session bb-new available for reuse"]


def test_release_marks_leased_record_available(store):
    clock = FakeClock()
    record_id = store.insert_available("bb-1", clock.now - 10)
    pool = SessionPool(store, clock=clock)

    async def scenario():
        handle = await pool.acquire()
        clock.now += 30
        await pool.release(handle, "bb-1")
        return handle

    handle = asyncio.run(scenario())

    assert handle.record_id == record_id
    assert store.browser_sessions[record_id]["status"] == "available"
    assert store.browser_sessions[record_id]["last_used_at"] == clock.now
    assert len(store.browser_sessions) == 1


def test_discard_deletes_record(store):
    clock = FakeClock()
    record_id = store.insert_available("bb-1", clock.now)
    pool = SessionPool(store, clock=clock)
    handle = SessionHandle(record_id=record_id, session_id="bb-1", reused=True)
    messages = []

    asyncio.run(pool.discard(handle, messages.append))

    assert store.browser_sessions == {}
    assert handle.record_id is None
    assert messages == ["Discarded Browserbase session record bb-1"]


def test_discard_without_record_is_noop(store):
    pool = SessionPool(store, clock=FakeClock())
    messages = []
    asyncio.run(pool.discard(SessionHandle(), messages.append))
    assert messages == []


def test_store_failures_fall_back_to_fresh_session():
    pool = SessionPool(BrokenStore(), clock=FakeClock())
    handle = SessionHandle()

    acquired = asyncio.run(pool.acquire())
    asyncio.run(pool.release(handle, "bb-new"))

    assert acquired == SessionHandle()
    assert handle.record_id is None


class SlowLeaseStore(InMemoryStore):
    def __init__(self):
        super().__init__()
        self.marking_started = threading.Event()

    def mark_in_use(self, record_id, last_used_at):
        self.marking_started.set()
        time.sleep(0.2)
        super().mark_in_use(record_id, last_used_at)


class StickyStore(InMemoryStore):
    """Deletes report success but leave the row in place."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    def get_available_session(self, cutoff):
        self.lookups += 1
        return super().get_available_session(cutoff)

    def delete_session(self, record_id):
        return None


def test_cancelled_acquire_deletes_leased_record():
    clock = FakeClock()
    store = SlowLeaseStore()
    store.insert_available("bb-leased", clock.now - 5)
    pool = SessionPool(store, clock=clock)

    async def scenario():
        task = asyncio.create_task(pool.acquire())
        await asyncio.to_thread(store.marking_started.wait, 2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert store.browser_sessions == {}


def test_stale_sweep_is_bounded_when_deletes_do_not_stick():
    clock = FakeClock()
    store = StickyStore()
    store.insert_available("bb-stale", clock.now - 300)
    pool = SessionPool(store, clock=clock)
    messages = []

    handle = asyncio.run(pool.acquire(messages.append))

    assert handle == SessionHandle()
    assert store.lookups == MAX_POOL_SCAN
    assert messages == ["No reusable Browserbase session available; a new one will be created"]
