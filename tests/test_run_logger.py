import asyncio

from extraction.run_logger import RunLogger
from storage.memory_store import InMemoryStore


class ExplodingSink:
    def start_run(self, thread_id, run_id, initial_message=None, created_at=None):
        raise RuntimeError("sink down")

    def append_logs(self, thread_id, run_id, messages, created_at=None):
        raise RuntimeError("sink down")


def test_record_log_without_thread_only_buffers(store):
    logger = RunLogger(store, thread_id=None, run_id="run-1")

    logger.record_log("  Navigating  ")
    logger.record_log("   ")
    asyncio.run(logger.start_run_if_needed("Starting Browserbase session..."))

    assert logger.all_logs == ["Navigating"]
    assert store.exec_logs == []


def test_run_id_defaults_from_clock():
    logger = RunLogger(None, clock=lambda: 1234)
    assert logger.run_id == "run-1234"


def test_timestamps_are_strictly_increasing(store):
    logger = RunLogger(store, thread_id="thread-1", run_id="run-1", clock=lambda: 1000)

    async def scenario():
        await logger.start_run_if_needed("Starting Browserbase session...")
        logger.record_log("first")
        logger.record_log("second")
        logger.record_log("third")
        await logger.flush()

    asyncio.run(scenario())

    entries = store.list_logs_by_thread("thread-1")
    assert [entry["message"] for entry in entries] == [
        "Starting Browserbase session...",
        "first",
        "second",
        "third",
    ]
    assert [entry["created_at"] for entry in entries] == [1000, 1001, 1002, 1003]
    assert logger.all_logs == [entry["message"] for entry in entries]


def test_start_run_clears_previous_thread_logs(store):
    store.append_logs("thread-1", "old-run", ["stale line"], created_at=1)
    store.append_logs("thread-2", "other-run", ["keep me"], created_at=1)
    logger = RunLogger(store, thread_id="thread-1", run_id="run-2")

    async def scenario():
        await logger.start_run_if_needed("Starting Browserbase session...")
        await logger.start_run_if_needed("ignored second call")
        await logger.flush()

    asyncio.run(scenario())

    messages = [entry["message"] for entry in store.list_logs_by_thread("thread-1")]
    assert messages == ["Starting Browserbase session..."]
    assert [entry["message"] for entry in store.list_logs_by_thread("thread-2")] == ["keep me"]
    assert logger.all_logs == ["Starting Browserbase session..."]


def test_record_log_outside_event_loop_delivers_immediately():
    sink = InMemoryStore()
    logger = RunLogger(sink, thread_id="thread-1", run_id="run-1")

    logger.record_log("synchronous line")

    assert [entry["message"] for entry in sink.list_logs_by_thread("thread-1")] == ["synchronous line"]


def test_sink_failures_never_raise():
    logger = RunLogger(ExplodingSink(), thread_id="thread-1", run_id="run-1")

    async def scenario():
        await logger.start_run_if_needed("Starting Browserbase session...")
        logger.record_log("still recorded")
        await logger.flush()

    asyncio.run(scenario())
    logger.record_log("outside the loop")

    assert logger.all_logs == ["Starting Browserbase session...", "still recorded", "outside the loop"]
