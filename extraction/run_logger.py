"""Human-readable progress transcript for one extraction run.

Messages are appended to an in-memory list synchronously and, when the run is
attached to a conversation thread, delivered to the log sink in the
background. Delivery never fails the run.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, List, Optional, Protocol, Set

from telemetry.logging_utils import get_logger

logger = get_logger(__name__)


class LogSink(Protocol):
    def start_run(
        self,
        thread_id: str,
        run_id: str,
        initial_message: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> None: ...

    def append_logs(
        self,
        thread_id: str,
        run_id: str,
        messages: List[str],
        created_at: Optional[int] = None,
    ) -> None: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class RunLogger:
    """Buffers a run transcript and forwards it to ``sink`` keyed by thread and run."""

    def __init__(
        self,
        sink: Optional[LogSink],
        *,
        thread_id: Optional[str] = None,
        run_id: Optional[str] = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.sink = sink
        self.thread_id = thread_id or None
        self._clock = clock
        self.run_id = run_id or f"run-{clock()}"
        self.all_logs: List[str] = []
        self._run_started = False
        self._last_timestamp = 0
        self._pending: Set[asyncio.Task] = set()

    @property
    def persists(self) -> bool:
        return self.thread_id is not None and self.sink is not None

    def _next_timestamp(self) -> int:
        # Strictly increasing so the sink can order concurrent deliveries.
        stamp = max(self._clock(), self._last_timestamp + 1)
        self._last_timestamp = stamp
        return stamp

    def record_log(self, raw: str) -> None:
        message = (raw or "").strip()
        if not message:
            return
        self.all_logs.append(message)
        if not self.persists:
            return
        created_at = self._next_timestamp()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver_now(message, created_at)
            return
        task = loop.create_task(self._deliver(message, created_at))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _deliver_now(self, message: str, created_at: int) -> None:
        try:
            self.sink.append_logs(self.thread_id, self.run_id, [message], created_at=created_at)
        except Exception as exc:
            logger.warning(
                "run_log_delivery_failed",
                extra={"thread_id": self.thread_id, "run_id": self.run_id, "error": str(exc)[:200]},
            )

    async def _deliver(self, message: str, created_at: int) -> None:
        try:
            await asyncio.to_thread(
                self.sink.append_logs, self.thread_id, self.run_id, [message], created_at=created_at
            )
        except Exception as exc:
            logger.warning(
                "run_log_delivery_failed",
                extra={"thread_id": self.thread_id, "run_id": self.run_id, "error": str(exc)[:200]},
            )

    async def start_run_if_needed(self, initial_message: Optional[str] = None) -> None:
        """Clear the thread's previous run from the sink, once per logger."""
        if not self.persists or self._run_started:
            return
        self._run_started = True
        message = (initial_message or "").strip() or None
        try:
            await asyncio.to_thread(
                self.sink.start_run,
                self.thread_id,
                self.run_id,
                message,
                created_at=self._next_timestamp(),
            )
        except Exception as exc:
            logger.warning(
                "run_log_start_failed",
                extra={"thread_id": self.thread_id, "run_id": self.run_id, "error": str(exc)[:200]},
            )
        if message:
            self.all_logs.append(message)

    async def flush(self) -> None:
        """Wait for in-flight deliveries to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
