"""Reuse of remote browser sessions across extraction runs.

Records move ``available -> in_use -> available`` on a clean run and are
deleted on failure or cancellation. Idle records older than the reuse window are deleted
instead of handed out. Access is optimistic: two callers may race for the
same record, which costs at most one failed attempt, so store failures here
are logged and absorbed rather than raised.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Optional, Protocol

from telemetry.logging_utils import get_logger

from .types import SessionHandle

logger = get_logger(__name__)

REUSE_WINDOW_SECONDS = 55.0
# Bounds the stale sweep when deletes silently leave rows behind.
MAX_POOL_SCAN = 10

LogFn = Callable[[str], None]


class SessionStore(Protocol):
    def get_available_session(self, cutoff: float) -> Optional[Dict[str, Any]]: ...

    def mark_in_use(self, record_id: str, last_used_at: float) -> None: ...

    def mark_available(self, record_id: str, session_id: str, last_used_at: float) -> None: ...

    def insert_available(self, session_id: str, timestamp: float) -> str: ...

    def delete_session(self, record_id: str) -> None: ...


def _noop(_: str) -> None:
    return None


class SessionPool:
    def __init__(
        self,
        store: SessionStore,
        *,
        reuse_window: float = REUSE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.reuse_window = reuse_window
        self._clock = clock

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    async def acquire(self, log: Optional[LogFn] = None) -> SessionHandle:
        """Lease the freshest available session, or an empty handle if none is reusable."""
        log = log or _noop
        now = self._clock()
        cutoff = now - self.reuse_window

        for _ in range(MAX_POOL_SCAN):
            try:
                candidate = await self._call(self.store.get_available_session, cutoff)
            except Exception as exc:
                logger.warning("session_pool_lookup_failed", extra={"error": str(exc)[:200]})
                break
            if not candidate:
                break

            record_id = candidate["id"]
            if candidate.get("stale") or candidate.get("last_used_at", 0) < cutoff:
                try:
                    await self._call(self.store.delete_session, record_id)
                except Exception as exc:
                    logger.warning(
                        "session_pool_stale_delete_failed",
                        extra={"record_id": record_id, "error": str(exc)[:200]},
                    )
                    break
                logger.info("session_pool_stale_deleted", extra={"record_id": record_id})
                continue

            marking = asyncio.ensure_future(self._call(self.store.mark_in_use, record_id, now))
            try:
                await asyncio.shield(marking)
            except asyncio.CancelledError:
                await self._drop_interrupted_lease(record_id, marking)
                raise
            except Exception as exc:
                logger.warning(
                    "session_pool_mark_in_use_failed",
                    extra={"record_id": record_id, "error": str(exc)[:200]},
                )
                break
            log(f"Reusing Browserbase session {candidate.get('session_id')}")
            return SessionHandle(record_id=record_id, session_id=candidate.get("session_id"), reused=True)
        else:
            logger.warning("session_pool_scan_exhausted", extra={"max_scan": MAX_POOL_SCAN})

        log("No reusable Browserbase session available; a new one will be created")
        return SessionHandle()

    async def _drop_interrupted_lease(self, record_id: str, marking: "asyncio.Future[Any]") -> None:
        # The in-use update is still running on a worker thread; let it land before deleting.
        await asyncio.gather(marking, return_exceptions=True)
        try:
            await self._call(self.store.delete_session, record_id)
        except Exception as exc:
            logger.warning(
                "session_pool_cancel_cleanup_failed",
                extra={"record_id": record_id, "error": str(exc)[:200]},
            )
            return
        logger.info("session_pool_lease_cancelled", extra={"record_id": record_id})

    async def release(self, handle: SessionHandle, session_id: str, log: Optional[LogFn] = None) -> None:
        """Return a healthy session to the pool for later reuse."""
        log = log or _noop
        now = self._clock()
        try:
            if handle.record_id:
                await self._call(self.store.mark_available, handle.record_id, session_id, now)
            else:
                handle.record_id = await self._call(self.store.insert_available, session_id, now)
        except Exception as exc:
            logger.warning(
                "session_pool_release_failed",
                extra={"session_id": session_id, "error": str(exc)[:200]},
            )
            return
        handle.session_id = session_id
        log(f"Marked Browserbase session {session_id} available for reuse")

    async def discard(self, handle: SessionHandle, log: Optional[LogFn] = None) -> None:
        """Forget a session that failed; it is never re-inserted."""
        log = log or _noop
        if not handle.record_id:
            return
        try:
            await self._call(self.store.delete_session, handle.record_id)
        except Exception as exc:
            logger.warning(
                "session_pool_discard_failed",
                extra={"record_id": handle.record_id, "error": str(exc)[:200]},
            )
            return
        log(f"Discarded Browserbase session record {handle.session_id or 'unknown'}")
        handle.record_id = None
