from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional
import uuid

import time
import httpx
from postgrest import APIError

from supabase import Client, create_client

from telemetry.logging_utils import get_logger
from telemetry.retry import retry_with_backoff

logger = get_logger(__name__)

EXEC_LOGS_TABLE = "exec_logs"
LISTINGS_TABLE = "listings"
FAVORITES_TABLE = "favorites"
BROWSER_SESSIONS_TABLE = "browser_sessions"


def _now_ms() -> int:
    return int(time.time() * 1000)


class SupabaseStore:
    """Supabase-backed run logs, listings, favorites and browser session pool."""

    def __init__(self, url: str, key: str) -> None:
        self.client: Client = create_client(url, key)
        self._max_retries = 3
        self._retry_backoff_seconds = 0.25

    def _table(self, name: str):
        return self.client.table(name)

    def _with_retry(self, fn: Callable[[], Any]) -> Any:
        return retry_with_backoff(
            fn,
            retries=self._max_retries,
            base_delay=self._retry_backoff_seconds,
            jitter=0,
            retry_exceptions=(httpx.RemoteProtocolError, httpx.WriteError, APIError),
            label="supabase",
        )

    # Run logs -----------------------------------------------------------------

    def start_run(
        self,
        thread_id: str,
        run_id: str,
        initial_message: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> None:
        self._with_retry(lambda: self._table(EXEC_LOGS_TABLE).delete().eq("thread_id", thread_id).execute())
        if not initial_message:
            return
        row = {
            "id": str(uuid.uuid4()),
            "thread_id": thread_id,
            "run_id": run_id,
            "message": initial_message,
            "created_at": created_at if created_at is not None else _now_ms(),
        }
        self._with_retry(lambda: self._table(EXEC_LOGS_TABLE).insert(row).execute())

    def append_logs(
        self,
        thread_id: str,
        run_id: str,
        messages: Iterable[str],
        created_at: Optional[int] = None,
    ) -> None:
        base = created_at if created_at is not None else _now_ms()
        rows = [
            {
                "id": str(uuid.uuid4()),
                "thread_id": thread_id,
                "run_id": run_id,
                "message": message,
                "created_at": base + offset,
            }
            for offset, message in enumerate(messages)
        ]
        if not rows:
            return
        self._with_retry(lambda: self._table(EXEC_LOGS_TABLE).insert(rows).execute())

    def list_logs_by_thread(self, thread_id: str) -> List[Dict[str, Any]]:
        resp = self._with_retry(
            lambda: self._table(EXEC_LOGS_TABLE)
            .select("id, thread_id, run_id, message, created_at")
            .eq("thread_id", thread_id)
            .order("created_at", desc=False)
            .execute()
        )
        return resp.data or []

    # Listings/favorites ---------------------------------------------------------

    def record_listings(self, thread_id: str, listings: Iterable[Dict[str, Any]]) -> None:
        rows = [
            {
                "thread_id": thread_id,
                "title": listing["title"],
                "address": listing.get("address") or "",
                "price": listing.get("price") or 0,
                "phone": listing.get("phone"),
                "image_url": listing.get("image_url"),
            }
            for listing in listings
        ]
        if not rows:
            return
        self._with_retry(
            lambda: self._table(LISTINGS_TABLE)
            .upsert(rows, on_conflict="thread_id,title,address")
            .execute()
        )

    def list_listings(self) -> List[Dict[str, Any]]:
        resp = self._with_retry(
            lambda: self._table(LISTINGS_TABLE).select("*").order("created_at", desc=True).execute()
        )
        return resp.data or []

    def list_favorites(self) -> List[Dict[str, Any]]:
        resp = self._with_retry(
            lambda: self._table(FAVORITES_TABLE).select("*").order("favorited_at", desc=True).execute()
        )
        return resp.data or []

    def favorite_listing(self, listing_id: str) -> None:
        resp = self._with_retry(
            lambda: self._table(LISTINGS_TABLE).select("*").eq("id", listing_id).maybe_single().execute()
        )
        listing = resp.data if resp else None
        if not listing:
            raise KeyError(f"Listing not found: {listing_id}")
        existing = self._with_retry(
            lambda: self._table(FAVORITES_TABLE)
            .select("id")
            .eq("thread_id", listing["thread_id"])
            .eq("title", listing["title"])
            .eq("address", listing["address"])
            .execute()
        )
        if not existing.data:
            favorite = {
                "id": str(uuid.uuid4()),
                "thread_id": listing["thread_id"],
                "title": listing["title"],
                "address": listing["address"],
                "price": listing["price"],
                "phone": listing.get("phone"),
                "image_url": listing.get("image_url"),
                "favorited_at": _now_ms(),
            }
            self._with_retry(lambda: self._table(FAVORITES_TABLE).insert(favorite).execute())
        self.remove_listing(listing_id)

    def remove_listing(self, listing_id: str) -> None:
        self._with_retry(lambda: self._table(LISTINGS_TABLE).delete().eq("id", listing_id).execute())

    def remove_favorite(self, favorite_id: str) -> None:
        self._with_retry(lambda: self._table(FAVORITES_TABLE).delete().eq("id", favorite_id).execute())

    # Browser session pool -------------------------------------------------------

    def get_available_session(self, cutoff: float) -> Optional[Dict[str, Any]]:
        resp = self._with_retry(
            lambda: self._table(BROWSER_SESSIONS_TABLE)
            .select("id, session_id, last_used_at")
            .eq("status", "available")
            .order("last_used_at", desc=True)
            .limit(1)
            .execute()
        )
        rows = resp.data or []
        if not rows:
            return None
        record = rows[0]
        last_used_at = float(record.get("last_used_at") or 0)
        return {
            "id": record["id"],
            "session_id": record["session_id"],
            "last_used_at": last_used_at,
            "stale": last_used_at < cutoff,
        }

    def mark_in_use(self, record_id: str, last_used_at: float) -> None:
        self._with_retry(
            lambda: self._table(BROWSER_SESSIONS_TABLE)
            .update({"status": "in_use", "last_used_at": last_used_at})
            .eq("id", record_id)
            .execute()
        )

    def mark_available(self, record_id: str, session_id: str, last_used_at: float) -> None:
        self._with_retry(
            lambda: self._table(BROWSER_SESSIONS_TABLE)
            .update({"status": "available", "session_id": session_id, "last_used_at": last_used_at})
            .eq("id", record_id)
            .execute()
        )

    def insert_available(self, session_id: str, timestamp: float) -> str:
        record = {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "status": "available",
            "created_at": timestamp,
            "last_used_at": timestamp,
        }
        resp = self._with_retry(lambda: self._table(BROWSER_SESSIONS_TABLE).insert(record).execute())
        if not resp.data:
            raise RuntimeError("Failed to insert browser session")
        return resp.data[0]["id"]

    def delete_session(self, record_id: str) -> None:
        self._with_retry(lambda: self._table(BROWSER_SESSIONS_TABLE).delete().eq("id", record_id).execute())

    # Health ---------------------------------------------------------------------

    def ping(self) -> bool:
        try:
            self._with_retry(lambda: self._table(BROWSER_SESSIONS_TABLE).select("id").limit(1).execute())
        except Exception as exc:
            logger.warning("supabase_ping_failed", extra={"error": str(exc)[:200]})
            return False
        return True
