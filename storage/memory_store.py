from __future__ import annotations

import threading
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


def _listing_key(record: Dict[str, Any]) -> tuple:
    return (record.get("thread_id"), record.get("title"), record.get("address"))


class InMemoryStore:
    """Demo-mode store used when Supabase is unavailable.

    Implements the run log sink, the listing store and the browser session
    pool store. Calls may arrive from worker threads, so every method holds
    the store lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.exec_logs: List[Dict[str, Any]] = []
        self.listings: Dict[str, Dict[str, Any]] = {}
        self.favorites: Dict[str, Dict[str, Any]] = {}
        self.browser_sessions: Dict[str, Dict[str, Any]] = {}

    # Run logs -------------------------------------------------------------
    def start_run(
        self,
        thread_id: str,
        run_id: str,
        initial_message: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> None:
        with self._lock:
            self.exec_logs = [entry for entry in self.exec_logs if entry["thread_id"] != thread_id]
            if initial_message:
                self.exec_logs.append(
                    {
                        "id": str(uuid.uuid4()),
                        "thread_id": thread_id,
                        "run_id": run_id,
                        "message": initial_message,
                        "created_at": created_at if created_at is not None else _now_ms(),
                    }
                )

    def append_logs(
        self,
        thread_id: str,
        run_id: str,
        messages: Iterable[str],
        created_at: Optional[int] = None,
    ) -> None:
        ts = created_at if created_at is not None else _now_ms()
        with self._lock:
            for message in messages:
                self.exec_logs.append(
                    {
                        "id": str(uuid.uuid4()),
                        "thread_id": thread_id,
                        "run_id": run_id,
                        "message": message,
                        "created_at": ts,
                    }
                )
                ts += 1

    def list_logs_by_thread(self, thread_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            entries = [dict(entry) for entry in self.exec_logs if entry["thread_id"] == thread_id]
        entries.sort(key=lambda entry: entry["created_at"])
        return entries

    # Listings/favorites ---------------------------------------------------
    def record_listings(self, thread_id: str, listings: Iterable[Dict[str, Any]]) -> None:
        now = _now_ms()
        with self._lock:
            for listing in listings:
                payload = {
                    "thread_id": thread_id,
                    "title": listing["title"],
                    "address": listing.get("address") or "",
                    "price": listing.get("price") or 0,
                    "phone": listing.get("phone"),
                    "image_url": listing.get("image_url"),
                }
                existing = next(
                    (rec for rec in self.listings.values() if _listing_key(rec) == _listing_key(payload)),
                    None,
                )
                if existing:
                    existing.update(payload)
                    continue
                listing_id = str(uuid.uuid4())
                self.listings[listing_id] = {"id": listing_id, **payload, "created_at": now}

    def list_listings(self) -> List[Dict[str, Any]]:
        with self._lock:
            records = [dict(rec) for rec in self.listings.values()]
        records.sort(key=lambda rec: rec.get("created_at") or 0, reverse=True)
        return records

    def list_favorites(self) -> List[Dict[str, Any]]:
        with self._lock:
            records = [dict(rec) for rec in self.favorites.values()]
        records.sort(key=lambda rec: rec.get("favorited_at") or 0, reverse=True)
        return records

    def favorite_listing(self, listing_id: str) -> None:
        with self._lock:
            listing = self.listings.get(listing_id)
            if not listing:
                raise KeyError(f"Listing not found: {listing_id}")
            already = any(_listing_key(fav) == _listing_key(listing) for fav in self.favorites.values())
            if not already:
                favorite_id = str(uuid.uuid4())
                self.favorites[favorite_id] = {
                    "id": favorite_id,
                    "thread_id": listing["thread_id"],
                    "title": listing["title"],
                    "address": listing["address"],
                    "price": listing["price"],
                    "phone": listing.get("phone"),
                    "image_url": listing.get("image_url"),
                    "favorited_at": _now_ms(),
                }
            del self.listings[listing_id]

    def remove_listing(self, listing_id: str) -> None:
        with self._lock:
            self.listings.pop(listing_id, None)

    def remove_favorite(self, favorite_id: str) -> None:
        with self._lock:
            self.favorites.pop(favorite_id, None)

    # Browser session pool -------------------------------------------------
    def get_available_session(self, cutoff: float) -> Optional[Dict[str, Any]]:
        with self._lock:
            available = [rec for rec in self.browser_sessions.values() if rec["status"] == "available"]
            if not available:
                return None
            candidate = max(available, key=lambda rec: rec["last_used_at"])
            return {
                "id": candidate["id"],
                "session_id": candidate["session_id"],
                "last_used_at": candidate["last_used_at"],
                "stale": candidate["last_used_at"] < cutoff,
            }

    def mark_in_use(self, record_id: str, last_used_at: float) -> None:
        with self._lock:
            record = self.browser_sessions.get(record_id)
            if record:
                record.update({"status": "in_use", "last_used_at": last_used_at})

    def mark_available(self, record_id: str, session_id: str, last_used_at: float) -> None:
        with self._lock:
            record = self.browser_sessions.get(record_id)
            if record:
                record.update({"status": "available", "session_id": session_id, "last_used_at": last_used_at})

    def insert_available(self, session_id: str, timestamp: float) -> str:
        record_id = str(uuid.uuid4())
        with self._lock:
            self.browser_sessions[record_id] = {
                "id": record_id,
                "session_id": session_id,
                "status": "available",
                "created_at": timestamp,
                "last_used_at": timestamp,
            }
        return record_id

    def delete_session(self, record_id: str) -> None:
        with self._lock:
            self.browser_sessions.pop(record_id, None)

    # Health ---------------------------------------------------------------
    def ping(self) -> bool:
        return True
