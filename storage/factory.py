from __future__ import annotations

import os
import threading
from typing import Optional, Union

from dotenv import load_dotenv

from storage.memory_store import InMemoryStore
from storage.supabase_store import SupabaseStore
from telemetry.logging_utils import get_logger

load_dotenv()

logger = get_logger(__name__)

Store = Union[SupabaseStore, InMemoryStore]

_store: Optional[Store] = None
_store_lock = threading.Lock()


def get_store() -> Store:
    """Return the process-wide store: Supabase when configured, otherwise in-memory."""
    global _store
    with _store_lock:
        if _store is not None:
            return _store
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if url and key:
            _store = SupabaseStore(url, key)
            logger.info("store_selected", extra={"backend": "supabase"})
        else:
            _store = InMemoryStore()
            logger.info("store_selected", extra={"backend": "memory"})
        return _store


def reset_store(store: Optional[Store] = None) -> None:
    global _store
    with _store_lock:
        _store = store
