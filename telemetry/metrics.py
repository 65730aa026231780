from __future__ import annotations

import csv
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from telemetry.logging_utils import get_logger

logger = get_logger(__name__)

CSV_FILENAME = "cost_log.csv"
CSV_COLUMNS = [
    "timestamp",
    "component",
    "model_or_tool",
    "latency_ms",
    "outcome",
    "conversation_id",
]

_csv_lock = threading.Lock()
_supabase_client: Optional[Client] = None


def metrics_dir() -> Path:
    configured = os.getenv("METRICS_DIR")
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parent.parent / "metrics"


def _csv_path() -> Path:
    return metrics_dir() / CSV_FILENAME


def _get_supabase_client() -> Optional[Client]:
    """Lazily initialize a Supabase client when env vars are present."""
    global _supabase_client
    if _supabase_client is not None:
        return _supabase_client
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        return None
    try:
        _supabase_client = create_client(url, key)
    except Exception as exc:
        logger.warning("metrics_supabase_unavailable", extra={"error": str(exc)[:200]})
        _supabase_client = None
    return _supabase_client


def _ensure_csv_header(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        return
    with _csv_lock:
        if path.exists():
            return
        with path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()


def _coerce_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def log_metric(
    component: str,
    model_or_tool: Optional[str],
    *,
    latency_ms: Optional[float] = None,
    outcome: Optional[str] = None,
    conversation_id: Optional[str] = None,
) -> None:
    """Persist a metric row to CSV and Supabase (best effort)."""
    row = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "component": component,
        "model_or_tool": model_or_tool or "",
        "latency_ms": round(latency_ms, 3) if latency_ms is not None else None,
        "outcome": outcome,
        "conversation_id": conversation_id,
    }
    csv_row = {k: ("" if v is None else v) for k, v in row.items()}

    path = _csv_path()
    try:
        _ensure_csv_header(path)
        with _csv_lock:
            with path.open("a", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
                writer.writerow(csv_row)
    except OSError as exc:
        logger.warning("metric_csv_write_failed", extra={"error": str(exc)[:200]})

    client = _get_supabase_client()
    if client is not None:
        try:
            client.table("metrics").insert(row).execute()
        except Exception as exc:
            logger.warning("metric_supabase_write_failed", extra={"error": str(exc)[:200]})


@dataclass
class MetricTimer:
    component: str
    model_or_tool: Optional[str]
    conversation_id: Optional[str]
    _start: float = field(default_factory=time.perf_counter)

    def done(self, *, outcome: Optional[str] = None) -> float:
        latency_ms = (time.perf_counter() - self._start) * 1000
        log_metric(
            self.component,
            self.model_or_tool,
            latency_ms=latency_ms,
            outcome=outcome,
            conversation_id=self.conversation_id,
        )
        return latency_ms


def start_timer(component: str, model_or_tool: Optional[str], conversation_id: Optional[str] = None) -> MetricTimer:
    return MetricTimer(component=component, model_or_tool=model_or_tool, conversation_id=conversation_id)


def fetch_metrics(limit: int = 500) -> List[Dict[str, Any]]:
    """Return recent metrics from Supabase if available, otherwise from the local CSV."""
    client = _get_supabase_client()
    if client is not None:
        try:
            resp = client.table("metrics").select("*").order("timestamp", desc=True).limit(limit).execute()
            if resp.data:
                return resp.data
        except Exception as exc:
            logger.warning("metric_supabase_read_failed", extra={"error": str(exc)[:200]})
    path = _csv_path()
    if not path.exists():
        return []
    rows: List[Dict[str, Any]] = []
    with path.open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for idx, row in enumerate(reader):
            if idx >= limit:
                break
            rows.append(row)
    return rows


def summarize_metrics(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Compute average latency and failure count per component."""
    latency_by_component: Dict[str, List[float]] = {}
    failures: Dict[str, int] = {}
    for row in records:
        component = row.get("component") or "unknown"
        latency = _coerce_number(row.get("latency_ms"))
        if latency is not None:
            latency_by_component.setdefault(component, []).append(latency)
        if row.get("outcome") == "error":
            failures[component] = failures.get(component, 0) + 1
    avg_latency = {
        comp: round(sum(vals) / len(vals), 3) for comp, vals in latency_by_component.items() if vals
    }
    return {
        "average_latency_ms": avg_latency,
        "failures": failures,
        "sample_size": len(records),
    }
