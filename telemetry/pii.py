from __future__ import annotations

import hashlib
import re
from typing import Any, Dict

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
# Listing cards often carry a leasing office phone number.
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{8,}\d")
# Browserbase debugger and connect URLs embed signed query params.
SIGNED_PARAM_RE = re.compile(r"([?&](?:token|signature|apiKey|api_key|sig)=)[^&#\s]+", re.IGNORECASE)

# Keys whose values are summarized instead of logged.
SENSITIVE_FIELDS = {
    "messages",
    "raw_listings",
    "extraction_payload",
    "api_key",
    "openai_key",
    "project_id",
    "service_role_key",
}

_MAX_VALUE_LENGTH = 500


def _fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


def scrub_text(text: str) -> str:
    """Redact contact details and signed URL params from free text.

    Replacements keep a short sha256 fingerprint so repeated values can
    still be correlated across log lines.
    """
    if not text:
        return text
    scrubbed = SIGNED_PARAM_RE.sub(lambda m: f"{m.group(1)}[REDACTED]", text)
    scrubbed = EMAIL_RE.sub(lambda m: f"[EMAIL:{_fingerprint(m.group(0))}]", scrubbed)
    return PHONE_RE.sub(lambda m: f"[PHONE:{_fingerprint(m.group(0))}]", scrubbed)


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return lowered in SENSITIVE_FIELDS or lowered.endswith(("_key", "_token")) or "secret" in lowered


def scrub_value(value: Any) -> Any:
    if isinstance(value, str):
        cleaned = scrub_text(value)
        if len(cleaned) > _MAX_VALUE_LENGTH:
            return f"{cleaned[:_MAX_VALUE_LENGTH]}...[truncated:{_fingerprint(cleaned)}]"
        return cleaned
    if isinstance(value, dict):
        return sanitize_log_payload(value)
    if isinstance(value, (list, tuple)):
        return [scrub_value(item) for item in value]
    return value


def sanitize_log_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Summarize credential and bulk fields, scrub everything else."""
    if not isinstance(payload, dict):
        return {}
    cleaned: Dict[str, Any] = {}
    for key, value in payload.items():
        if value is not None and _is_sensitive_key(str(key)):
            items = len(value) if hasattr(value, "__len__") else None
            cleaned[key] = {"redacted": True, "items": items}
        else:
            cleaned[key] = scrub_value(value)
    return cleaned
