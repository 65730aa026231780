"""Environment-driven settings for the extraction workflow."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

DEFAULT_STAGEHAND_MODEL = "gpt-4.1-mini"
DEFAULT_MIN_FETCH = 25
DEFAULT_MAX_FETCH = 50


@dataclass(frozen=True)
class StagehandEnv:
    api_key: str
    project_id: str
    openai_key: str
    model_name: str = DEFAULT_STAGEHAND_MODEL
    openai_base_url: Optional[str] = None


def resolve_stagehand_env() -> StagehandEnv:
    """Read browser automation and model credentials; missing ones are fatal."""
    api_key = os.getenv("BROWSERBASE_API_KEY")
    project_id = os.getenv("BROWSERBASE_PROJECT_ID")
    openai_key = os.getenv("OPENAI_API_KEY") or os.getenv("CONVEX_OPENAI_API_KEY")

    if not api_key:
        raise ConfigurationError("Missing BROWSERBASE_API_KEY environment variable.")
    if not project_id:
        raise ConfigurationError("Missing BROWSERBASE_PROJECT_ID environment variable.")
    if not openai_key:
        raise ConfigurationError("Missing OPENAI_API_KEY (or CONVEX_OPENAI_API_KEY) environment variable.")

    return StagehandEnv(
        api_key=api_key,
        project_id=project_id,
        openai_key=openai_key,
        model_name=os.getenv("STAGEHAND_MODEL", DEFAULT_STAGEHAND_MODEL),
        openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
    )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def fetch_window_bounds() -> Tuple[int, int]:
    lower = _env_int("EXTRACTION_MIN_FETCH", DEFAULT_MIN_FETCH)
    upper = _env_int("EXTRACTION_MAX_FETCH", DEFAULT_MAX_FETCH)
    if lower < 1 or upper < lower:
        raise ConfigurationError(f"Invalid fetch window bounds: {lower}..{upper}")
    return lower, upper


def compute_result_limit(limit: Optional[float] = None) -> int:
    """Number of cards to ask the extraction call for: ``limit`` clamped into the fetch window."""
    lower, upper = fetch_window_bounds()
    if isinstance(limit, (int, float)) and not isinstance(limit, bool) and math.isfinite(limit):
        numeric = max(1, int(math.floor(limit)))
    else:
        numeric = upper
    return min(upper, max(lower, numeric))


def build_extraction_instruction(result_limit: int) -> str:
    return (
        "Extract the rental listing cards currently visible on the page "
        f"(aim for up to {result_limit}). For each, provide only the title, the displayed monthly price "
        "text, the street address if shown, and the primary image URL (if available)."
    )
