import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from extraction.config import StagehandEnv
from extraction.types import BrowserSessionInfo
from storage.memory_store import InMemoryStore

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


def load_fixture(name: str):
    with open(FIXTURES_DIR / name, "r", encoding="utf-8") as f:
        return json.load(f)


TEST_ENV = StagehandEnv(api_key="bb-test-key", project_id="bb-test-project", openai_key="sk-test")


class FakeBrowser:
    """Scripted stand-in for the Stagehand browser client."""

    def __init__(
        self,
        session_id: Optional[str] = "bb-session-1",
        *,
        listings: Optional[List[Dict[str, Any]]] = None,
        dom_images: Optional[Dict[str, Optional[str]]] = None,
        fail_on: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self.session_id = session_id
        self.listings = listings or []
        self.dom_images = dom_images or {}
        self.fail_on = fail_on
        self.error = error or RuntimeError("boom")
        self.calls: List[tuple] = []
        self.closed = False
        self.detached = False

    def _maybe_fail(self, stage: str) -> None:
        if self.fail_on == stage:
            raise self.error

    async def init(self) -> BrowserSessionInfo:
        self.calls.append(("init",))
        self._maybe_fail("init")
        live_view = f"https://www.browserbase.com/sessions/{self.session_id}" if self.session_id else None
        return BrowserSessionInfo(session_id=self.session_id, live_view_url=live_view, debug_url=None)

    async def goto(self, url: str) -> None:
        self.calls.append(("goto", url))
        self._maybe_fail("goto")

    async def act(self, instruction: str) -> None:
        self.calls.append(("act", instruction))
        self._maybe_fail("act")

    async def extract(self, instruction: str, schema: Any) -> Dict[str, Any]:
        self.calls.append(("extract", instruction))
        self._maybe_fail("extract")
        return {"listings": copy.deepcopy(self.listings)}

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.calls.append(("evaluate", arg))
        self._maybe_fail("evaluate")
        return {title: self.dom_images.get(title) for title in arg or []}

    async def close(self) -> None:
        self.closed = True

    async def detach(self) -> None:
        self.detached = True


class FakeBrowserFactory:
    """Hands out prepared browsers in order and records the session ids requested."""

    def __init__(self, *browsers: FakeBrowser) -> None:
        self._browsers = list(browsers)
        self.requested_session_ids: List[Optional[str]] = []
        self.created: List[FakeBrowser] = []

    def __call__(self, env: StagehandEnv, session_id: Optional[str]) -> FakeBrowser:
        self.requested_session_ids.append(session_id)
        browser = self._browsers.pop(0)
        self.created.append(browser)
        return browser


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep metrics local to the test and never reach Supabase."""
    monkeypatch.setenv("METRICS_DIR", str(tmp_path / "metrics"))
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("EXTRACTION_MIN_FETCH", raising=False)
    monkeypatch.delenv("EXTRACTION_MAX_FETCH", raising=False)
    yield


@pytest.fixture()
def stagehand_env(monkeypatch):
    monkeypatch.setenv("BROWSERBASE_API_KEY", TEST_ENV.api_key)
    monkeypatch.setenv("BROWSERBASE_PROJECT_ID", TEST_ENV.project_id)
    monkeypatch.setenv("OPENAI_API_KEY", TEST_ENV.openai_key)
    monkeypatch.delenv("STAGEHAND_MODEL", raising=False)
    return TEST_ENV


@pytest.fixture()
def store():
    return InMemoryStore()


@pytest.fixture()
def jersey_city_listings():
    return load_fixture("jersey_city_listings.json")["listings"]
