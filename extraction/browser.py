"""Remote browser capability used by the workflow, backed by Stagehand on Browserbase."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Protocol, Type

from browserbase import Browserbase
from pydantic import BaseModel
from stagehand import Stagehand, StagehandConfig

from telemetry.logging_utils import get_logger
from telemetry.retry import retry_async_with_backoff

from .config import StagehandEnv
from .errors import BrowserSessionError
from .types import BrowserSessionInfo

logger = get_logger(__name__)

BROWSERBASE_SESSION_URL = "https://www.browserbase.com/sessions/{session_id}"


class BrowserClient(Protocol):
    async def init(self) -> BrowserSessionInfo: ...

    async def goto(self, url: str) -> None: ...

    async def act(self, instruction: str) -> None: ...

    async def extract(self, instruction: str, schema: Type[BaseModel]) -> Dict[str, Any]: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def close(self) -> None: ...

    async def detach(self) -> None: ...


def _as_dict(result: Any) -> Dict[str, Any]:
    if isinstance(result, BaseModel):
        return result.model_dump()
    if isinstance(result, dict):
        return result
    data = getattr(result, "data", None)
    if data is not None and data is not result:
        return _as_dict(data)
    return {}


class StagehandBrowserClient:
    """Drives one Browserbase session; resumes ``session_id`` when a pooled one is leased."""

    def __init__(self, env: StagehandEnv, session_id: Optional[str] = None) -> None:
        self.env = env
        self._requested_session_id = session_id
        model_client_options: Dict[str, Any] = {"apiKey": env.openai_key}
        if env.openai_base_url:
            model_client_options["baseURL"] = env.openai_base_url
        config = StagehandConfig(
            env="BROWSERBASE",
            api_key=env.api_key,
            project_id=env.project_id,
            model_name=env.model_name,
            model_api_key=env.openai_key,
            model_client_options=model_client_options,
            browserbase_session_id=session_id,
            wait_for_captcha_solves=True,
            enable_caching=False,
            verbose=1,
        )
        self._stagehand = Stagehand(config)
        self._initialized = False

    @property
    def page(self) -> Any:
        if not self._initialized or self._stagehand.page is None:
            raise BrowserSessionError("Browser page requested before the session was initialized.")
        return self._stagehand.page

    async def init(self) -> BrowserSessionInfo:
        await self._stagehand.init()
        self._initialized = True
        session_id = getattr(self._stagehand, "session_id", None) or self._requested_session_id
        live_view_url = BROWSERBASE_SESSION_URL.format(session_id=session_id) if session_id else None
        return BrowserSessionInfo(
            session_id=session_id,
            live_view_url=live_view_url,
            debug_url=await self._debug_url(session_id),
        )

    async def _debug_url(self, session_id: Optional[str]) -> Optional[str]:
        if not session_id:
            return None
        try:
            client = Browserbase(api_key=self.env.api_key)
            debug = await retry_async_with_backoff(
                lambda: asyncio.to_thread(client.sessions.debug, session_id),
                retries=2,
                label="browserbase_debug_url",
            )
        except Exception as exc:
            logger.warning(
                "browserbase_debug_url_unavailable",
                extra={"session_id": session_id, "error": str(exc)[:200]},
            )
            return None
        return getattr(debug, "debugger_fullscreen_url", None)

    async def goto(self, url: str) -> None:
        await self.page.goto(url)

    async def act(self, instruction: str) -> None:
        result = await self.page.act(instruction)
        if getattr(result, "success", True) is False:
            logger.warning(
                "page_action_unsuccessful",
                extra={"instruction": instruction[:120], "detail": str(getattr(result, "message", ""))[:200]},
            )

    async def extract(self, instruction: str, schema: Type[BaseModel]) -> Dict[str, Any]:
        result = await self.page.extract(instruction=instruction, schema=schema)
        return _as_dict(result)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def close(self) -> None:
        await self._stagehand.close()

    async def detach(self) -> None:
        """Release the local Playwright driver and HTTP client, leaving the remote session running."""
        if not self._initialized:
            return
        self._initialized = False
        stagehand = self._stagehand
        browser = getattr(stagehand, "_browser", None)
        if browser is not None:
            # A CDP-connected browser only disconnects on close.
            await browser.close()
        playwright = getattr(stagehand, "_playwright", None)
        if playwright is not None:
            await playwright.stop()
        http_client = getattr(stagehand, "_client", None)
        if http_client is not None and hasattr(http_client, "aclose"):
            await http_client.aclose()


def create_stagehand_client(env: StagehandEnv, session_id: Optional[str] = None) -> StagehandBrowserClient:
    return StagehandBrowserClient(env, session_id=session_id)
