import asyncio
import uuid
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from openai import OpenAI
from pydantic import BaseModel

from agent.assistant import get_openai_client, run_agent_turn
from agent.tools import PUBLIC_THREAD, SearchEstateArgs
from agent.utils import normalize_location
from extraction import ConfigurationError, ExtractionError, ExtractionRequest, ExtractionWorkflow
from extraction.workflow import BrowserFactory, default_browser_factory
from storage.factory import Store, get_store
from telemetry.logging_utils import get_logger
from telemetry.metrics import fetch_metrics, summarize_metrics

load_dotenv()

logger = get_logger(__name__)


class SearchPayload(SearchEstateArgs):
    thread_id: Optional[str] = None


class ChatPayload(BaseModel):
    message: str
    thread_id: Optional[str] = None


def get_browser_factory() -> BrowserFactory:
    return default_browser_factory


def get_chat_client() -> OpenAI:
    try:
        return get_openai_client()
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


app = FastAPI(title="Buscalo")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
def health(store: Store = Depends(get_store)):
    return {"ok": True, "store": type(store).__name__, "store_reachable": store.ping()}


@app.post("/api/search")
async def search(
    payload: SearchPayload,
    store: Store = Depends(get_store),
    browser_factory: BrowserFactory = Depends(get_browser_factory),
):
    display_query, location_slug = normalize_location(payload.query)
    request = ExtractionRequest(
        query=display_query,
        location_slug=location_slug,
        max_price=payload.max_price,
        bedrooms=payload.bedrooms,
        pets=payload.pets,
        limit=payload.limit,
        thread_id=payload.thread_id,
    )
    workflow = ExtractionWorkflow(log_sink=store, session_store=store, browser_factory=browser_factory)
    try:
        result = await workflow.run(request)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    except ExtractionError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    except Exception as exc:
        logger.warning("search_failed", extra={"error": str(exc)[:200]})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Extraction failed: {exc}")

    if result.listings:
        await asyncio.to_thread(
            store.record_listings,
            payload.thread_id or PUBLIC_THREAD,
            [listing.model_dump() for listing in result.listings],
        )
    return result.model_dump()


@app.post("/api/chat")
async def chat(
    payload: ChatPayload,
    store: Store = Depends(get_store),
    browser_factory: BrowserFactory = Depends(get_browser_factory),
    client: OpenAI = Depends(get_chat_client),
):
    text = payload.message.strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message cannot be empty.")
    thread_id = payload.thread_id or str(uuid.uuid4())
    reply = await run_agent_turn(
        [{"role": "user", "content": text}],
        thread_id,
        client=client,
        store=store,
        browser_factory=browser_factory,
    )
    return {"reply": reply, "thread_id": thread_id}


@app.get("/api/listings")
def list_listings(store: Store = Depends(get_store)):
    return {"listings": store.list_listings()}


@app.get("/api/favorites")
def list_favorites(store: Store = Depends(get_store)):
    return {"favorites": store.list_favorites()}


@app.post("/api/listings/{listing_id}/favorite")
def favorite_listing(listing_id: str, store: Store = Depends(get_store)):
    try:
        store.favorite_listing(listing_id)
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found.")
    return {"ok": True}


@app.delete("/api/listings/{listing_id}")
def remove_listing(listing_id: str, store: Store = Depends(get_store)):
    store.remove_listing(listing_id)
    return {"ok": True}


@app.delete("/api/favorites/{favorite_id}")
def remove_favorite(favorite_id: str, store: Store = Depends(get_store)):
    store.remove_favorite(favorite_id)
    return {"ok": True}


@app.get("/api/logs/{thread_id}")
def list_logs(thread_id: str, store: Store = Depends(get_store)):
    entries = store.list_logs_by_thread(thread_id)
    return {"logs": [_public_log(entry) for entry in entries]}


@app.get("/api/metrics")
def metrics(limit: int = 500):
    return summarize_metrics(fetch_metrics(limit=limit))


def _public_log(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "run_id": entry.get("run_id"),
        "message": entry.get("message"),
        "created_at": entry.get("created_at"),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server.app:app", host="0.0.0.0", port=8000, reload=False)
