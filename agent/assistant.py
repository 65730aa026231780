from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from openai import OpenAI
from pydantic import ValidationError

from extraction.workflow import BrowserFactory
from storage.factory import Store
from telemetry.logging_utils import get_logger
from telemetry.metrics import start_timer
from telemetry.retry import retry_with_backoff

from .tools import TOOLS, DisplayListingsArgs, SearchEstateArgs, display_listings, search_estate

load_dotenv()

logger = get_logger(__name__)

DEFAULT_OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_MAX_RETRIES = int(os.getenv("OPENAI_MAX_RETRIES", "3"))
MAX_TOOL_STEPS = 4
FALLBACK_REPLY = "Let me know which city and budget you'd like me to search."

SYSTEM_PROMPT = " ".join(
    [
        "You are Buscalo, a browser automation specialist focused on real-estate map listings.",
        "Use the search_estate tool to find live apartments.com listings and call display_listings to sync them into the UI tables.",
        "When calling search_estate, pass the city as a lowercase slug with a two-letter state abbreviation "
        "(e.g. 'manhattan-ny', 'jersey-city-nj'). If the user omits the state, infer the most likely U.S. state.",
        "When a search returns nothing, say so plainly and suggest widening the budget or the area.",
        "Keep answers concise (3-4 sentences) and focus on actionable guidance for the user.",
    ]
)


def get_openai_client() -> OpenAI:
    """Create an OpenAI client, raising a helpful error when the key is missing."""
    api_key = os.getenv("OPENAI_API_KEY") or os.getenv("CONVEX_OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is required to run the Buscalo assistant.")
    base_url = os.getenv("OPENAI_BASE_URL") or None
    return OpenAI(api_key=api_key, base_url=base_url)


async def _execute_tool(
    name: str,
    raw_arguments: str,
    thread_id: Optional[str],
    *,
    store: Optional[Store],
    browser_factory: Optional[BrowserFactory],
) -> Any:
    try:
        arguments = json.loads(raw_arguments or "{}")
    except json.JSONDecodeError as exc:
        return {"error": f"Invalid tool arguments: {exc}"}

    try:
        if name == "search_estate":
            return await search_estate(
                SearchEstateArgs.model_validate(arguments),
                thread_id,
                store=store,
                browser_factory=browser_factory,
            )
        if name == "display_listings":
            return await display_listings(DisplayListingsArgs.model_validate(arguments), thread_id, store=store)
    except ValidationError as exc:
        return {"error": f"Invalid tool arguments: {exc.errors(include_url=False)}"}
    return {"error": f"Unknown tool: {name}"}


def _assistant_message(message: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"role": "assistant", "content": message.content or ""}
    if message.tool_calls:
        payload["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.function.name, "arguments": call.function.arguments},
            }
            for call in message.tool_calls
        ]
    return payload


async def run_agent_turn(
    messages: List[Dict[str, Any]],
    thread_id: Optional[str] = None,
    *,
    client: Optional[OpenAI] = None,
    store: Optional[Store] = None,
    browser_factory: Optional[BrowserFactory] = None,
    max_steps: int = MAX_TOOL_STEPS,
) -> str:
    """Run one assistant turn, executing any tool calls the model makes.

    ``messages`` is the chat history without the system prompt. Returns the
    assistant's final text reply.
    """
    client = client or get_openai_client()
    conversation: List[Dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}, *messages]

    for step in range(max_steps):
        timer = start_timer("assistant", DEFAULT_OPENAI_MODEL, conversation_id=thread_id)
        try:
            response = await asyncio.to_thread(
                retry_with_backoff,
                lambda: client.chat.completions.create(
                    model=DEFAULT_OPENAI_MODEL,
                    messages=conversation,
                    tools=TOOLS,
                    tool_choice="auto",
                ),
                retries=OPENAI_MAX_RETRIES,
                label="openai_chat",
            )
        except Exception:
            timer.done(outcome="error")
            raise
        timer.done(outcome="ok")

        message = response.choices[0].message
        conversation.append(_assistant_message(message))
        if not message.tool_calls:
            return message.content or FALLBACK_REPLY

        for call in message.tool_calls:
            logger.info(
                "assistant_tool_call",
                extra={"tool": call.function.name, "step": step + 1, "thread_id": thread_id},
            )
            result = await _execute_tool(
                call.function.name,
                call.function.arguments,
                thread_id,
                store=store,
                browser_factory=browser_factory,
            )
            conversation.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result),
                }
            )

    logger.warning(
        "assistant_step_limit_reached",
        extra={"thread_id": thread_id, "max_steps": max_steps},
    )
    return FALLBACK_REPLY
