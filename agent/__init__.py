"""
Buscalo chat assistant.

Wraps the extraction workflow in two tools the model can call and runs one
tool-calling chat turn at a time.
"""

from .assistant import run_agent_turn
from .tools import SearchEstateArgs, display_listings, search_estate

__all__ = ["run_agent_turn", "SearchEstateArgs", "display_listings", "search_estate"]
