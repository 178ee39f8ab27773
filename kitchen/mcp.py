"""
MCP stdio server for kitchen: read-only recipe tools for AI agents.

Exposes recipe lookup and hybrid search as MCP tools so coding agents can
find and follow stored procedures before starting a task.

Usage:
    kitchen mcp                                # stdio server (via CLI)
    claude mcp add kitchen -- kitchen mcp      # Claude Code integration

All Kitchen calls are serialized through a single asyncio.Lock.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import Kitchen
from .errors import KitchenError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "Neural Kitchen",
    instructions=(
        "This provides a list of reusable tasks and procedures also known as "
        "cookbooks or recipes for use in determining next steps on a task and "
        "prescriptive instructions.\n\n"
        "Each recipe is a list of steps to complete a task, written in markdown.\n\n"
        "Before starting a task, search for an existing recipe with "
        "search_recipes. When you know the recipe you want, read it with "
        "get_recipe and follow it."
    ),
)

_kitchen: Optional[Kitchen] = None
_lock = asyncio.Lock()


def _get_kitchen() -> Kitchen:
    """Lazy-init Kitchen with default config (respects KITCHEN_STORE_PATH env).

    Must be called inside ``async with _lock``.
    """
    global _kitchen
    if _kitchen is None:
        import os
        store_path = os.environ.get("KITCHEN_STORE_PATH")
        _kitchen = Kitchen(store_path=Path(store_path) if store_path else None)
    return _kitchen


_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description="Get a single recipe by ID or shortId with full content",
    annotations=_READ_ONLY,
)
async def get_recipe(
    identifier: Annotated[str, Field(
        description="Recipe ID or shortId to retrieve",
    )],
) -> str:
    """Return the current version of a recipe as markdown."""
    async with _lock:
        try:
            recipe = _get_kitchen().get_recipe(identifier)
        except KitchenError as e:
            logger.warning("get_recipe failed: %s", e)
            return f"Error retrieving recipe: {e}"

    if recipe is None or recipe.current_version is None:
        return f"Recipe not found: {identifier}"
    version = recipe.current_version
    return f"# {version.title}\n\n{version.content}"


@mcp.tool(
    description="Search recipes using semantic and text search with AI summaries",
    annotations=_READ_ONLY,
)
async def search_recipes(
    query: Annotated[str, Field(
        description="Search query to find relevant recipes",
    )],
    projects: Annotated[Optional[list[str]], Field(
        description="Only recipes in these projects (project short ids).",
    )] = None,
    limit: Annotated[int, Field(
        description="Maximum number of results.",
        ge=1, le=50,
    )] = 10,
) -> str:
    """Hybrid search; returns summaries with get_recipe hints."""
    async with _lock:
        try:
            results = _get_kitchen().search(query, limit=limit, project_ids=projects)
        except KitchenError as e:
            logger.warning("search_recipes failed: %s", e)
            return f"Error searching recipes: {e}"

    if not results:
        return f'No recipes found for query: "{query}"'

    formatted = []
    for i, result in enumerate(results, 1):
        summary = result.summary or "No summary available"
        formatted.append(
            f"{i}. **{result.title}** (ID: {result.short_id})\n"
            f"   Summary: {summary}\n"
            f"\n"
            f'   *This is a short summary. Use get_recipe with ID "{result.short_id}" '
            f"to get the full content.*"
        )
    return f'Found {len(results)} recipe(s) for "{query}":\n\n' + "\n\n".join(formatted)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    import os
    import signal
    # anyio's stdin reader shields the blocking readline from task
    # cancellation, so the first Ctrl+C cannot take effect; exit directly.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
