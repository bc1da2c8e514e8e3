"""
SearXNG Web Search Tool

Provides web search capabilities via a SearXNG instance. HTTP failures are
classified so the Retry Governor retries timeouts, connection errors, 5xx
responses and rate limiting, and fails fast on everything else.
"""

import logging
from typing import Optional

import requests

from ..errors import ToolExecutionError
from ..models import SearxngConfig
from .registry import ToolDefinition

logger = logging.getLogger(__name__)

INPUT_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "minLength": 1, "description": "search query"},
        "categories": {
            "type": "string",
            "description": "optional category (general, images, news)",
        },
        "num_results": {
            "type": "integer",
            "minimum": 1,
            "maximum": 20,
            "description": "max results to return (default 5)",
        },
    },
    "required": ["query"],
    "additionalProperties": False,
}


def search(
    query: str,
    config: SearxngConfig,
    categories: Optional[str] = None,
    num_results: int = 5,
) -> dict:
    """
    Search the web using SearXNG.

    Returns:
        Dictionary with the query and a list of results.

    Raises:
        ToolExecutionError: Classified as timeout, transient, backpressure
            or permanent depending on the HTTP failure.
    """
    params = {"q": query, "format": "json"}
    if categories:
        params["categories"] = categories

    try:
        response = requests.get(config.url, params=params, timeout=config.timeout)
    except requests.exceptions.Timeout as e:
        raise ToolExecutionError.timeout(f"Search timed out: {e}") from e
    except requests.exceptions.ConnectionError as e:
        raise ToolExecutionError.transient(f"Search endpoint unreachable: {e}") from e
    except requests.exceptions.RequestException as e:
        raise ToolExecutionError(f"Search request failed: {e}") from e

    status = response.status_code
    if status == 429:
        raise ToolExecutionError.backpressure("Search endpoint is rate limiting (429)")
    if status >= 500:
        raise ToolExecutionError.transient(f"Search endpoint error ({status})")
    if status >= 400:
        raise ToolExecutionError(f"Search request rejected ({status})")

    try:
        data = response.json()
    except ValueError as e:
        raise ToolExecutionError(f"Search returned invalid JSON: {e}") from e

    results = [
        {
            "title": item.get("title", ""),
            "url": item.get("url", ""),
            "content": item.get("content", ""),
            "engine": item.get("engine", ""),
        }
        for item in data.get("results", [])[:num_results]
    ]
    logger.debug("Search for '%s' returned %d results", query, len(results))
    return {"query": query, "results": results, "total": len(results)}


def web_search_tool(config: Optional[SearxngConfig] = None) -> ToolDefinition:
    searxng = config or SearxngConfig()

    def handle(arguments: dict) -> dict:
        return search(
            query=arguments["query"],
            config=searxng,
            categories=arguments.get("categories"),
            num_results=arguments.get("num_results", 5),
        )

    return ToolDefinition(
        name="web_search",
        description="Search the web for current information",
        input_schema=INPUT_SCHEMA,
        handler=handle,
    )
