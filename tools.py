"""Function tools the assistant can call, and their dispatcher."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

from errors import (
    DEVICE_UNAVAILABLE,
    INVALID_ARGUMENTS,
    UPSTREAM_FAILURE,
    ToolError,
)
from interfaces import Camera, ConfigStore, SearchClient
from models import ToolResult

try:
    import requests
except Exception:  # pragma: no cover
    requests = None  # type: ignore

logger = logging.getLogger(__name__)

TAKE_PHOTO = "take_photo"
MANAGE_MEMORY = "manage_memory"
SEARCH_INTERNET = "search_internet"

PERPLEXITY_SEARCH_URL = "https://api.perplexity.ai/search"

TAKE_PHOTO_TOOL = {
    "type": "function",
    "name": TAKE_PHOTO,
    "description": (
        "Capture a photo from the user's smart glasses camera. Use this when the user asks about "
        "what they are seeing, looking at, or wants visual information about their surroundings. "
        "Examples: 'What am I looking at?', 'What's in front of me?', 'Describe what you see'."
    ),
    "parameters": {"type": "object", "properties": {}, "required": []},
}

MANAGE_MEMORY_TOOL = {
    "type": "function",
    "name": MANAGE_MEMORY,
    "description": (
        "Store or update a memory about the user. Use when user shares personal info, preferences, "
        "or asks to remember something. Pass empty value to delete a memory."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "key": {
                "type": "string",
                "description": "Memory identifier in snake_case (e.g. 'user_name', 'favorite_food')",
            },
            "value": {
                "type": "string",
                "description": "Value to store. Pass empty string to delete the memory.",
            },
        },
        "required": ["key", "value"],
    },
}

SEARCH_INTERNET_TOOL = {
    "type": "function",
    "name": SEARCH_INTERNET,
    "description": (
        "Search the internet for real-time information. Use when user asks about current events, "
        "news, weather, prices, sports scores, stock prices, or any question requiring up-to-date "
        "information from the web."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query in natural language, one sentence",
            },
        },
        "required": ["query"],
    },
}

_DISPLAY_TEXT = {
    TAKE_PHOTO: "📸 Capturing photo...",
    MANAGE_MEMORY: "🧠 Managing memory...",
    SEARCH_INTERNET: "🔍 Searching the web...",
}


class PerplexitySearchClient:
    def __init__(
        self,
        api_key_provider: Callable[[], str],
        url: str = PERPLEXITY_SEARCH_URL,
        timeout_s: float = 15.0,
        max_results: int = 5,
    ) -> None:
        self._api_key_provider = api_key_provider
        self._url = url
        self._timeout_s = timeout_s
        self._max_results = max_results

    def search(self, query: str) -> str:
        if requests is None:
            raise ToolError(UPSTREAM_FAILURE, "requests is not installed")
        try:
            response = requests.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key_provider()}"},
                json={"query": query, "max_results": self._max_results, "max_tokens_per_page": 1024},
                timeout=self._timeout_s,
            )
        except requests.RequestException as exc:
            raise ToolError(UPSTREAM_FAILURE, str(exc)) from exc
        if response.status_code != 200:
            raise ToolError(
                UPSTREAM_FAILURE,
                f"Search API error ({response.status_code}): {response.text[:200]}",
            )
        try:
            results = response.json()["results"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ToolError(UPSTREAM_FAILURE, "Invalid search response format") from exc
        return format_search_results(query, results)


def format_search_results(query: str, results: list) -> str:
    if not results:
        return f"No search results found for: {query}"
    lines = [f"Search results for: {query}", ""]
    for index, result in enumerate(results, start=1):
        lines.append(f"[{index}] {result.get('title') or 'No title'}")
        if result.get("date"):
            lines.append(f"Date: {result['date']}")
        lines.append(str(result.get("snippet") or "No content"))
        lines.append(f"Source: {result.get('url', '')}")
        lines.append("")
    return "\n".join(lines)


class ToolDispatcher:
    """Resolves named function calls into side effects and a result text.

    ``dispatch`` never raises: every failure becomes an error result so the
    caller can always answer the pending call.
    """

    def __init__(
        self,
        config: ConfigStore,
        camera: Optional[Camera] = None,
        search: Optional[SearchClient] = None,
        camera_connect_wait_s: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._camera = camera
        self._search = search
        self._camera_connect_wait_s = camera_connect_wait_s
        self._sleep = sleep

    def search_enabled(self) -> bool:
        return self._search is not None and self._config.is_search_enabled()

    def manifest(self) -> list[dict]:
        tools = [TAKE_PHOTO_TOOL, MANAGE_MEMORY_TOOL]
        if self.search_enabled():
            tools.append(SEARCH_INTERNET_TOOL)
        return tools

    def display_text(self, name: str) -> str:
        return _DISPLAY_TEXT.get(name, f"🔧 {name}...")

    def dispatch(self, name: str, arguments_json: str, call_id: str) -> ToolResult:
        logger.info("Dispatching tool %s (call %s)", name, call_id)
        try:
            if name == TAKE_PHOTO:
                return self._take_photo()
            if name == MANAGE_MEMORY:
                return self._manage_memory(self._parse_arguments(arguments_json))
            if name == SEARCH_INTERNET and self.search_enabled():
                return self._search_internet(self._parse_arguments(arguments_json))
        except ToolError as exc:
            logger.error("Tool %s failed: %s", name, exc)
            return self._failure(name, exc)
        except Exception as exc:
            logger.exception("Tool %s crashed", name)
            return self._failure(name, ToolError(UPSTREAM_FAILURE, str(exc)))
        logger.warning("Unknown function: %s", name)
        return ToolResult(
            output=f"Error: Unknown function '{name}'",
            status=f"🔧 Unknown tool: {name}",
            success=False,
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _take_photo(self) -> ToolResult:
        camera = self._camera
        if camera is None:
            raise ToolError(DEVICE_UNAVAILABLE, "No camera is configured.")
        if not camera.is_connected():
            logger.info("Camera not connected, attempting to connect...")
            camera.connect()
            self._sleep(self._camera_connect_wait_s)
            if not camera.is_connected():
                raise ToolError(
                    DEVICE_UNAVAILABLE,
                    "Could not connect to the camera. Make sure it is nearby and powered on.",
                )
        image = camera.capture_photo()
        logger.info("Photo captured (%d bytes)", len(image))
        return ToolResult(
            output="Photo captured successfully. I can now see what the user is looking at.",
            status="📸 Photo captured",
            image_jpeg=image,
        )

    def _manage_memory(self, args: dict) -> ToolResult:
        key = args.get("key")
        if not isinstance(key, str) or not key.strip():
            raise ToolError(INVALID_ARGUMENTS, "Invalid arguments")
        key = key.strip()
        value = str(args.get("value") or "").strip()

        previous = self._config.manage_memory(key, value)
        if not value:
            if previous is not None:
                return ToolResult(output=f"Memory '{key}' deleted.", status=f"🧠 Deleted: {key}")
            return ToolResult(output=f"Memory '{key}' was not found.", status=f"🧠 Not found: {key}")
        if previous is not None:
            return ToolResult(output=f"Memory '{key}' updated to: {value}", status=f"🧠 Updated: {key}")
        return ToolResult(output=f"Memory '{key}' saved: {value}", status=f"🧠 Saved: {key}")

    def _search_internet(self, args: dict) -> ToolResult:
        query = args.get("query")
        if not isinstance(query, str):
            raise ToolError(INVALID_ARGUMENTS, "Invalid arguments - missing query")
        query = query.strip()
        if not query:
            raise ToolError(INVALID_ARGUMENTS, "Empty search query")
        if self._search is None:
            raise ToolError(UPSTREAM_FAILURE, "Search is not configured")
        results = self._search.search(query)
        return ToolResult(output=results, status="🔍 Found results")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_arguments(arguments_json: str) -> dict:
        try:
            args = json.loads(arguments_json or "{}")
        except ValueError as exc:
            raise ToolError(INVALID_ARGUMENTS, "Invalid arguments") from exc
        if not isinstance(args, dict):
            raise ToolError(INVALID_ARGUMENTS, "Invalid arguments")
        return args

    @staticmethod
    def _failure(name: str, exc: ToolError) -> ToolResult:
        detail = exc.detail or str(exc)
        if name == TAKE_PHOTO:
            return ToolResult(output=f"Failed to capture photo: {detail}", status="📸 Photo capture failed", success=False)
        if name == MANAGE_MEMORY:
            return ToolResult(output=f"Error: {detail}", status="🧠 Memory error", success=False)
        if name == SEARCH_INTERNET:
            prefix = "Error" if exc.code == INVALID_ARGUMENTS else "Search failed"
            return ToolResult(output=f"{prefix}: {detail}", status="🔍 Search failed", success=False)
        return ToolResult(output=f"Error: {detail}", status=f"🔧 {name} failed", success=False)
