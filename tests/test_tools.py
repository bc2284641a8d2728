"""Tests for ToolDispatcher and the search client."""

from __future__ import annotations

import json
from typing import Optional
from unittest.mock import MagicMock, patch

import pytest
import requests

from errors import DEVICE_UNAVAILABLE, UPSTREAM_FAILURE, ToolError
from tools import PerplexitySearchClient, ToolDispatcher, format_search_results


class FakeConfig:
    def __init__(self, search_enabled: bool = False) -> None:
        self.memories: dict[str, str] = {}
        self.search_enabled = search_enabled

    def get_memories(self) -> dict[str, str]:
        return dict(self.memories)

    def manage_memory(self, key: str, value: str) -> Optional[str]:
        previous = self.memories.get(key)
        if value:
            self.memories[key] = value
        else:
            self.memories.pop(key, None)
        return previous

    def is_search_enabled(self) -> bool:
        return self.search_enabled

    def get_stop_phrases(self) -> list[str]:
        return []

    def get_user_prompt(self) -> str:
        return ""


class FakeCamera:
    def __init__(self, connected: bool = True, connects: bool = True, fails: bool = False) -> None:
        self.connected = connected
        self.connects = connects
        self.fails = fails
        self.connect_calls = 0

    def is_connected(self) -> bool:
        return self.connected

    def connect(self) -> None:
        self.connect_calls += 1
        self.connected = self.connects

    def capture_photo(self) -> bytes:
        if self.fails:
            raise ToolError(DEVICE_UNAVAILABLE, "Camera returned no frame")
        return b"\xff\xd8photo"


class FakeSearch:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.queries: list[str] = []

    def search(self, query: str) -> str:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return f"results for {query}"


def _dispatcher(**kwargs) -> ToolDispatcher:  # noqa: ANN003
    kwargs.setdefault("sleep", lambda s: None)
    return ToolDispatcher(kwargs.pop("config", FakeConfig()), **kwargs)


# ---------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------

def test_manifest_without_search() -> None:
    names = [tool["name"] for tool in _dispatcher(search=FakeSearch()).manifest()]
    assert names == ["take_photo", "manage_memory"]


def test_manifest_with_search_enabled() -> None:
    dispatcher = _dispatcher(config=FakeConfig(search_enabled=True), search=FakeSearch())
    names = [tool["name"] for tool in dispatcher.manifest()]
    assert names == ["take_photo", "manage_memory", "search_internet"]


def test_search_is_unknown_when_disabled() -> None:
    result = _dispatcher().dispatch("search_internet", '{"query": "news"}', "c1")
    assert not result.success
    assert result.output == "Error: Unknown function 'search_internet'"


def test_display_text() -> None:
    dispatcher = _dispatcher()
    assert dispatcher.display_text("take_photo") == "📸 Capturing photo..."
    assert dispatcher.display_text("teleport") == "🔧 teleport..."


# ---------------------------------------------------------------
# Unknown tools and bad arguments
# ---------------------------------------------------------------

def test_unknown_tool_returns_error_result() -> None:
    result = _dispatcher().dispatch("teleport", "{}", "c1")
    assert not result.success
    assert result.output == "Error: Unknown function 'teleport'"


def test_malformed_arguments_do_not_raise() -> None:
    result = _dispatcher().dispatch("manage_memory", "{not json", "c1")
    assert not result.success
    assert result.output == "Error: Invalid arguments"


# ---------------------------------------------------------------
# Memory
# ---------------------------------------------------------------

def test_memory_save_update_delete() -> None:
    config = FakeConfig()
    dispatcher = _dispatcher(config=config)

    saved = dispatcher.dispatch("manage_memory", json.dumps({"key": "city", "value": "Lisbon"}), "c1")
    assert saved.output == "Memory 'city' saved: Lisbon"
    updated = dispatcher.dispatch("manage_memory", json.dumps({"key": "city", "value": "Porto"}), "c2")
    assert updated.output == "Memory 'city' updated to: Porto"
    deleted = dispatcher.dispatch("manage_memory", json.dumps({"key": "city", "value": ""}), "c3")
    assert deleted.output == "Memory 'city' deleted."
    assert config.memories == {}


def test_memory_delete_of_unknown_key_is_not_found() -> None:
    result = _dispatcher().dispatch("manage_memory", json.dumps({"key": "pet", "value": ""}), "c1")
    assert result.success
    assert result.output == "Memory 'pet' was not found."


# ---------------------------------------------------------------
# Photo
# ---------------------------------------------------------------

def test_photo_success_carries_image() -> None:
    result = _dispatcher(camera=FakeCamera()).dispatch("take_photo", "{}", "c1")
    assert result.success
    assert result.image_jpeg == b"\xff\xd8photo"
    assert result.output.startswith("Photo captured successfully")


def test_photo_retries_connect_within_wait_window() -> None:
    camera = FakeCamera(connected=False, connects=True)
    waits: list[float] = []
    dispatcher = _dispatcher(camera=camera, sleep=waits.append)

    result = dispatcher.dispatch("take_photo", "{}", "c1")
    assert result.success
    assert camera.connect_calls == 1
    assert waits == [3.0]


def test_photo_unavailable_camera_is_error_result() -> None:
    camera = FakeCamera(connected=False, connects=False)
    result = _dispatcher(camera=camera).dispatch("take_photo", "{}", "c1")
    assert not result.success
    assert result.output.startswith("Failed to capture photo:")
    assert result.image_jpeg is None


def test_photo_without_camera_is_error_result() -> None:
    result = _dispatcher().dispatch("take_photo", "{}", "c1")
    assert not result.success
    assert result.output == "Failed to capture photo: No camera is configured."


def test_photo_capture_failure_is_error_result() -> None:
    result = _dispatcher(camera=FakeCamera(fails=True)).dispatch("take_photo", "{}", "c1")
    assert result.output == "Failed to capture photo: Camera returned no frame"


# ---------------------------------------------------------------
# Search
# ---------------------------------------------------------------

def test_search_delegates_trimmed_query() -> None:
    search = FakeSearch()
    dispatcher = _dispatcher(config=FakeConfig(search_enabled=True), search=search)
    result = dispatcher.dispatch("search_internet", '{"query": "  weather in Oslo "}', "c1")
    assert result.output == "results for weather in Oslo"
    assert search.queries == ["weather in Oslo"]


def test_search_argument_errors() -> None:
    dispatcher = _dispatcher(config=FakeConfig(search_enabled=True), search=FakeSearch())
    missing = dispatcher.dispatch("search_internet", "{}", "c1")
    empty = dispatcher.dispatch("search_internet", '{"query": "   "}', "c2")
    assert missing.output == "Error: Invalid arguments - missing query"
    assert empty.output == "Error: Empty search query"


def test_search_without_client_raises_upstream_failure() -> None:
    dispatcher = _dispatcher(config=FakeConfig(search_enabled=True))
    with pytest.raises(ToolError) as excinfo:
        dispatcher._search_internet({"query": "news"})
    assert excinfo.value.code == UPSTREAM_FAILURE


def test_search_upstream_failure_is_error_result() -> None:
    search = FakeSearch(error=ToolError(UPSTREAM_FAILURE, "Search API error (500): boom"))
    dispatcher = _dispatcher(config=FakeConfig(search_enabled=True), search=search)
    result = dispatcher.dispatch("search_internet", '{"query": "x"}', "c1")
    assert result.output == "Search failed: Search API error (500): boom"


def test_format_search_results() -> None:
    text = format_search_results(
        "oslo",
        [{"title": "Oslo weather", "snippet": "Rain", "url": "https://example.com", "date": "2026-01-02"}],
    )
    assert text.splitlines() == [
        "Search results for: oslo",
        "",
        "[1] Oslo weather",
        "Date: 2026-01-02",
        "Rain",
        "Source: https://example.com",
    ]
    assert format_search_results("oslo", []) == "No search results found for: oslo"


@patch("tools.requests.post")
def test_perplexity_client_posts_query(mock_post: MagicMock) -> None:
    mock_post.return_value = MagicMock(status_code=200)
    mock_post.return_value.json.return_value = {"results": [{"title": "T", "snippet": "S", "url": "U"}]}
    client = PerplexitySearchClient(api_key_provider=lambda: "pplx-key")

    text = client.search("latest news")

    assert "[1] T" in text
    args, kwargs = mock_post.call_args
    assert args[0] == "https://api.perplexity.ai/search"
    assert kwargs["headers"]["Authorization"] == "Bearer pplx-key"
    assert kwargs["json"]["query"] == "latest news"
    assert kwargs["json"]["max_results"] == 5


@patch("tools.requests.post")
def test_perplexity_client_http_error(mock_post: MagicMock) -> None:
    mock_post.return_value = MagicMock(status_code=401, text="unauthorized")
    client = PerplexitySearchClient(api_key_provider=lambda: "bad")
    with pytest.raises(ToolError) as excinfo:
        client.search("q")
    assert excinfo.value.code == UPSTREAM_FAILURE
    assert "401" in excinfo.value.detail


@patch("tools.requests.post", side_effect=requests.ConnectionError("offline"))
def test_perplexity_client_network_error(mock_post: MagicMock) -> None:
    client = PerplexitySearchClient(api_key_provider=lambda: "k")
    with pytest.raises(ToolError) as excinfo:
        client.search("q")
    assert excinfo.value.code == UPSTREAM_FAILURE
