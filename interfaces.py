"""Protocol interfaces used by RealtimeSessionEngine."""

from __future__ import annotations

from concurrent.futures import Future
from typing import Callable, Iterator, Optional, Protocol, Sequence

from models import AudioFrame, Message, ToolResult


class AudioTransport(Protocol):
    def start_capture(self, on_frame: Callable[[AudioFrame], None]) -> None: ...

    def stop_capture(self) -> None: ...

    def enqueue_playback(self, pcm16_bytes: bytes) -> Future: ...

    def stop_playback(self) -> None: ...

    def teardown(self) -> None: ...


class TonePlayer(Protocol):
    def play_ready(self) -> None: ...

    def play_tool_call(self) -> None: ...

    def play_disconnect(self) -> None: ...


class WireConnection(Protocol):
    def send(self, event: dict) -> bool: ...

    def receive(self) -> Iterator[dict]: ...

    def close(self) -> None: ...


class WireConnector(Protocol):
    def open(self) -> WireConnection: ...


class IntentClassifier(Protocol):
    def classify(self, utterance: str, recent_context: Sequence[str]) -> bool: ...


class ToolDispatcher(Protocol):
    def manifest(self) -> list[dict]: ...

    def display_text(self, name: str) -> str: ...

    def dispatch(self, name: str, arguments_json: str, call_id: str) -> ToolResult: ...


class ThreadStore(Protocol):
    def create_thread(self) -> str: ...

    def resume_thread(self, thread_id: str) -> Optional[list[Message]]: ...

    def save_messages(self, messages: Sequence[Message]) -> None: ...

    def finalize_thread(self) -> None: ...

    def history_context(self) -> str: ...


class Camera(Protocol):
    def is_connected(self) -> bool: ...

    def connect(self) -> None: ...

    def capture_photo(self) -> bytes: ...


class SearchClient(Protocol):
    def search(self, query: str) -> str: ...


class ConfigStore(Protocol):
    def get_memories(self) -> dict[str, str]: ...

    def manage_memory(self, key: str, value: str) -> Optional[str]: ...

    def is_search_enabled(self) -> bool: ...

    def get_stop_phrases(self) -> list[str]: ...

    def get_trigger_phrases(self) -> list[str]: ...

    def get_user_prompt(self) -> str: ...


class LocationProvider(Protocol):
    def describe(self) -> Optional[str]: ...
