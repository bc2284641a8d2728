"""Simple JSON-based config store: keys, feature flags and user memories."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from intent_classifier import DEFAULT_TRIGGER_PHRASES

logger = logging.getLogger(__name__)

DEFAULT_STOP_PHRASES = ("stop session",)


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "glasses_voice" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def get_api_key(self) -> str:
        return str(self._read_all().get("api_key", "")) or os.getenv("OPENAI_API_KEY", "")

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_classifier_api_key(self) -> str:
        return str(self._read_all().get("classifier_api_key", "")) or os.getenv("DASHSCOPE_API_KEY", "")

    def get_classifier_model(self) -> str:
        return str(self._read_all().get("classifier_model", "qwen-turbo"))

    def get_search_api_key(self) -> str:
        return str(self._read_all().get("search_api_key", ""))

    def set_search_api_key(self, key: str) -> None:
        self._set("search_api_key", key)

    def is_search_enabled(self) -> bool:
        return bool(self.get_search_api_key().strip())

    def get_realtime_url(self) -> str:
        return str(self._read_all().get("realtime_url", "wss://api.openai.com/v1/realtime"))

    def get_realtime_model(self) -> str:
        return str(self._read_all().get("realtime_model", "gpt-4o-realtime-preview"))

    def get_voice(self) -> str:
        return str(self._read_all().get("voice", "alloy"))

    def get_user_prompt(self) -> str:
        return str(self._read_all().get("user_prompt", ""))

    def get_location(self) -> str:
        return str(self._read_all().get("location", ""))

    def get_trigger_phrases(self) -> list[str]:
        return self._string_list("trigger_phrases", DEFAULT_TRIGGER_PHRASES)

    def get_stop_phrases(self) -> list[str]:
        return self._string_list("stop_phrases", DEFAULT_STOP_PHRASES)

    def get_hotkey(self) -> str:
        return str(self._read_all().get("force_hotkey", "Key.alt_r"))

    def get_mute_hotkey(self) -> str:
        return str(self._read_all().get("mute_hotkey", "Key.f9"))

    def get_reconnect_hotkey(self) -> str:
        return str(self._read_all().get("reconnect_hotkey", "Key.f8"))

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def get_memories(self) -> dict[str, str]:
        memories = self._read_all().get("memories", {})
        if not isinstance(memories, dict):
            return {}
        return {str(k): str(v) for k, v in memories.items()}

    def manage_memory(self, key: str, value: str) -> Optional[str]:
        """Add, update or (with an empty value) delete a memory.

        Returns the previous value, or None if the key did not exist.
        """
        key = key.strip()
        value = value.strip()
        if not key:
            logger.warning("Attempted to manage memory with empty key")
            return None
        data = self._read_all()
        memories = data.get("memories")
        if not isinstance(memories, dict):
            memories = {}
        previous = memories.get(key)
        if value:
            memories[key] = value
        else:
            memories.pop(key, None)
        data["memories"] = memories
        self._write_all(data)
        return None if previous is None else str(previous)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _string_list(self, key: str, default: tuple[str, ...]) -> list[str]:
        value = self._read_all().get(key)
        if not isinstance(value, list):
            return list(default)
        return [str(item) for item in value if str(item).strip()]

    def _set(self, key: str, value: object) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


class ConfigLocation:
    """Location collaborator backed by a free-form string in the config."""

    def __init__(self, store: JsonConfigStore) -> None:
        self._store = store

    def describe(self) -> Optional[str]:
        return self._store.get_location().strip() or None
