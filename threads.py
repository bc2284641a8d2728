"""JSON-file store of conversation threads."""

from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Sequence

from models import PLACEHOLDER_TEXT, Message

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50


class JsonThreadStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "glasses_voice" / "threads.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._active_id: Optional[str] = None

    @property
    def active_thread_id(self) -> Optional[str]:
        return self._active_id

    def list_threads(self) -> list[dict]:
        threads = self._read_all()
        return sorted(threads, key=lambda t: t.get("updated_at", 0), reverse=True)

    def create_thread(self) -> str:
        now = time.time()
        thread = {
            "id": uuid.uuid4().hex,
            "created_at": now,
            "updated_at": now,
            "title": datetime.fromtimestamp(now).strftime("Conversation %b %d, %H:%M"),
            "messages": [],
        }
        threads = self._read_all()
        threads.append(thread)
        self._write_all(threads)
        self._active_id = thread["id"]
        logger.info("Created thread %s", thread["id"])
        return thread["id"]

    def resume_thread(self, thread_id: str) -> Optional[list[Message]]:
        for thread in self._read_all():
            if thread.get("id") == thread_id:
                self._active_id = thread_id
                messages = [Message.from_dict(m) for m in thread.get("messages", [])]
                logger.info("Resuming thread %s with %d messages", thread_id, len(messages))
                return messages
        logger.warning("Thread %s not found", thread_id)
        return None

    def save_messages(self, messages: Sequence[Message]) -> None:
        if self._active_id is None:
            return
        threads = self._read_all()
        for thread in threads:
            if thread.get("id") == self._active_id:
                thread["messages"] = [m.to_dict() for m in messages if m.text != PLACEHOLDER_TEXT]
                thread["updated_at"] = time.time()
                self._write_all(threads)
                return
        logger.warning("Active thread %s missing from store", self._active_id)

    def finalize_thread(self) -> None:
        """Title the active thread from its first user message; drop it if empty."""
        thread_id = self._active_id
        self._active_id = None
        if thread_id is None:
            return
        threads = self._read_all()
        remaining = []
        for thread in threads:
            if thread.get("id") != thread_id:
                remaining.append(thread)
                continue
            messages = thread.get("messages", [])
            if not messages:
                logger.info("Dropping empty thread %s", thread_id)
                continue
            first_user = next((m for m in messages if m.get("role") == "user"), None)
            if first_user:
                text = str(first_user.get("text", "")).strip()
                if len(text) > TITLE_MAX_CHARS:
                    text = text[: TITLE_MAX_CHARS - 3] + "..."
                if text:
                    thread["title"] = text
            remaining.append(thread)
        self._write_all(remaining)

    def history_context(self) -> str:
        threads = self._read_all()
        if not threads:
            return ""
        start_of_today = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
        today = start_of_today.timestamp()
        week = (start_of_today - timedelta(days=7)).timestamp()
        month = (start_of_today - timedelta(days=30)).timestamp()

        def count_since(ts: float) -> int:
            return sum(1 for t in threads if t.get("updated_at", 0) >= ts)

        return (
            "\n\n# Conversation History Stats"
            f"\n- Today: {count_since(today)} conversations"
            f"\n- Last 7 days: {count_since(week)} conversations"
            f"\n- Last 30 days: {count_since(month)} conversations"
            f"\n- Total: {len(threads)} conversations"
        )

    def _read_all(self) -> list[dict]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return []
        return data if isinstance(data, list) else []

    def _write_all(self, threads: list[dict]) -> None:
        self._path.write_text(json.dumps(threads, ensure_ascii=False, indent=2), encoding="utf-8")
