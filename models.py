"""Core data models for the voice session engine."""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

WIRE_SAMPLE_RATE = 24000
WIRE_CHANNELS = 1
WIRE_SAMPLE_WIDTH = 2

PLACEHOLDER_TEXT = "..."
INTERRUPTED_SUFFIX = "..."


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class VoiceState(str, Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    PROCESSING = "PROCESSING"
    SPEAKING = "SPEAKING"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = WIRE_SAMPLE_RATE
    channels: int = WIRE_CHANNELS
    timestamp_ms: int = 0
    level: float = 0.0


@dataclass
class Message:
    role: Role
    text: str
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_user(self) -> bool:
        return self.role == Role.USER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Message":
        return cls(
            role=Role(d.get("role", Role.USER.value)),
            text=str(d.get("text", "")),
            timestamp=float(d.get("timestamp", time.time())),
            id=str(d.get("id") or uuid.uuid4().hex),
        )


@dataclass
class PendingFunctionCall:
    call_id: str
    name: str
    message_id: Optional[str] = None


@dataclass
class ToolResult:
    output: str
    status: str
    image_jpeg: Optional[bytes] = None
    success: bool = True


@dataclass
class SessionSettings:
    model: str = "gpt-4o-realtime-preview"
    voice: str = "alloy"
    sample_rate: int = WIRE_SAMPLE_RATE
    audio_format: str = "pcm16"
    transcription_model: str = "whisper-1"
    vad_threshold: float = 0.8
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 2000
    create_response: bool = False
    connect_timeout_s: float = 10.0
    recent_transcripts: int = 5


class RecentTranscripts:
    """Bounded window of the latest user utterances, oldest evicted first."""

    def __init__(self, maxlen: int = 5) -> None:
        self._items: deque[str] = deque(maxlen=maxlen)

    def append(self, text: str) -> None:
        self._items.append(text)

    def clear(self) -> None:
        self._items.clear()

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def as_context(self) -> str:
        return "\n".join(self._items)


def messages_to_dicts(messages: Iterable[Message]) -> list[dict]:
    return [m.to_dict() for m in messages]
