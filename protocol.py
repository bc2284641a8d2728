"""Realtime wire protocol: typed inbound events and outbound event builders.

Inbound JSON objects are parsed exactly once into one of the event classes
below. Anything the engine does not act on becomes ``UnknownEvent``.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Iterable, Union

from models import Message, Role, SessionSettings


@dataclass(frozen=True)
class SessionCreated:
    session_id: str = ""


@dataclass(frozen=True)
class SessionUpdated:
    pass


@dataclass(frozen=True)
class ResponseCreated:
    response_id: str = ""


@dataclass(frozen=True)
class AudioDelta:
    audio: bytes


@dataclass(frozen=True)
class AudioDone:
    pass


@dataclass(frozen=True)
class TranscriptDelta:
    delta: str


@dataclass(frozen=True)
class TranscriptDone:
    transcript: str


@dataclass(frozen=True)
class InputTranscriptionCompleted:
    transcript: str
    item_id: str = ""


@dataclass(frozen=True)
class SpeechStarted:
    pass


@dataclass(frozen=True)
class SpeechStopped:
    pass


@dataclass(frozen=True)
class BufferCommitted:
    pass


@dataclass(frozen=True)
class ResponseDone:
    pass


@dataclass(frozen=True)
class FunctionCallAdded:
    call_id: str
    name: str


@dataclass(frozen=True)
class FunctionCallArgumentsDone:
    call_id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class ServerError:
    message: str
    code: str = ""


@dataclass(frozen=True)
class UnknownEvent:
    type: str


ServerEvent = Union[
    SessionCreated,
    SessionUpdated,
    ResponseCreated,
    AudioDelta,
    AudioDone,
    TranscriptDelta,
    TranscriptDone,
    InputTranscriptionCompleted,
    SpeechStarted,
    SpeechStopped,
    BufferCommitted,
    ResponseDone,
    FunctionCallAdded,
    FunctionCallArgumentsDone,
    ServerError,
    UnknownEvent,
]


def parse_server_event(data: Any) -> ServerEvent:  # noqa: C901
    """Map one decoded JSON object onto its event variant."""
    if not isinstance(data, dict):
        return UnknownEvent(type="")
    event_type = str(data.get("type", ""))

    if event_type == "session.created":
        session = data.get("session") or {}
        return SessionCreated(session_id=str(session.get("id", "")))
    if event_type == "session.updated":
        return SessionUpdated()
    if event_type == "response.created":
        response = data.get("response") or {}
        return ResponseCreated(response_id=str(response.get("id", "")))
    if event_type in ("response.audio.delta", "response.output_audio.delta"):
        try:
            audio = base64.b64decode(data.get("delta") or "", validate=True)
        except (binascii.Error, ValueError):
            return UnknownEvent(type=event_type)
        return AudioDelta(audio=audio)
    if event_type in ("response.audio.done", "response.output_audio.done"):
        return AudioDone()
    if event_type in ("response.audio_transcript.delta", "response.output_audio_transcript.delta"):
        return TranscriptDelta(delta=str(data.get("delta", "")))
    if event_type in ("response.audio_transcript.done", "response.output_audio_transcript.done"):
        return TranscriptDone(transcript=str(data.get("transcript", "")))
    if event_type == "conversation.item.input_audio_transcription.completed":
        return InputTranscriptionCompleted(
            transcript=str(data.get("transcript", "")),
            item_id=str(data.get("item_id", "")),
        )
    if event_type == "input_audio_buffer.speech_started":
        return SpeechStarted()
    if event_type == "input_audio_buffer.speech_stopped":
        return SpeechStopped()
    if event_type == "input_audio_buffer.committed":
        return BufferCommitted()
    if event_type == "response.done":
        return ResponseDone()
    if event_type == "response.output_item.added":
        item = data.get("item") or {}
        if item.get("type") == "function_call" and item.get("call_id") and item.get("name"):
            return FunctionCallAdded(call_id=str(item["call_id"]), name=str(item["name"]))
        return UnknownEvent(type=event_type)
    if event_type == "response.function_call_arguments.done":
        call_id = data.get("call_id")
        name = data.get("name")
        if not call_id or not name:
            return UnknownEvent(type=event_type)
        return FunctionCallArgumentsDone(
            call_id=str(call_id),
            name=str(name),
            arguments=str(data.get("arguments") or "{}"),
        )
    if event_type == "error":
        error = data.get("error")
        if isinstance(error, dict):
            return ServerError(message=str(error.get("message", "")), code=str(error.get("code") or ""))
        return ServerError(message=str(error or ""))
    return UnknownEvent(type=event_type)


# ----------------------------------------------------------------------
# Outbound events
# ----------------------------------------------------------------------

def session_update(settings: SessionSettings, instructions: str, tools: list[dict]) -> dict:
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text", "audio"],
            "instructions": instructions,
            "voice": settings.voice,
            "input_audio_format": settings.audio_format,
            "output_audio_format": settings.audio_format,
            "input_audio_transcription": {"model": settings.transcription_model},
            "turn_detection": {
                "type": "server_vad",
                "threshold": settings.vad_threshold,
                "prefix_padding_ms": settings.prefix_padding_ms,
                "silence_duration_ms": settings.silence_duration_ms,
                "create_response": settings.create_response,
            },
            "tools": tools,
        },
    }


def instructions_update(instructions: str) -> dict:
    return {"type": "session.update", "session": {"instructions": instructions}}


def audio_append(pcm16: bytes) -> dict:
    return {
        "type": "input_audio_buffer.append",
        "audio": base64.b64encode(pcm16).decode("ascii"),
    }


def audio_commit() -> dict:
    return {"type": "input_audio_buffer.commit"}


def response_create() -> dict:
    return {"type": "response.create"}


def response_cancel() -> dict:
    return {"type": "response.cancel"}


def history_item(message: Message) -> dict:
    # user items carry "input_text", assistant items carry "text"
    content_type = "input_text" if message.role == Role.USER else "text"
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": message.role.value,
            "content": [{"type": content_type, "text": message.text}],
        },
    }


def history_items(messages: Iterable[Message]) -> list[dict]:
    return [history_item(m) for m in messages]


def function_call_output(call_id: str, output: str) -> dict:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": output,
        },
    }


def image_item(jpeg_bytes: bytes) -> dict:
    data_uri = "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode("ascii")
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_image", "image_url": data_uri}],
        },
    }
