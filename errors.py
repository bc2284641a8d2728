"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

# Connection failures
AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
ACCESS_FORBIDDEN = "ACCESS_FORBIDDEN"
RATE_LIMITED = "RATE_LIMITED"
TIMEOUT = "TIMEOUT"
CONNECTION_LOST = "CONNECTION_LOST"
UNKNOWN = "UNKNOWN"

# Session failures
AUDIO_SETUP_FAILED = "AUDIO_SETUP_FAILED"
PROTOCOL_ERROR = "PROTOCOL_ERROR"

# Tool failures
DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
INVALID_ARGUMENTS = "INVALID_ARGUMENTS"
UPSTREAM_FAILURE = "UPSTREAM_FAILURE"

ERROR_MESSAGES = {
    AUTHENTICATION_FAILED: "Invalid API key. Check the realtime API key in your config.",
    ACCESS_FORBIDDEN: "API key doesn't have Realtime API access.",
    RATE_LIMITED: "Rate limit exceeded. Please wait and try again.",
    TIMEOUT: "Connection timed out. Check your API key and network connection.",
    CONNECTION_LOST: "Connection lost. Check your network and reconnect.",
    UNKNOWN: "Connection failed unexpectedly, please retry.",
    AUDIO_SETUP_FAILED: "Audio device could not be started.",
    PROTOCOL_ERROR: "The assistant reported an error.",
    DEVICE_UNAVAILABLE: "Camera is not available.",
    INVALID_ARGUMENTS: "Invalid arguments",
    UPSTREAM_FAILURE: "Upstream service failed.",
}

CONNECTION_ERROR_CODES = frozenset(
    {AUTHENTICATION_FAILED, ACCESS_FORBIDDEN, RATE_LIMITED, TIMEOUT, CONNECTION_LOST, UNKNOWN}
)

# Server "error" events that are expected during normal turn taking.
BENIGN_PROTOCOL_ERRORS = (
    "cancellation failed",
    "no active response",
    "buffer too small",
)


def is_benign_protocol_error(message: str) -> bool:
    low = message.lower()
    return any(pattern in low for pattern in BENIGN_PROTOCOL_ERRORS)


def user_message(code: str, detail: str = "") -> str:
    """Human-actionable text for ``code``, with an optional short detail."""
    base = ERROR_MESSAGES.get(code, ERROR_MESSAGES[UNKNOWN])
    if detail and code == PROTOCOL_ERROR:
        return f"{base} {detail}"
    return base


class RealtimeConnectionError(Exception):
    def __init__(self, code: str, detail: str = "") -> None:
        super().__init__(detail or code)
        self.code = code
        self.detail = detail


class AudioSetupError(Exception):
    code = AUDIO_SETUP_FAILED


class ToolError(Exception):
    def __init__(self, code: str, detail: str = "") -> None:
        super().__init__(detail or code)
        self.code = code
        self.detail = detail


class ClassifierError(Exception):
    pass
