"""Persistent WebSocket connection to the realtime conversation service."""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Callable, Iterator

from errors import (
    ACCESS_FORBIDDEN,
    AUTHENTICATION_FAILED,
    CONNECTION_LOST,
    RATE_LIMITED,
    TIMEOUT,
    UNKNOWN,
    RealtimeConnectionError,
)

try:
    from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, InvalidStatus
    from websockets.sync.client import connect as ws_connect
except Exception:  # pragma: no cover
    ws_connect = None  # type: ignore
    ConnectionClosed = ConnectionClosedOK = InvalidStatus = ()  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_REALTIME_URL = "wss://api.openai.com/v1/realtime"

_STATUS_CODES = {
    401: AUTHENTICATION_FAILED,
    403: ACCESS_FORBIDDEN,
    429: RATE_LIMITED,
}

_CLOSE_CODES = {
    1008: AUTHENTICATION_FAILED,  # policy violation
    1013: RATE_LIMITED,  # try again later
}


def classify_status(status_code: int) -> str:
    return _STATUS_CODES.get(status_code, UNKNOWN)


def classify_exception(exc: BaseException) -> str:
    """Map a low-level connection failure onto the connection error taxonomy."""
    if isinstance(exc, RealtimeConnectionError):
        return exc.code
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return classify_status(status_code)
    received = getattr(exc, "rcvd", None)
    close_code = getattr(received, "code", None)
    if isinstance(close_code, int) and close_code in _CLOSE_CODES:
        return _CLOSE_CODES[close_code]
    if isinstance(exc, TimeoutError):
        return TIMEOUT

    low = str(exc).lower()
    if "401" in low or "unauthorized" in low or "invalid api key" in low or "incorrect api key" in low:
        return AUTHENTICATION_FAILED
    if "403" in low or "forbidden" in low:
        return ACCESS_FORBIDDEN
    if "429" in low or "rate limit" in low:
        return RATE_LIMITED
    if "timed out" in low or "timeout" in low:
        return TIMEOUT
    if isinstance(exc, (OSError, ConnectionClosed)) or "connection" in low or "network" in low:
        return CONNECTION_LOST
    return UNKNOWN


def _close_detail(exc: BaseException) -> str:
    received = getattr(exc, "rcvd", None)
    reason = getattr(received, "reason", "") or ""
    if not reason:
        return str(exc)
    try:
        payload = json.loads(reason)
    except ValueError:
        return reason
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return str(payload["error"].get("message", reason))
    return reason


class RealtimeWireConnection:
    def __init__(self, websocket: Any) -> None:
        self._ws = websocket
        self._send_lock = threading.Lock()
        self._closed = False

    def send(self, event: dict) -> bool:
        """Send one event; failures are logged and reported, never retried."""
        if self._closed:
            logger.debug("Dropping %s on closed connection", event.get("type"))
            return False
        try:
            payload = json.dumps(event)
            with self._send_lock:
                self._ws.send(payload)
            return True
        except Exception as exc:
            logger.warning("Send of %s failed: %s", event.get("type"), exc)
            return False

    def receive(self) -> Iterator[dict]:
        """Yield decoded events until the connection closes.

        A normal close ends the iteration; anything else raises
        ``RealtimeConnectionError`` carrying a classified code.
        """
        try:
            for raw in self._ws:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                try:
                    data = json.loads(raw)
                except ValueError:
                    logger.warning("Failed to parse server event")
                    continue
                yield data
        except ConnectionClosedOK:
            return
        except Exception as exc:
            if self._closed:
                return
            code = classify_exception(exc)
            raise RealtimeConnectionError(code, _close_detail(exc)) from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._ws.close()
        except Exception as exc:
            logger.debug("WebSocket close failed: %s", exc)


class RealtimeConnector:
    """Opens authenticated connections; the API key is read at open time."""

    def __init__(
        self,
        api_key_provider: Callable[[], str],
        url: str = DEFAULT_REALTIME_URL,
        model: str = "gpt-4o-realtime-preview",
        open_timeout_s: float = 10.0,
    ) -> None:
        self._api_key_provider = api_key_provider
        self._url = url
        self._model = model
        self._open_timeout_s = open_timeout_s

    @property
    def uri(self) -> str:
        separator = "&" if "?" in self._url else "?"
        return f"{self._url}{separator}model={self._model}"

    def open(self) -> RealtimeWireConnection:
        if ws_connect is None:
            raise RealtimeConnectionError(UNKNOWN, "websockets is not installed")
        api_key = self._api_key_provider() or os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RealtimeConnectionError(AUTHENTICATION_FAILED, "No API key configured")
        try:
            websocket = ws_connect(
                self.uri,
                additional_headers={
                    "Authorization": f"Bearer {api_key}",
                    "OpenAI-Beta": "realtime=v1",
                },
                open_timeout=self._open_timeout_s,
                max_size=None,
            )
        except InvalidStatus as exc:
            code = classify_status(exc.response.status_code)
            raise RealtimeConnectionError(code, f"HTTP {exc.response.status_code}") from exc
        except Exception as exc:
            raise RealtimeConnectionError(classify_exception(exc), str(exc)) from exc
        logger.info("WebSocket opened to %s", self._url)
        return RealtimeWireConnection(websocket)

