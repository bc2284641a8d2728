"""Tests for the realtime WebSocket wire."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedOK
from websockets.frames import Close

from errors import (
    ACCESS_FORBIDDEN,
    AUTHENTICATION_FAILED,
    CONNECTION_LOST,
    RATE_LIMITED,
    TIMEOUT,
    UNKNOWN,
    RealtimeConnectionError,
)
from wire import RealtimeConnector, RealtimeWireConnection, classify_exception


class _HttpError(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(f"server rejected WebSocket connection: HTTP {status}")
        self.response = SimpleNamespace(status_code=status)


class _ClosedError(Exception):
    def __init__(self, code: int, reason: str = "") -> None:
        super().__init__(f"received {code} ({reason})")
        self.rcvd = SimpleNamespace(code=code, reason=reason)


class FakeWebSocket:
    def __init__(self, messages: list, error: Exception | None = None) -> None:
        self.messages = messages
        self.error = error
        self.sent: list[str] = []
        self.closed = False

    def __iter__(self):  # noqa: ANN204
        yield from self.messages
        if self.error is not None:
            raise self.error

    def send(self, payload: str) -> None:
        if self.closed:
            raise OSError("socket closed")
        self.sent.append(payload)

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------
# Failure classification
# ---------------------------------------------------------------

@pytest.mark.parametrize(
    "exc, expected",
    [
        (RealtimeConnectionError(RATE_LIMITED), RATE_LIMITED),
        (_HttpError(401), AUTHENTICATION_FAILED),
        (_HttpError(403), ACCESS_FORBIDDEN),
        (_HttpError(429), RATE_LIMITED),
        (_HttpError(500), UNKNOWN),
        (_ClosedError(1008, "invalid key"), AUTHENTICATION_FAILED),
        (_ClosedError(1013), RATE_LIMITED),
        (TimeoutError(), TIMEOUT),
        (OSError("Network is unreachable"), CONNECTION_LOST),
        (ValueError("something odd"), UNKNOWN),
    ],
)
def test_classify_exception(exc: BaseException, expected: str) -> None:
    assert classify_exception(exc) == expected


# ---------------------------------------------------------------
# Connection
# ---------------------------------------------------------------

def test_receive_decodes_json_and_skips_garbage() -> None:
    ws = FakeWebSocket(['{"type": "session.created"}', "not json", b'{"type": "response.done"}'])
    events = list(RealtimeWireConnection(ws).receive())
    assert events == [{"type": "session.created"}, {"type": "response.done"}]


def test_normal_close_ends_iteration() -> None:
    ws = FakeWebSocket(['{"type": "a"}'], error=ConnectionClosedOK(Close(1000, "bye"), None))
    assert list(RealtimeWireConnection(ws).receive()) == [{"type": "a"}]


def test_abnormal_close_raises_classified_error() -> None:
    reason = json.dumps({"error": {"message": "Incorrect API key provided"}})
    ws = FakeWebSocket([], error=_ClosedError(1008, reason))
    with pytest.raises(RealtimeConnectionError) as excinfo:
        list(RealtimeWireConnection(ws).receive())
    assert excinfo.value.code == AUTHENTICATION_FAILED
    assert excinfo.value.detail == "Incorrect API key provided"


def test_errors_after_local_close_are_quiet() -> None:
    ws = FakeWebSocket([], error=OSError("connection reset"))
    connection = RealtimeWireConnection(ws)
    connection.close()
    assert list(connection.receive()) == []
    assert ws.closed


def test_send_serializes_and_reports_failure() -> None:
    ws = FakeWebSocket([])
    connection = RealtimeWireConnection(ws)
    assert connection.send({"type": "response.create"})
    assert json.loads(ws.sent[0]) == {"type": "response.create"}

    ws.closed = True
    assert not connection.send({"type": "response.create"})
    connection.close()
    assert not connection.send({"type": "response.create"})


# ---------------------------------------------------------------
# Connector
# ---------------------------------------------------------------

@patch("wire.ws_connect")
def test_connector_sends_auth_headers(mock_connect: MagicMock) -> None:
    mock_connect.return_value = FakeWebSocket([])
    connector = RealtimeConnector(lambda: "sk-test", url="wss://example.com/v1/realtime", model="m1")

    connection = connector.open()

    assert isinstance(connection, RealtimeWireConnection)
    args, kwargs = mock_connect.call_args
    assert args[0] == "wss://example.com/v1/realtime?model=m1"
    assert kwargs["additional_headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["additional_headers"]["OpenAI-Beta"] == "realtime=v1"
    assert kwargs["open_timeout"] == 10.0


@patch("wire.ws_connect")
@patch.dict("os.environ", {"OPENAI_API_KEY": ""}, clear=False)
def test_connector_without_key_fails_fast(mock_connect: MagicMock) -> None:
    with pytest.raises(RealtimeConnectionError) as excinfo:
        RealtimeConnector(lambda: "").open()
    assert excinfo.value.code == AUTHENTICATION_FAILED
    mock_connect.assert_not_called()


@patch("wire.ws_connect", side_effect=_HttpError(403))
def test_connector_maps_http_rejection(mock_connect: MagicMock) -> None:
    with pytest.raises(RealtimeConnectionError) as excinfo:
        RealtimeConnector(lambda: "sk").open()
    assert excinfo.value.code == ACCESS_FORBIDDEN


@patch("wire.ws_connect", side_effect=TimeoutError("timed out during opening handshake"))
def test_connector_maps_timeout(mock_connect: MagicMock) -> None:
    with pytest.raises(RealtimeConnectionError) as excinfo:
        RealtimeConnector(lambda: "sk").open()
    assert excinfo.value.code == TIMEOUT
