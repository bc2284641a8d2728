from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from hotkey import GlobalHotkeyAdapter


class _Key:
    def __init__(self, name: str) -> None:
        self._name = name

    def __str__(self) -> str:
        return self._name


def _start(adapter: GlobalHotkeyAdapter, keyboard: MagicMock) -> tuple:
    adapter.start()
    kwargs = keyboard.Listener.call_args.kwargs
    return kwargs["on_press"], kwargs["on_release"]


@patch("hotkey.keyboard")
def test_bound_key_fires_once_per_press(mock_keyboard: MagicMock) -> None:
    fired: list[str] = []
    adapter = GlobalHotkeyAdapter({"Key.alt_r": lambda: fired.append("force"), "Key.f9": lambda: fired.append("mute")})
    on_press, on_release = _start(adapter, mock_keyboard)

    on_press(_Key("Key.alt_r"))
    on_press(_Key("Key.alt_r"))
    on_release(_Key("Key.alt_r"))
    on_press(_Key("Key.alt_r"))
    on_press(_Key("Key.f9"))
    on_press(_Key("'a'"))

    assert fired == ["force", "force", "mute"]
    mock_keyboard.Listener.return_value.start.assert_called_once()


@patch("hotkey.keyboard")
def test_stop_stops_listener(mock_keyboard: MagicMock) -> None:
    adapter = GlobalHotkeyAdapter({"Key.f9": lambda: None})
    adapter.start()
    adapter.stop()
    adapter.stop()
    mock_keyboard.Listener.return_value.stop.assert_called_once()


@patch("hotkey.keyboard", None)
def test_missing_pynput_raises() -> None:
    with pytest.raises(RuntimeError):
        GlobalHotkeyAdapter({"Key.f9": lambda: None}).start()
