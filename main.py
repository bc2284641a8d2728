"""Application entrypoint."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from audio_transport import SoundDeviceAudioTransport, SoundDeviceTonePlayer
from camera import OpenCVCamera
from config import ConfigLocation, JsonConfigStore
from errors import PROTOCOL_ERROR
from hotkey import GlobalHotkeyAdapter
from intent_classifier import DashscopeIntentClassifier
from models import PLACEHOLDER_TEXT, ConnectionState, Message, SessionSettings, VoiceState
from session_engine import RealtimeSessionEngine
from threads import JsonThreadStore
from tools import PerplexitySearchClient, ToolDispatcher
from wire import RealtimeConnector

logger = logging.getLogger("glasses_voice")


class App:
    def __init__(self, config_store: JsonConfigStore, thread_store: JsonThreadStore) -> None:
        self.config_store = config_store
        self.thread_store = thread_store
        self._stopped = threading.Event()
        self._printed: dict[str, str] = {}

        search = None
        if config_store.is_search_enabled():
            search = PerplexitySearchClient(api_key_provider=config_store.get_search_api_key)
        self.camera = OpenCVCamera()

        settings = SessionSettings(
            model=config_store.get_realtime_model(),
            voice=config_store.get_voice(),
        )
        self.engine = RealtimeSessionEngine(
            connector=RealtimeConnector(
                api_key_provider=config_store.get_api_key,
                url=config_store.get_realtime_url(),
                model=settings.model,
            ),
            transport=SoundDeviceAudioTransport(wire_sample_rate=settings.sample_rate),
            classifier=DashscopeIntentClassifier(
                api_key=config_store.get_classifier_api_key(),
                model=config_store.get_classifier_model(),
                trigger_phrases=config_store.get_trigger_phrases(),
            ),
            dispatcher=ToolDispatcher(config_store, camera=self.camera, search=search),
            thread_store=thread_store,
            config=config_store,
            tones=SoundDeviceTonePlayer(),
            location=ConfigLocation(config_store),
            settings=settings,
            on_state_change=self._on_state_change,
            on_message=self._on_message,
            on_error=self._on_error,
        )
        self.hotkey = GlobalHotkeyAdapter(
            {
                config_store.get_hotkey(): self.engine.force_response,
                config_store.get_mute_hotkey(): self.engine.toggle_mute,
                config_store.get_reconnect_hotkey(): self.retry,
            }
        )

    # ------------------------------------------------------------------
    # Engine callbacks (called from the engine thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, connection: ConnectionState, voice: VoiceState) -> None:
        logger.info("[%s] %s", connection.value, voice.value)
        if connection == ConnectionState.DISCONNECTED:
            self._stopped.set()

    def _on_message(self, messages: list[Message]) -> None:
        if not messages:
            self._printed.clear()
        for message in messages:
            # placeholders are updated in place once the transcript lands
            if message.text == PLACEHOLDER_TEXT or self._printed.get(message.id) == message.text:
                continue
            print(f"{message.role.value:>9}: {message.text}")
            self._printed[message.id] = message.text

    def _on_error(self, code: str, message: str) -> None:
        print(f"error: {message} ({code})", file=sys.stderr)
        if code != PROTOCOL_ERROR:
            print(
                f"Press {self.config_store.get_reconnect_hotkey()} to reconnect or Ctrl+C to quit.",
                file=sys.stderr,
            )

    def retry(self) -> None:
        if self.engine.connection_state != ConnectionState.ERROR:
            return
        logger.info("Reconnecting")
        self.engine.connect()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self, thread_id: Optional[str] = None) -> int:
        try:
            self.hotkey.start()
        except Exception as exc:
            logger.warning("Hotkeys disabled: %s", exc)
        self.engine.connect(thread_id)
        try:
            while not self._stopped.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted")
        self.quit()
        return 1 if self.engine.connection_state == ConnectionState.ERROR else 0

    def quit(self) -> None:
        self.hotkey.stop()
        self.engine.shutdown()
        self.camera.release()


def print_threads(thread_store: JsonThreadStore) -> None:
    threads = thread_store.list_threads()
    if not threads:
        print("No stored conversations.")
        return
    for thread in threads:
        updated = datetime.fromtimestamp(thread.get("updated_at", 0)).strftime("%Y-%m-%d %H:%M")
        count = len(thread.get("messages", []))
        print(f"{thread['id']}  {updated}  {count:3d} msgs  {thread.get('title', '')}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hands-free realtime voice assistant")
    parser.add_argument("--config", type=Path, help="path to config.json")
    parser.add_argument("--thread", help="resume a stored conversation thread by id")
    parser.add_argument("--list-threads", action="store_true", help="list stored conversations and exit")
    parser.add_argument("--set-api-key", metavar="KEY", help="save the realtime API key and exit")
    parser.add_argument("--set-search-key", metavar="KEY", help="save the web search API key and exit")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_store = JsonConfigStore(args.config)
    threads_path = config_store.path.parent / "threads.json"
    thread_store = JsonThreadStore(threads_path)

    if args.set_api_key is not None or args.set_search_key is not None:
        if args.set_api_key is not None:
            config_store.set_api_key(args.set_api_key)
        if args.set_search_key is not None:
            config_store.set_search_api_key(args.set_search_key)
        print(f"Saved to {config_store.path}")
        return 0
    if args.list_threads:
        print_threads(thread_store)
        return 0

    app = App(config_store, thread_store)
    return app.run(args.thread)


if __name__ == "__main__":
    raise SystemExit(main())
