"""Realtime conversation session engine.

All state lives on one serialized event loop.  Public operations, inbound wire
events, captured audio frames, playback completions and classifier/tool
results are posted to ``self._events`` as ``(handler, args)`` pairs and run one
at a time, so no handler ever races another.  Work that blocks (opening the
wire, the classifier round trip, tool actions) runs on ``executor`` and posts
its outcome back.

Events are stamped with the session id current when they were produced; a
disconnect bumps the id, so late results from a torn-down session are
dropped instead of mutating the next one.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial
from queue import Empty, Queue
from typing import Any, Callable, Optional, Sequence

import protocol
from audio import silence_like
from errors import (
    AUDIO_SETUP_FAILED,
    CONNECTION_LOST,
    PROTOCOL_ERROR,
    TIMEOUT,
    UNKNOWN,
    AudioSetupError,
    RealtimeConnectionError,
    is_benign_protocol_error,
    user_message,
)
from intent_classifier import heuristic_should_respond
from interfaces import (
    AudioTransport,
    ConfigStore,
    IntentClassifier,
    LocationProvider,
    ThreadStore,
    TonePlayer,
    ToolDispatcher,
    WireConnection,
    WireConnector,
)
from models import (
    INTERRUPTED_SUFFIX,
    PLACEHOLDER_TEXT,
    AudioFrame,
    ConnectionState,
    Message,
    PendingFunctionCall,
    RecentTranscripts,
    Role,
    SessionSettings,
    ToolResult,
    VoiceState,
)
from prompts import build_instructions
from tools import SEARCH_INTERNET

logger = logging.getLogger(__name__)

StateCallback = Callable[[ConnectionState, VoiceState], None]
MessagesCallback = Callable[[list[Message]], None]
ErrorCallback = Callable[[str, str], None]
LevelCallback = Callable[[float], None]


class RealtimeSessionEngine:
    def __init__(
        self,
        connector: WireConnector,
        transport: AudioTransport,
        classifier: IntentClassifier,
        dispatcher: ToolDispatcher,
        thread_store: ThreadStore,
        config: ConfigStore,
        tones: Optional[TonePlayer] = None,
        location: Optional[LocationProvider] = None,
        settings: Optional[SessionSettings] = None,
        executor: Optional[Executor] = None,
        serve_events: bool = True,
        on_state_change: Optional[StateCallback] = None,
        on_message: Optional[MessagesCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_level: Optional[LevelCallback] = None,
    ) -> None:
        self._connector = connector
        self._transport = transport
        self._classifier = classifier
        self._dispatcher = dispatcher
        self._threads = thread_store
        self._config = config
        self._tones = tones
        self._location = location
        self._settings = settings or SessionSettings()
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="session")
        self._on_state_change = on_state_change
        self._on_message = on_message
        self._on_error = on_error
        self._on_level = on_level

        self._events: Queue[Optional[tuple[Callable[..., None], tuple]]] = Queue()
        self._session_id = 0
        self._connection: Optional[WireConnection] = None
        self._connect_timer: Optional[threading.Timer] = None
        self._futures: list[Future] = []

        self._connection_state = ConnectionState.DISCONNECTED
        self._voice_state = VoiceState.IDLE
        self._configured = False
        self._muted = False
        self._capturing = False
        self._last_error: Optional[str] = None

        self._thread_id: Optional[str] = None
        self._messages: list[Message] = []
        self._pending_history: list[Message] = []
        self._placeholder_id: Optional[str] = None
        self._recent = RecentTranscripts(self._settings.recent_transcripts)
        self._pending_calls: dict[str, PendingFunctionCall] = {}

        self._pending_audio = 0
        self._playback_epoch = 0
        self._response_active = False
        self._generation_complete = False
        self._awaiting_response = False
        self._scratch = ""
        self._finalized = False

        self._handlers: dict[type, Callable[[Any], None]] = {
            protocol.SessionCreated: self._on_session_created,
            protocol.SessionUpdated: self._on_session_updated,
            protocol.ResponseCreated: self._on_response_created,
            protocol.AudioDelta: self._on_audio_delta,
            protocol.AudioDone: self._ignore,
            protocol.TranscriptDelta: self._on_transcript_delta,
            protocol.TranscriptDone: self._on_transcript_done,
            protocol.InputTranscriptionCompleted: self._on_transcription_completed,
            protocol.SpeechStarted: self._on_speech_started,
            protocol.SpeechStopped: self._on_speech_stopped,
            protocol.BufferCommitted: self._ignore,
            protocol.ResponseDone: self._on_response_done,
            protocol.FunctionCallAdded: self._on_function_call_added,
            protocol.FunctionCallArgumentsDone: self._on_function_call_arguments_done,
            protocol.ServerError: self._on_server_error,
            protocol.UnknownEvent: self._ignore,
        }

        self._loop: Optional[threading.Thread] = None
        if serve_events:
            self._loop = threading.Thread(target=self._serve, name="session-engine", daemon=True)
            self._loop.start()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def voice_state(self) -> VoiceState:
        return self._voice_state

    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def is_muted(self) -> bool:
        return self._muted

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def pending_audio_buffers(self) -> int:
        return self._pending_audio

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def thread_id(self) -> Optional[str]:
        return self._thread_id

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def connect(self, thread_id: Optional[str] = None) -> None:
        self._post(self._do_connect, thread_id)

    def disconnect(self) -> None:
        self._post(self._do_disconnect)

    def start_listening(self) -> None:
        self._post(self._do_start_listening)

    def stop_listening(self) -> None:
        self._post(self._do_stop_listening)

    def force_response(self) -> None:
        self._post(self._do_force_response)

    def toggle_mute(self) -> None:
        self._post(self._do_toggle_mute)

    def update_instructions(self) -> None:
        self._post(self._do_update_instructions)

    def shutdown(self, timeout_s: float = 5.0) -> None:
        self.disconnect()
        if self._loop is None:
            self.pump()
            return
        self._events.put(None)
        self._loop.join(timeout=timeout_s)
        self._loop = None

    def pump(self) -> int:
        """Run queued events until the queue is empty; returns how many ran.

        Only for engines built with ``serve_events=False``.
        """
        handled = 0
        while True:
            try:
                item = self._events.get_nowait()
            except Empty:
                return handled
            if item is None:
                continue
            self._handle(item)
            handled += 1

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------

    def _post(self, handler: Callable[..., None], *args: Any) -> None:
        self._events.put((handler, args))

    def _serve(self) -> None:
        while True:
            item = self._events.get()
            if item is None:
                return
            self._handle(item)

    def _handle(self, item: tuple[Callable[..., None], tuple]) -> None:
        handler, args = item
        try:
            handler(*args)
        except Exception:
            logger.exception("Session event handler %s failed", getattr(handler, "__name__", handler))

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _do_connect(self, thread_id: Optional[str]) -> None:
        if self._connection_state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.info("Connect ignored: already %s", self._connection_state.value)
            return
        if thread_id is None and self._connection_state == ConnectionState.ERROR:
            thread_id = self._thread_id

        self._session_id += 1
        session_id = self._session_id
        self._last_error = None
        self._set_connection(ConnectionState.CONNECTING)
        self._prepare_thread(thread_id)

        logger.info("Connecting realtime session %d", session_id)
        timer = threading.Timer(self._settings.connect_timeout_s, self._post, args=(self._on_connect_timeout, session_id))
        timer.daemon = True
        self._connect_timer = timer
        timer.start()
        self._track(self._executor.submit(self._open_wire, session_id))

    def _open_wire(self, session_id: int) -> None:
        try:
            connection = self._connector.open()
        except RealtimeConnectionError as exc:
            self._post(self._on_wire_failed, session_id, exc.code, exc.detail)
            return
        except Exception as exc:
            logger.exception("Unexpected failure opening realtime connection")
            self._post(self._on_wire_failed, session_id, UNKNOWN, str(exc))
            return
        self._post(self._on_wire_opened, session_id, connection)

    def _on_wire_opened(self, session_id: int, connection: WireConnection) -> None:
        if session_id != self._session_id or self._connection_state != ConnectionState.CONNECTING:
            connection.close()
            return
        self._connection = connection
        reader = threading.Thread(
            target=self._read_loop,
            args=(session_id, connection),
            name=f"realtime-reader-{session_id}",
            daemon=True,
        )
        reader.start()

    def _read_loop(self, session_id: int, connection: WireConnection) -> None:
        try:
            for raw in connection.receive():
                self._post(self._on_inbound, session_id, raw)
        except RealtimeConnectionError as exc:
            self._post(self._on_wire_failed, session_id, exc.code, exc.detail)
            return
        except Exception as exc:
            logger.exception("Realtime reader crashed")
            self._post(self._on_wire_failed, session_id, CONNECTION_LOST, str(exc))
            return
        self._post(self._on_wire_closed, session_id)

    def _on_wire_failed(self, session_id: int, code: str, detail: str) -> None:
        if session_id != self._session_id:
            return
        self._fail(code, detail)

    def _on_wire_closed(self, session_id: int) -> None:
        if session_id != self._session_id:
            return
        self._fail(CONNECTION_LOST, "closed by server")

    def _on_connect_timeout(self, session_id: int) -> None:
        if session_id != self._session_id or self._configured:
            return
        logger.error("Session was not configured within %.1fs", self._settings.connect_timeout_s)
        self._fail(TIMEOUT, "session not ready")

    def _do_disconnect(self) -> None:
        if self._connection_state == ConnectionState.DISCONNECTED:
            return
        logger.info("Disconnecting realtime session %d", self._session_id)
        if self._connection_state == ConnectionState.CONNECTED:
            self._tone("play_disconnect")
        self._persist()
        try:
            self._threads.finalize_thread()
        except Exception:
            logger.warning("Failed to finalize thread %s", self._thread_id, exc_info=True)
        self._release()
        self._thread_id = None
        self._messages = []
        self._notify_messages()
        self._last_error = None
        self._set_connection(ConnectionState.DISCONNECTED)

    def _fail(self, code: str, detail: str = "") -> None:
        if self._connection_state in (ConnectionState.ERROR, ConnectionState.DISCONNECTED):
            # first surfaced error wins; later ones belong to the same cascade
            logger.info("Suppressing %s (%s) while %s", code, detail, self._connection_state.value)
            return
        message = user_message(code, detail)
        logger.error("Realtime session failed: %s (%s)", code, detail)
        self._persist()
        self._release()
        self._last_error = message
        self._set_connection(ConnectionState.ERROR)
        if self._on_error:
            self._on_error(code, message)

    def _release(self) -> None:
        self._session_id += 1
        self._cancel_connect_timer()
        for future in self._futures:
            future.cancel()
        self._futures = []

        if self._capturing:
            self._capturing = False
            self._safe_call(self._transport.stop_capture)
        self._safe_call(self._transport.stop_playback)
        connection, self._connection = self._connection, None
        if connection is not None:
            self._safe_call(connection.close)

        self._configured = False
        self._muted = False
        self._pending_history = []
        self._placeholder_id = None
        self._recent.clear()
        self._pending_calls = {}
        self._pending_audio = 0
        self._playback_epoch += 1
        self._response_active = False
        self._generation_complete = False
        self._awaiting_response = False
        self._scratch = ""
        self._finalized = False
        self._set_voice(VoiceState.IDLE)
        self._safe_call(self._transport.teardown)

    def _cancel_connect_timer(self) -> None:
        timer, self._connect_timer = self._connect_timer, None
        if timer is not None:
            timer.cancel()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _do_start_listening(self) -> None:
        if not self._is_ready():
            logger.warning("Cannot start listening: not connected or not configured")
            return
        if self._voice_state != VoiceState.IDLE:
            logger.warning("Cannot start listening: voice state is %s", self._voice_state.value)
            return
        if not self._capturing:
            try:
                self._transport.start_capture(partial(self._on_captured, self._session_id))
            except Exception as exc:
                self._fail(AUDIO_SETUP_FAILED, str(exc))
                return
            self._capturing = True
        self._scratch = ""
        self._finalized = False
        logger.info("Listening")
        self._set_voice(VoiceState.LISTENING)

    def _do_stop_listening(self) -> None:
        if self._voice_state not in (VoiceState.LISTENING, VoiceState.PROCESSING):
            return
        logger.info("Stopping listening")
        if self._capturing:
            self._capturing = False
            self._safe_call(self._transport.stop_capture)
        self._send(protocol.audio_commit())
        self._set_voice(VoiceState.IDLE)

    def _do_force_response(self) -> None:
        if not self._is_ready():
            logger.warning("Cannot force response: not connected or not configured")
            return
        logger.info("Force response requested")
        self._request_response()

    def _do_toggle_mute(self) -> None:
        self._muted = not self._muted
        logger.info("Microphone %s", "muted" if self._muted else "unmuted")

    def _do_update_instructions(self) -> None:
        if not self._is_ready():
            return
        logger.info("Updating session instructions")
        self._send(protocol.instructions_update(self._instructions(self._dispatcher.manifest())))

    # ------------------------------------------------------------------
    # Captured audio and playback completion
    # ------------------------------------------------------------------

    def _on_captured(self, session_id: int, frame: AudioFrame) -> None:
        # audio callback thread: hand off only
        self._post(self._on_frame, session_id, frame)

    def _on_frame(self, session_id: int, frame: AudioFrame) -> None:
        if session_id != self._session_id or not self._capturing or not self._configured:
            return
        payload = silence_like(frame.pcm16_bytes) if self._muted else frame.pcm16_bytes
        self._send(protocol.audio_append(payload))
        if self._on_level:
            self._on_level(0.0 if self._muted else frame.level)

    def _on_playback_done(self, session_id: int, epoch: int, future: Future) -> None:
        if future.cancelled():
            return
        self._post(self._on_playback_finished, session_id, epoch)

    def _on_playback_finished(self, session_id: int, epoch: int) -> None:
        if session_id != self._session_id or epoch != self._playback_epoch:
            return
        self._pending_audio = max(0, self._pending_audio - 1)
        self._maybe_finish_speaking()

    def _maybe_finish_speaking(self) -> None:
        """Go idle only once generation is complete and no audio is still playing."""
        if not self._generation_complete or self._pending_audio > 0 or self._awaiting_response:
            return
        self._pending_audio = 0
        if self._voice_state in (VoiceState.SPEAKING, VoiceState.PROCESSING):
            self._set_voice(VoiceState.IDLE)

    def _interrupt_playback(self) -> None:
        self._safe_call(self._transport.stop_playback)
        self._pending_audio = 0
        self._playback_epoch += 1

    # ------------------------------------------------------------------
    # Inbound protocol events
    # ------------------------------------------------------------------

    def _on_inbound(self, session_id: int, raw: Any) -> None:
        if session_id != self._session_id:
            return
        event = protocol.parse_server_event(raw)
        self._handlers[type(event)](event)

    def _ignore(self, event: Any) -> None:
        logger.debug("Ignoring server event %s", event)

    def _on_session_created(self, event: protocol.SessionCreated) -> None:
        logger.info("Session created %s", event.session_id)
        self._set_connection(ConnectionState.CONNECTED)
        tools = self._dispatcher.manifest()
        self._send(protocol.session_update(self._settings, self._instructions(tools), tools))

    def _on_session_updated(self, event: protocol.SessionUpdated) -> None:
        initial = not self._configured
        self._configured = True
        self._cancel_connect_timer()
        if self._pending_history:
            logger.info("Replaying %d history messages", len(self._pending_history))
            for item in protocol.history_items(self._pending_history):
                self._send(item)
            self._pending_history = []
        if not initial:
            logger.info("Session settings updated")
            return
        logger.info("Session configured")
        self._notify_state()
        self._do_start_listening()
        if self._connection_state == ConnectionState.CONNECTED:
            self._tone("play_ready")

    def _on_response_created(self, event: protocol.ResponseCreated) -> None:
        logger.debug("Response created %s", event.response_id)
        self._response_active = True
        self._awaiting_response = False
        self._generation_complete = False
        self._scratch = ""
        self._finalized = False

    def _on_audio_delta(self, event: protocol.AudioDelta) -> None:
        if not self._response_active:
            logger.debug("Dropping %d bytes of stale response audio", len(event.audio))
            return
        if not event.audio:
            return
        self._set_voice(VoiceState.SPEAKING)
        self._pending_audio += 1
        try:
            future = self._transport.enqueue_playback(event.audio)
        except AudioSetupError as exc:
            self._pending_audio -= 1
            self._fail(AUDIO_SETUP_FAILED, str(exc))
            return
        except Exception:
            self._pending_audio -= 1
            logger.warning("Failed to schedule %d bytes of playback", len(event.audio), exc_info=True)
            self._maybe_finish_speaking()
            return
        future.add_done_callback(partial(self._on_playback_done, self._session_id, self._playback_epoch))

    def _on_transcript_delta(self, event: protocol.TranscriptDelta) -> None:
        self._scratch += event.delta

    def _on_transcript_done(self, event: protocol.TranscriptDone) -> None:
        text = (event.transcript or self._scratch).strip()
        self._scratch = ""
        if self._finalized or not text:
            return
        self._finalized = True
        self._append_message(Role.ASSISTANT, text)
        self._persist()

    def _on_response_done(self, event: protocol.ResponseDone) -> None:
        self._response_active = False
        self._generation_complete = True
        self._maybe_finish_speaking()

    def _on_speech_started(self, event: protocol.SpeechStarted) -> None:
        was_playing = (
            self._pending_audio > 0
            or self._voice_state == VoiceState.SPEAKING
            or self._response_active
        )
        if was_playing:
            logger.info("Barge-in: dropping %d pending playback buffers", self._pending_audio)
            self._interrupt_playback()
            if self._response_active:
                self._send(protocol.response_cancel())
                self._response_active = False
            partial_text = self._scratch.strip()
            if partial_text and not self._finalized:
                self._append_message(Role.ASSISTANT, partial_text + INTERRUPTED_SUFFIX)
                self._finalized = True
                self._persist()
            self._scratch = ""

        self._set_voice(VoiceState.LISTENING)
        if self._placeholder_id is None:
            self._placeholder_id = self._append_message(Role.USER, PLACEHOLDER_TEXT).id

    def _on_speech_stopped(self, event: protocol.SpeechStopped) -> None:
        self._set_voice(VoiceState.PROCESSING)
        self._send(protocol.audio_commit())

    def _on_transcription_completed(self, event: protocol.InputTranscriptionCompleted) -> None:
        text = event.transcript.strip()
        if not text:
            logger.info("Empty transcription, keeping placeholder")
            if self._voice_state == VoiceState.PROCESSING:
                self._set_voice(VoiceState.IDLE)
            return

        placeholder = self._find_message(self._placeholder_id)
        self._placeholder_id = None
        if placeholder is not None:
            placeholder.text = text
            self._notify_messages()
        else:
            self._append_message(Role.USER, text)
        self._persist()
        logger.info("User said: %s", text)

        if self._is_stop_phrase(text):
            logger.info("Stop phrase heard, ending session")
            self._do_disconnect()
            return

        self._recent.append(text)
        context = list(self._recent)
        self._track(self._executor.submit(self._classify, self._session_id, text, context))

    def _classify(self, session_id: int, text: str, context: Sequence[str]) -> None:
        try:
            should_respond = self._classifier.classify(text, context)
        except Exception:
            logger.warning("Intent classifier raised, using heuristics", exc_info=True)
            should_respond = heuristic_should_respond(text, self._config.get_trigger_phrases())
        self._post(self._on_classified, session_id, should_respond)

    def _on_classified(self, session_id: int, should_respond: bool) -> None:
        if session_id != self._session_id or not self._configured:
            return
        if self._voice_state == VoiceState.LISTENING:
            logger.info("User resumed speaking, skipping classifier decision")
            return
        if should_respond:
            self._request_response()
        elif self._voice_state == VoiceState.PROCESSING:
            logger.info("Waiting for the user to continue")
            self._set_voice(VoiceState.IDLE)

    def _on_function_call_added(self, event: protocol.FunctionCallAdded) -> None:
        logger.info("Function call announced: %s (%s)", event.name, event.call_id)
        message = self._append_message(Role.ASSISTANT, self._dispatcher.display_text(event.name))
        self._pending_calls[event.call_id] = PendingFunctionCall(event.call_id, event.name, message.id)
        self._tone("play_tool_call")

    def _on_function_call_arguments_done(self, event: protocol.FunctionCallArgumentsDone) -> None:
        if event.call_id not in self._pending_calls:
            message = self._append_message(Role.ASSISTANT, self._dispatcher.display_text(event.name))
            self._pending_calls[event.call_id] = PendingFunctionCall(event.call_id, event.name, message.id)
        self._set_voice(VoiceState.PROCESSING)
        self._track(
            self._executor.submit(self._run_tool, self._session_id, event.call_id, event.name, event.arguments)
        )

    def _run_tool(self, session_id: int, call_id: str, name: str, arguments: str) -> None:
        try:
            result = self._dispatcher.dispatch(name, arguments, call_id)
        except Exception as exc:
            logger.exception("Tool dispatcher raised for %s", name)
            result = ToolResult(output=f"Error: {exc}", status=f"🔧 {name} failed", success=False)
        self._post(self._on_tool_finished, session_id, call_id, result)

    def _on_tool_finished(self, session_id: int, call_id: str, result: ToolResult) -> None:
        if session_id != self._session_id:
            logger.info("Dropping result of call %s from a closed session", call_id)
            return
        call = self._pending_calls.pop(call_id, None)
        if call is not None:
            message = self._find_message(call.message_id)
            if message is not None:
                message.text = result.status
                self._notify_messages()
                self._persist()
        if result.image_jpeg:
            self._send(protocol.image_item(result.image_jpeg))
        self._send(protocol.function_call_output(call_id, result.output))
        self._request_response()

    def _on_server_error(self, event: protocol.ServerError) -> None:
        if is_benign_protocol_error(event.message):
            logger.info("Ignoring expected server error: %s", event.message)
            return
        message = user_message(PROTOCOL_ERROR, event.message)
        logger.error("Server error %s: %s", event.code, event.message)
        self._last_error = message
        self._set_voice(VoiceState.IDLE)
        if self._on_error:
            self._on_error(PROTOCOL_ERROR, message)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_ready(self) -> bool:
        return self._connection_state == ConnectionState.CONNECTED and self._configured

    def _request_response(self) -> None:
        self._awaiting_response = True
        self._send(protocol.response_create())
        self._set_voice(VoiceState.PROCESSING)

    def _send(self, event: dict) -> bool:
        connection = self._connection
        if connection is None:
            logger.warning("Not connected, dropping %s", event.get("type"))
            return False
        return connection.send(event)

    def _instructions(self, tools: list[dict]) -> str:
        location = None
        if self._location is not None:
            try:
                location = self._location.describe()
            except Exception:
                logger.warning("Location lookup failed", exc_info=True)
        try:
            history = self._threads.history_context()
        except Exception:
            logger.warning("History stats unavailable", exc_info=True)
            history = ""
        return build_instructions(
            search_enabled=any(tool.get("name") == SEARCH_INTERNET for tool in tools),
            memories=self._config.get_memories(),
            user_prompt=self._config.get_user_prompt(),
            location=location,
            history_context=history,
        )

    def _prepare_thread(self, thread_id: Optional[str]) -> None:
        history = None
        if thread_id:
            history = self._threads.resume_thread(thread_id)
        if history is None:
            self._thread_id = self._threads.create_thread()
            self._messages = []
        else:
            self._thread_id = thread_id
            self._messages = list(history)
            self._pending_history = list(history)
        self._notify_messages()

    def _persist(self) -> None:
        try:
            self._threads.save_messages(list(self._messages))
        except Exception:
            logger.warning("Failed to save messages of thread %s", self._thread_id, exc_info=True)

    def _is_stop_phrase(self, text: str) -> bool:
        low = text.lower()
        return any(phrase.strip().lower() in low for phrase in self._config.get_stop_phrases() if phrase.strip())

    def _append_message(self, role: Role, text: str) -> Message:
        message = Message(role=role, text=text)
        self._messages.append(message)
        self._notify_messages()
        return message

    def _find_message(self, message_id: Optional[str]) -> Optional[Message]:
        if message_id is None:
            return None
        return next((m for m in self._messages if m.id == message_id), None)

    def _track(self, future: Future) -> None:
        self._futures = [f for f in self._futures if not f.done()]
        if not future.done():
            self._futures.append(future)

    def _tone(self, name: str) -> None:
        if self._tones is None:
            return
        try:
            getattr(self._tones, name)()
        except Exception:
            logger.warning("Tone %s failed", name, exc_info=True)

    @staticmethod
    def _safe_call(fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            logger.warning("%s failed during cleanup", getattr(fn, "__name__", fn), exc_info=True)

    def _set_connection(self, state: ConnectionState) -> None:
        if self._connection_state == state:
            return
        logger.info("Connection %s -> %s", self._connection_state.value, state.value)
        self._connection_state = state
        self._notify_state()

    def _set_voice(self, state: VoiceState) -> None:
        if self._voice_state == state:
            return
        logger.debug("Voice %s -> %s", self._voice_state.value, state.value)
        self._voice_state = state
        self._notify_state()

    def _notify_state(self) -> None:
        if self._on_state_change:
            self._on_state_change(self._connection_state, self._voice_state)

    def _notify_messages(self) -> None:
        if self._on_message:
            self._on_message(list(self._messages))
