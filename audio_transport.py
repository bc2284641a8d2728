"""Duplex audio transport: microphone capture and speaker playback.

Captured blocks are converted from the device's native rate to the wire
format (PCM16 mono, 24 kHz) inside the audio callback and handed to
``on_frame``.  Playback chunks are resampled the other way and rendered by
an output-stream callback; each chunk's future resolves only once the
stream has rendered its last sample plus the reported output latency.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

from audio import (
    pcm16_from_bytes,
    pcm16_level,
    pcm16_to_bytes,
    resample_pcm16,
    to_mono_int16,
    tone_samples,
)
from errors import AudioSetupError
from models import WIRE_SAMPLE_RATE, AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


@dataclass
class _ScheduledChunk:
    samples: np.ndarray
    future: Future
    offset: int = 0


class SoundDeviceAudioTransport:
    def __init__(
        self,
        wire_sample_rate: int = WIRE_SAMPLE_RATE,
        device_sample_rate: Optional[int] = None,
        chunk_ms: int = 40,
        input_device: Optional[int] = None,
        output_device: Optional[int] = None,
    ) -> None:
        self.wire_sample_rate = wire_sample_rate
        self.chunk_ms = chunk_ms
        self._device_sample_rate = device_sample_rate
        self._input_device = input_device
        self._output_device = output_device
        self._lock = threading.Lock()

        self._input_stream: Any = None
        self._capture_rate = 0
        self._capturing = False
        self._on_frame: Optional[Callable[[AudioFrame], None]] = None
        self.dropped_frames = 0

        self._output_stream: Any = None
        self._playback_rate = 0
        self._latency_frames = 0
        self._frames_rendered = 0
        self._scheduled: deque[_ScheduledChunk] = deque()
        self._draining: list[tuple[int, Future]] = []

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def start_capture(self, on_frame: Callable[[AudioFrame], None]) -> None:
        with self._lock:
            if self._capturing:
                return
            if sd is None:
                raise AudioSetupError("sounddevice is not installed")
            try:
                rate = self._device_rate("input", self._input_device)
                stream = sd.InputStream(
                    samplerate=rate,
                    channels=1,
                    dtype="int16",
                    blocksize=int(rate * (self.chunk_ms / 1000.0)),
                    device=self._input_device,
                    callback=self._on_audio,
                )
                stream.start()
            except Exception as exc:
                raise AudioSetupError(f"microphone setup failed: {exc}") from exc
            self._input_stream = stream
            self._capture_rate = rate
            self._on_frame = on_frame
            self._capturing = True
            logger.info("Capture started at %d Hz (wire %d Hz)", rate, self.wire_sample_rate)

    def stop_capture(self) -> None:
        with self._lock:
            self._capturing = False
            stream = self._input_stream
            self._input_stream = None
            self._on_frame = None
        if stream is not None:
            self._close_stream(stream)
            logger.info("Capture stopped")

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        on_frame = self._on_frame
        if not self._capturing or on_frame is None:
            return
        try:
            samples = to_mono_int16(indata)
            level = pcm16_level(samples)
            wire = resample_pcm16(samples, self._capture_rate, self.wire_sample_rate)
            frame = AudioFrame(
                pcm16_bytes=pcm16_to_bytes(wire),
                sample_rate=self.wire_sample_rate,
                channels=1,
                timestamp_ms=int(time.time() * 1000),
                level=level,
            )
        except Exception as exc:
            self.dropped_frames += 1
            logger.warning("Dropping captured frame: %s", exc)
            return
        on_frame(frame)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def enqueue_playback(self, pcm16_bytes: bytes) -> Future:
        """Schedule wire-format audio; the future resolves once it was heard."""
        future: Future = Future()
        samples = pcm16_from_bytes(pcm16_bytes)
        with self._lock:
            self._ensure_output_stream()
            rendered = resample_pcm16(samples, self.wire_sample_rate, self._playback_rate)
            if rendered.size:
                self._scheduled.append(_ScheduledChunk(samples=rendered, future=future))
        if not rendered.size:
            future.set_result(None)
        return future

    def stop_playback(self) -> None:
        """Discard everything scheduled but not yet heard."""
        with self._lock:
            discarded = [chunk.future for chunk in self._scheduled]
            discarded.extend(future for _, future in self._draining)
            self._scheduled.clear()
            self._draining = []
        for future in discarded:
            future.cancel()
        if discarded:
            logger.info("Playback stopped, discarded %d chunks", len(discarded))

    @property
    def pending_chunks(self) -> int:
        with self._lock:
            return len(self._scheduled) + len(self._draining)

    def _ensure_output_stream(self) -> None:
        if self._output_stream is not None:
            return
        if sd is None:
            raise AudioSetupError("sounddevice is not installed")
        try:
            rate = self._device_rate("output", self._output_device)
            stream = sd.OutputStream(
                samplerate=rate,
                channels=1,
                dtype="int16",
                blocksize=int(rate * (self.chunk_ms / 1000.0)),
                device=self._output_device,
                callback=self._on_playback,
            )
            stream.start()
        except Exception as exc:
            raise AudioSetupError(f"speaker setup failed: {exc}") from exc
        try:
            latency_s = float(getattr(stream, "latency", 0.0) or 0.0)
        except (TypeError, ValueError):
            latency_s = 0.0
        self._output_stream = stream
        self._playback_rate = rate
        self._latency_frames = int(latency_s * rate)
        self._frames_rendered = 0
        logger.info("Playback started at %d Hz", rate)

    def _on_playback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        block = np.zeros(frames, dtype=np.int16)
        heard: list[Future] = []
        with self._lock:
            filled = 0
            while filled < frames and self._scheduled:
                chunk = self._scheduled[0]
                take = min(frames - filled, chunk.samples.size - chunk.offset)
                block[filled:filled + take] = chunk.samples[chunk.offset:chunk.offset + take]
                chunk.offset += take
                filled += take
                if chunk.offset >= chunk.samples.size:
                    self._scheduled.popleft()
                    due = self._frames_rendered + filled + self._latency_frames
                    self._draining.append((due, chunk.future))
            self._frames_rendered += frames
            waiting = []
            for due, future in self._draining:
                if self._frames_rendered >= due:
                    heard.append(future)
                else:
                    waiting.append((due, future))
            self._draining = waiting
        outdata[:] = block.reshape(-1, 1)
        for future in heard:
            if not future.done():
                future.set_result(None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def teardown(self) -> None:
        self.stop_capture()
        self.stop_playback()
        with self._lock:
            stream = self._output_stream
            self._output_stream = None
        if stream is not None:
            self._close_stream(stream)

    def _device_rate(self, kind: str, device: Optional[int]) -> int:
        if self._device_sample_rate:
            return int(self._device_sample_rate)
        info = sd.query_devices(device, kind=kind)
        return int(info["default_samplerate"])

    @staticmethod
    def _close_stream(stream: Any) -> None:
        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            logger.warning("Audio stream close failed: %s", exc)


class SoundDeviceTonePlayer:
    """Short notification tones, played outside the conversation audio path."""

    def __init__(self, sample_rate: int = 44100) -> None:
        self._sample_rate = sample_rate

    def play_ready(self) -> None:
        self._play((880.0, 1320.0), 0.08, 0.05)

    def play_tool_call(self) -> None:
        self._play((660.0,), 0.1, 0.0)

    def play_disconnect(self) -> None:
        self._play((1320.0, 880.0), 0.08, 0.05)

    def _play(self, frequencies: tuple[float, ...], duration_s: float, pause_s: float) -> None:
        if sd is None:
            return
        samples = tone_samples(frequencies, duration_s, pause_s, self._sample_rate)
        try:
            sd.play(samples, self._sample_rate)
        except Exception as exc:
            logger.warning("Tone playback failed: %s", exc)
