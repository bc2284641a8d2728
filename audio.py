"""PCM16 helpers shared by the audio transport and tone player."""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np


def to_mono_int16(indata: Any) -> np.ndarray:
    """Flatten a sounddevice int16 block to a 1-D mono array (first channel)."""
    samples = np.asarray(indata, dtype=np.int16)
    if samples.ndim == 2:
        samples = samples[:, 0]
    return samples.reshape(-1)


def pcm16_from_bytes(pcm16_bytes: bytes) -> np.ndarray:
    if len(pcm16_bytes) % 2:
        raise ValueError("PCM16 payload has an odd number of bytes")
    return np.frombuffer(pcm16_bytes, dtype="<i2").astype(np.int16)


def pcm16_to_bytes(samples: np.ndarray) -> bytes:
    return np.asarray(samples, dtype="<i2").tobytes()


def resample_pcm16(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """Linear-interpolation resample of mono int16 samples."""
    if samples.size == 0 or from_rate == to_rate:
        return samples.astype(np.int16, copy=False)

    target_len = int(round(samples.shape[0] * float(to_rate) / float(from_rate)))
    if target_len <= 0:
        return np.empty((0,), dtype=np.int16)

    src_index = np.arange(samples.shape[0], dtype=np.float64)
    tgt_index = np.linspace(0.0, samples.shape[0] - 1, num=target_len, dtype=np.float64)
    resampled = np.interp(tgt_index, src_index, samples.astype(np.float64))
    return np.clip(np.round(resampled), -32768, 32767).astype(np.int16)


def pcm16_level(samples: np.ndarray) -> float:
    """Coarse 0..1 loudness for UI meters."""
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(samples.astype(np.float64)))))
    return min(1.0, (rms / 32768.0) * 5.0)


def silence_like(pcm16_bytes: bytes) -> bytes:
    return bytes(len(pcm16_bytes))


def tone_samples(
    frequencies: Sequence[float],
    duration_s: float,
    pause_s: float,
    sample_rate: int = 44100,
    amplitude: float = 0.3,
) -> np.ndarray:
    """Sine segments with a short fade in/out, separated by silence."""
    parts: list[np.ndarray] = []
    frame_count = int(sample_rate * duration_s)
    fade = max(1, min(100, frame_count // 4))
    envelope = np.ones(frame_count, dtype=np.float32)
    envelope[:fade] = np.arange(fade, dtype=np.float32) / fade
    envelope[-fade:] = np.arange(fade, 0, -1, dtype=np.float32) / fade
    t = np.arange(frame_count, dtype=np.float32) / sample_rate

    for index, frequency in enumerate(frequencies):
        wave = amplitude * np.sin(2.0 * np.pi * frequency * t).astype(np.float32)
        parts.append(wave * envelope)
        if index < len(frequencies) - 1 and pause_s > 0:
            parts.append(np.zeros(int(sample_rate * pause_s), dtype=np.float32))

    if not parts:
        return np.zeros(0, dtype=np.float32)
    return np.concatenate(parts)
