from __future__ import annotations

import wave
from pathlib import Path

import numpy as np

from viralfit.models import AudioEnergy


def measure_audio_energy(
    audio_path: Path,
    hook_window_seconds: float,
    frame_seconds: float = 0.5,
) -> AudioEnergy:
    """Summarize RMS loudness overall and inside the hook window."""

    samples, sample_rate = _read_wav_mono(audio_path)
    frame_size = max(int(round(sample_rate * max(frame_seconds, 0.1))), 1)
    starts, rms_values = _frame_rms(samples, sample_rate, frame_size)

    if len(rms_values) == 0:
        return AudioEnergy(mean_rms=0.0, hook_rms=0.0, peak_rms=0.0, spike_count=0)

    baseline = float(np.median(rms_values))
    scale = float(np.std(rms_values))
    threshold = baseline + max(scale * 2.0, 0.02)

    hook_values = rms_values[starts < hook_window_seconds]
    return AudioEnergy(
        mean_rms=round(float(np.mean(rms_values)), 6),
        hook_rms=round(float(np.mean(hook_values)), 6) if len(hook_values) else 0.0,
        peak_rms=round(float(np.max(rms_values)), 6),
        spike_count=int(np.sum(rms_values >= threshold)),
    )


def _read_wav_mono(path: Path) -> tuple[np.ndarray, int]:
    with wave.open(str(path), "rb") as wav_file:
        channels = wav_file.getnchannels()
        sample_rate = int(wav_file.getframerate())
        sample_width = wav_file.getsampwidth()
        frames = wav_file.readframes(wav_file.getnframes())

    if sample_width != 2:
        raise ValueError("Only 16-bit PCM WAV input is supported for loudness analysis.")

    samples = np.frombuffer(frames, dtype=np.int16)
    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1).astype(np.int16)

    return samples.astype(np.float32) / 32768.0, sample_rate


def _frame_rms(samples: np.ndarray, sample_rate: int, frame_size: int) -> tuple[np.ndarray, np.ndarray]:
    if sample_rate <= 0 or len(samples) == 0:
        return np.array([], dtype=np.float64), np.array([], dtype=np.float64)

    starts: list[float] = []
    values: list[float] = []
    for start in range(0, len(samples), frame_size):
        segment = samples[start : start + frame_size]
        if len(segment) == 0:
            continue
        starts.append(start / sample_rate)
        values.append(float(np.sqrt(np.mean(np.square(segment)))))

    return np.array(starts, dtype=np.float64), np.array(values, dtype=np.float64)
