"""
Audio conversion utilities for the voice tutor.

- Microphone capture arrives as float32 mono blocks in [-1.0, 1.0]
- Recordings are sent to speech-to-text as 16-bit PCM mono WAV
- The waveform view reads an analyser-style byte window (0..255, 128 = silence)
"""

import io
import wave
from typing import Iterable

import numpy as np

DEFAULT_SAMPLE_RATE = 16000
PCM16_MAX = 32767
BYTE_CENTER = 128


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """
    Convert float32 samples to linear PCM 16-bit bytes.

    Args:
        samples: Float samples in [-1.0, 1.0] (values outside are clipped)

    Returns:
        Linear PCM 16-bit little-endian bytes
    """
    if samples is None or samples.size == 0:
        return b""

    clipped = np.clip(samples.astype(np.float32).reshape(-1), -1.0, 1.0)
    return (clipped * PCM16_MAX).astype("<i2").tobytes()


def concat_blocks(blocks: Iterable[np.ndarray]) -> np.ndarray:
    """Join captured blocks into one flat float32 array."""
    blocks = [b.reshape(-1) for b in blocks if b is not None and b.size]
    if not blocks:
        return np.zeros(0, dtype=np.float32)
    return np.concatenate(blocks).astype(np.float32)


def to_time_domain_bytes(samples: np.ndarray) -> np.ndarray:
    """
    Map float samples to unsigned bytes the way a browser analyser does.

    0.0 maps to 128, -1.0 to 0 and +1.0 to 255.
    """
    if samples.size == 0:
        return np.full(0, BYTE_CENTER, dtype=np.uint8)
    scaled = np.floor(samples.astype(np.float32) * BYTE_CENTER) + BYTE_CENTER
    return np.clip(scaled, 0, 255).astype(np.uint8)


def write_wav_mono_pcm16(pcm_bytes: bytes, sample_rate: int) -> bytes:
    """Create a mono 16-bit PCM WAV byte string from PCM bytes."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm_bytes or b"")
    return buf.getvalue()


def read_wav_mono_pcm16(wav_bytes: bytes) -> tuple[int, bytes]:
    """
    Read a WAV byte string and return (sample_rate, mono PCM16 bytes).

    - If input is stereo, it is downmixed to mono.
    - If sample width is not 16-bit, raises ValueError.
    """
    if not wav_bytes:
        raise ValueError("Empty WAV")

    with wave.open(io.BytesIO(wav_bytes), "rb") as wf:
        channels = wf.getnchannels()
        sample_width = wf.getsampwidth()
        sample_rate = wf.getframerate()
        frames = wf.readframes(wf.getnframes())

    if sample_width != 2:
        raise ValueError(f"Unsupported WAV sample width: {sample_width * 8} bits")

    if channels == 1:
        return int(sample_rate), frames

    if channels == 2:
        stereo = np.frombuffer(frames, dtype="<i2").reshape(-1, 2).astype(np.int32)
        mono = (stereo.sum(axis=1) // 2).astype("<i2")
        return int(sample_rate), mono.tobytes()

    raise ValueError(f"Unsupported WAV channel count: {channels}")


def get_audio_duration_ms(pcm_bytes: bytes, sample_rate: int = DEFAULT_SAMPLE_RATE) -> float:
    """
    Calculate the duration of PCM16 mono audio in milliseconds.

    Args:
        pcm_bytes: Linear PCM 16-bit bytes
        sample_rate: Sample rate in Hz

    Returns:
        Duration in milliseconds
    """
    if not pcm_bytes or sample_rate <= 0:
        return 0.0

    num_samples = len(pcm_bytes) // 2
    return num_samples / sample_rate * 1000


def wav_duration_ms(wav_bytes: bytes) -> float:
    if not wav_bytes:
        return 0.0
    sample_rate, pcm = read_wav_mono_pcm16(wav_bytes)
    return get_audio_duration_ms(pcm, sample_rate)
