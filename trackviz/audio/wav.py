from __future__ import annotations

import io
import logging
import wave
from pathlib import Path

import numpy as np

from trackviz.model.types import FloatArray, PCMBuffer

_LOGGER = logging.getLogger("trackviz.wav")

SAMPLE_WIDTH = 2  # bytes; 16-bit PCM only


def quantize_int16(samples: FloatArray | np.ndarray) -> np.ndarray:
    """Clamp to [-1, 1], scale negatives by 32768 and positives by 32767, truncate toward zero.

    The asymmetric scale spans the full int16 range without overflow. NaN maps to
    silence and infinities to full scale.
    """
    s = np.nan_to_num(np.asarray(samples, dtype=np.float64), nan=0.0, posinf=1.0, neginf=-1.0)
    s = np.clip(s, -1.0, 1.0)
    scaled = np.where(s < 0.0, s * 32768.0, s * 32767.0)
    return np.trunc(scaled).astype(np.int16)


def dequantize_int16(samples: np.ndarray) -> FloatArray:
    """Inverse of quantize_int16 (up to truncation)."""
    v = np.asarray(samples, dtype=np.float64)
    return np.where(v < 0.0, v / 32768.0, v / 32767.0).astype(np.float32)


def interleave_int16(buffer: PCMBuffer) -> np.ndarray:
    """Frame-major int16 samples: L0 R0 L1 R1 ..."""
    planar = np.stack([quantize_int16(ch) for ch in buffer.channel_data], axis=1)
    return planar.reshape(-1)


def encode_wav(buffer: PCMBuffer) -> bytes:
    """Encode a buffer as a canonical 44-byte-header PCM16 WAV stream."""
    data = interleave_int16(buffer).astype("<i2").tobytes()

    bio = io.BytesIO()
    with wave.open(bio, "wb") as wf:
        wf.setnchannels(buffer.channels)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(int(buffer.sample_rate))
        wf.writeframes(data)
    out = bio.getvalue()

    _LOGGER.debug(
        "encoded WAV: %d frames x %d ch @ %d Hz (%d bytes)",
        buffer.frame_count,
        buffer.channels,
        buffer.sample_rate,
        len(out),
    )
    return out


def write_wav(path: str | Path, buffer: PCMBuffer) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(encode_wav(buffer))
    return p
