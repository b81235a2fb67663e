from __future__ import annotations

import io
import logging
import struct
import subprocess
import tempfile
import wave
from pathlib import Path

import numpy as np

from trackviz.audio.wav import dequantize_int16
from trackviz.errors import DecodeError
from trackviz.model.types import PCMBuffer

_LOGGER = logging.getLogger("trackviz.decode")


def _pcm_to_float(data: bytes, sample_width: int) -> np.ndarray:
    if sample_width == 1:
        # 8-bit WAV is unsigned with 128 as zero.
        return (np.frombuffer(data, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    if sample_width == 2:
        return dequantize_int16(np.frombuffer(data, dtype="<i2"))
    if sample_width == 3:
        raw = np.frombuffer(data[: len(data) - len(data) % 3], dtype=np.uint8).reshape(-1, 3).astype(np.int32)
        v = raw[:, 0] | (raw[:, 1] << 8) | (raw[:, 2] << 16)
        v = np.where(v >= 1 << 23, v - (1 << 24), v)
        return (v / float(1 << 23)).astype(np.float32)
    if sample_width == 4:
        return (np.frombuffer(data, dtype="<i4") / float(1 << 31)).astype(np.float32)
    raise DecodeError(f"unsupported PCM sample width: {sample_width} bytes")


def _split_channels(samples: np.ndarray, channels: int, sample_rate: int) -> PCMBuffer:
    if channels <= 0:
        raise DecodeError(f"invalid channel count: {channels}")
    usable = samples.shape[0] - samples.shape[0] % channels
    frames = samples[:usable].reshape(-1, channels)
    return PCMBuffer(
        sample_rate=int(sample_rate),
        channel_data=tuple(np.ascontiguousarray(frames[:, c]) for c in range(channels)),
    )


def _decode_riff_float(data: bytes) -> PCMBuffer:
    """Minimal RIFF walk for IEEE float WAVs (format tag 3), which `wave` rejects."""
    if len(data) < 12 or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise DecodeError("invalid WAV header")

    fmt_chunk: bytes | None = None
    data_chunk: bytes | None = None
    pos = 12
    while pos + 8 <= len(data):
        cid = data[pos : pos + 4]
        size = struct.unpack("<I", data[pos + 4 : pos + 8])[0]
        payload = data[pos + 8 : pos + 8 + size]
        if cid == b"fmt ":
            fmt_chunk = payload
        elif cid == b"data":
            data_chunk = payload
        # chunks are padded to even length
        pos += 8 + size + (size % 2)

    if fmt_chunk is None or data_chunk is None or len(fmt_chunk) < 16:
        raise DecodeError("missing or invalid fmt/data chunk in WAV")

    fmt_tag, ch, sr, _byte_rate, _block_align, bits = struct.unpack("<HHIIHH", fmt_chunk[:16])
    if fmt_tag != 3:
        raise DecodeError(f"unsupported WAV format tag: {fmt_tag}")
    if bits == 32:
        samples = np.frombuffer(data_chunk[: len(data_chunk) - len(data_chunk) % 4], dtype="<f4")
    elif bits == 64:
        samples = np.frombuffer(data_chunk[: len(data_chunk) - len(data_chunk) % 8], dtype="<f8")
    else:
        raise DecodeError(f"unsupported float WAV bit depth: {bits}")
    return _split_channels(samples.astype(np.float32), ch, sr)


def decode_wav(data: bytes) -> PCMBuffer:
    """Decode WAV bytes (PCM 8/16/24/32-bit or IEEE float) into a planar buffer."""
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            ch = wf.getnchannels()
            sw = wf.getsampwidth()
            sr = wf.getframerate()
            frames = wf.readframes(wf.getnframes())
    except wave.Error as e:
        if "unknown format: 3" in str(e):
            return _decode_riff_float(data)
        raise DecodeError(f"cannot decode WAV: {e}") from e
    except EOFError as e:
        raise DecodeError("cannot decode WAV: truncated stream") from e

    buf = _split_channels(_pcm_to_float(frames, sw), ch, sr)
    _LOGGER.debug("decoded WAV: %d frames x %d ch @ %d Hz", buf.frame_count, buf.channels, buf.sample_rate)
    return buf


def decode_audio_file(path: str | Path, *, ffmpeg: str = "ffmpeg") -> PCMBuffer:
    """Load any audio file into a buffer.

    WAV files are parsed in-process; anything else (mp3, ogg, flac, ...) is converted
    to PCM16 WAV with ffmpeg first.
    """
    p = Path(path)
    if not p.is_file():
        raise DecodeError(f"audio file not found: {p}")

    if p.suffix.lower() == ".wav":
        return decode_wav(p.read_bytes())

    with tempfile.TemporaryDirectory(prefix="trackviz_decode_") as td:
        out = Path(td) / "decoded.wav"
        cmd = [ffmpeg, "-y", "-hide_banner", "-loglevel", "error", "-i", str(p), "-acodec", "pcm_s16le", str(out)]
        try:
            subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except FileNotFoundError as e:
            raise DecodeError(f"ffmpeg not found ({ffmpeg}); needed to decode {p.suffix} files") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or b"").decode("utf-8", "replace").strip()
            raise DecodeError(f"ffmpeg could not decode {p}: {detail}") from e
        return decode_wav(out.read_bytes())
