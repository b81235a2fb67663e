from __future__ import annotations

import logging
import subprocess
from typing import Callable, Protocol

import numpy as np

from trackviz.audio.decode import decode_wav
from trackviz.audio.wav import quantize_int16
from trackviz.errors import CodecError, InvalidConfigError
from trackviz.model.types import PCMBuffer

_LOGGER = logging.getLogger("trackviz.encode")

# MPEG-1 Layer III frame granularity, samples per channel.
FRAME_SAMPLES = 1152
DEFAULT_BITRATE_KBPS = 128


class Mp3Codec(Protocol):
    """Stateful perceptual codec. Calls must arrive in chunk order from one caller."""

    def encode_mono(self, chunk: np.ndarray) -> bytes:
        ...

    def encode_stereo(self, left: np.ndarray, right: np.ndarray) -> bytes:
        ...

    def flush(self) -> bytes:
        ...


CodecFactory = Callable[[int, int, int], Mp3Codec]


class FfmpegMp3Codec:
    """libmp3lame through the ffmpeg binary.

    ffmpeg consumes the whole stream in one run, so chunk calls only stage PCM
    and return no bytes; flush() runs the encoder and returns the full stream.
    """

    def __init__(self, sample_rate: int, channels: int, bitrate_kbps: int = DEFAULT_BITRATE_KBPS, *, ffmpeg: str = "ffmpeg") -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.bitrate_kbps = int(bitrate_kbps)
        self.ffmpeg = ffmpeg
        self._pcm = bytearray()
        self._flushed = False

    def _stage(self, interleaved: np.ndarray) -> bytes:
        if self._flushed:
            raise CodecError("codec already flushed")
        self._pcm += np.asarray(interleaved, dtype="<i2").tobytes()
        return b""

    def encode_mono(self, chunk: np.ndarray) -> bytes:
        if self.channels != 1:
            raise CodecError("mono chunk sent to a stereo codec")
        return self._stage(chunk)

    def encode_stereo(self, left: np.ndarray, right: np.ndarray) -> bytes:
        if self.channels != 2:
            raise CodecError("stereo chunk sent to a mono codec")
        return self._stage(np.stack([np.asarray(left), np.asarray(right)], axis=1).reshape(-1))

    def flush(self) -> bytes:
        if self._flushed:
            return b""
        self._flushed = True
        cmd = [
            self.ffmpeg,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "s16le",
            "-ar",
            str(self.sample_rate),
            "-ac",
            str(self.channels),
            "-i",
            "pipe:0",
            "-codec:a",
            "libmp3lame",
            "-b:a",
            f"{self.bitrate_kbps}k",
            "-f",
            "mp3",
            "pipe:1",
        ]
        try:
            p = subprocess.run(cmd, input=bytes(self._pcm), stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=True)
        except FileNotFoundError as e:
            raise CodecError(f"ffmpeg not found ({self.ffmpeg}); needed for MP3 encodes") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or b"").decode("utf-8", "replace").strip()
            raise CodecError(f"ffmpeg MP3 encode failed: {detail}") from e
        finally:
            self._pcm = bytearray()
        return p.stdout


def ffmpeg_codec_factory(ffmpeg: str = "ffmpeg") -> CodecFactory:
    def _make(sample_rate: int, channels: int, bitrate_kbps: int) -> Mp3Codec:
        return FfmpegMp3Codec(sample_rate, channels, bitrate_kbps, ffmpeg=ffmpeg)

    return _make


def encode_mp3(
    buffer: PCMBuffer,
    *,
    bitrate_kbps: int = DEFAULT_BITRATE_KBPS,
    codec_factory: CodecFactory | None = None,
) -> bytes:
    """Encode a buffer to an MP3 byte stream.

    Samples are quantized to int16, split per channel and fed to a fresh codec
    instance FRAME_SAMPLES at a time, in order, followed by exactly one flush.
    Fragments are concatenated in call order. Any codec failure raises CodecError
    and nothing is returned.
    """

    if buffer.channels not in {1, 2}:
        raise InvalidConfigError(f"MP3 supports 1 or 2 channels, got {buffer.channels}")

    factory = codec_factory or ffmpeg_codec_factory()
    codec = factory(int(buffer.sample_rate), buffer.channels, int(bitrate_kbps))

    left = quantize_int16(buffer.channel_data[0])
    right = quantize_int16(buffer.channel_data[1]) if buffer.channels == 2 else None

    fragments: list[bytes] = []
    try:
        for i in range(0, buffer.frame_count, FRAME_SAMPLES):
            if right is None:
                out = codec.encode_mono(left[i : i + FRAME_SAMPLES])
            else:
                out = codec.encode_stereo(left[i : i + FRAME_SAMPLES], right[i : i + FRAME_SAMPLES])
            if out:
                fragments.append(bytes(out))
        tail = codec.flush()
        if tail:
            fragments.append(bytes(tail))
    except CodecError:
        _LOGGER.warning("MP3 codec failed after %d fragments; discarding output", len(fragments))
        raise
    except Exception as e:
        _LOGGER.warning("MP3 codec failed after %d fragments; discarding output", len(fragments))
        raise CodecError(f"MP3 codec failed: {e}") from e

    out_bytes = b"".join(fragments)
    _LOGGER.debug(
        "encoded MP3: %d frames x %d ch @ %d Hz, %d kbps -> %d bytes",
        buffer.frame_count,
        buffer.channels,
        buffer.sample_rate,
        bitrate_kbps,
        len(out_bytes),
    )
    return out_bytes


def encode_wav_to_mp3(
    wav_bytes: bytes,
    *,
    bitrate_kbps: int = DEFAULT_BITRATE_KBPS,
    codec_factory: CodecFactory | None = None,
) -> bytes:
    """Decode a WAV stream, then MP3-encode it. Raises DecodeError on bad input."""
    return encode_mp3(decode_wav(wav_bytes), bitrate_kbps=bitrate_kbps, codec_factory=codec_factory)
