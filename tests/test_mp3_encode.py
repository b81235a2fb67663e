from __future__ import annotations

import shutil

import numpy as np
import pytest

from trackviz.audio.encode import (
    FRAME_SAMPLES,
    CodecFactory,
    FfmpegMp3Codec,
    encode_mp3,
    encode_wav_to_mp3,
    ffmpeg_codec_factory,
)
from trackviz.audio.wav import encode_wav, quantize_int16
from trackviz.errors import CodecError, InvalidConfigError
from trackviz.model.types import PCMBuffer

FRAME = b"FRM!"
END = b"END!"


class FakeCodec:
    """Emits one frame per FRAME_SAMPLES samples received; flush emits the remainder plus END."""

    def __init__(self, sample_rate: int, channels: int, bitrate_kbps: int) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.bitrate_kbps = bitrate_kbps
        self.calls: list[tuple[str, int]] = []
        self.left: list[np.ndarray] = []
        self.right: list[np.ndarray] = []
        self._pending = 0

    def _emit(self, n: int) -> bytes:
        self._pending += n
        out = b""
        while self._pending >= FRAME_SAMPLES:
            self._pending -= FRAME_SAMPLES
            out += FRAME
        return out

    def encode_mono(self, chunk: np.ndarray) -> bytes:
        self.calls.append(("mono", len(chunk)))
        self.left.append(np.array(chunk))
        return self._emit(len(chunk))

    def encode_stereo(self, left: np.ndarray, right: np.ndarray) -> bytes:
        assert len(left) == len(right)
        self.calls.append(("stereo", len(left)))
        self.left.append(np.array(left))
        self.right.append(np.array(right))
        return self._emit(len(left))

    def flush(self) -> bytes:
        self.calls.append(("flush", 0))
        out = FRAME if self._pending else b""
        self._pending = 0
        return out + END


def _recording_factory(instances: list[FakeCodec]) -> CodecFactory:
    def _make(sample_rate: int, channels: int, bitrate_kbps: int) -> FakeCodec:
        c = FakeCodec(sample_rate, channels, bitrate_kbps)
        instances.append(c)
        return c

    return _make


def _buffer(frames: int, channels: int = 2, sr: int = 44100) -> PCMBuffer:
    t = np.arange(frames) / sr
    data = tuple(0.5 * np.sin(2 * np.pi * (220.0 * (c + 1)) * t) for c in range(channels))
    return PCMBuffer(sample_rate=sr, channel_data=data)


def test_chunks_are_frame_sized_and_flush_is_last() -> None:
    codecs: list[FakeCodec] = []
    out = encode_mp3(_buffer(3000), codec_factory=_recording_factory(codecs))

    assert len(codecs) == 1
    calls = codecs[0].calls
    assert calls == [("stereo", 1152), ("stereo", 1152), ("stereo", 696), ("flush", 0)]
    assert out == FRAME * 3 + END


def test_codec_gets_sample_rate_channels_and_bitrate() -> None:
    codecs: list[FakeCodec] = []
    encode_mp3(_buffer(10, channels=1, sr=22050), bitrate_kbps=192, codec_factory=_recording_factory(codecs))
    c = codecs[0]
    assert (c.sample_rate, c.channels, c.bitrate_kbps) == (22050, 1, 192)


def test_stereo_is_split_per_channel() -> None:
    frames = 2000
    buf = PCMBuffer(sample_rate=44100, channel_data=(np.full(frames, 0.5), np.full(frames, -0.5)))
    codecs: list[FakeCodec] = []
    encode_mp3(buf, codec_factory=_recording_factory(codecs))

    left = np.concatenate(codecs[0].left)
    right = np.concatenate(codecs[0].right)
    assert left.shape == (frames,)
    assert np.all(left == 16383)
    assert np.all(right == -16384)


def test_mono_uses_mono_calls_only() -> None:
    codecs: list[FakeCodec] = []
    encode_mp3(_buffer(2500, channels=1), codec_factory=_recording_factory(codecs))
    kinds = {k for k, _ in codecs[0].calls}
    assert kinds == {"mono", "flush"}
    assert codecs[0].right == []


def test_one_pass_matches_two_half_passes_up_to_one_flush() -> None:
    whole = _buffer(FRAME_SAMPLES * 2)
    halves = [
        PCMBuffer(sample_rate=whole.sample_rate, channel_data=tuple(ch[s] for ch in whole.channel_data))
        for s in (slice(0, FRAME_SAMPLES), slice(FRAME_SAMPLES, None))
    ]
    codecs: list[FakeCodec] = []
    one = encode_mp3(whole, codec_factory=_recording_factory(codecs))
    two = b"".join(encode_mp3(h, codec_factory=_recording_factory(codecs)) for h in halves)

    assert one.endswith(END)
    assert abs(len(one) - len(two)) <= len(FRAME) + len(END)


def test_each_call_gets_a_fresh_codec() -> None:
    codecs: list[FakeCodec] = []
    factory = _recording_factory(codecs)
    encode_mp3(_buffer(100), codec_factory=factory)
    encode_mp3(_buffer(100), codec_factory=factory)
    assert len(codecs) == 2
    assert codecs[0] is not codecs[1]
    assert [k for k, _ in codecs[1].calls] == ["stereo", "flush"]


def test_codec_failure_raises_codec_error() -> None:
    class Boom(FakeCodec):
        def encode_stereo(self, left: np.ndarray, right: np.ndarray) -> bytes:
            if len(self.calls) >= 1:
                raise RuntimeError("encoder exploded")
            return super().encode_stereo(left, right)

    with pytest.raises(CodecError) as ei:
        encode_mp3(_buffer(5000), codec_factory=lambda sr, ch, kbps: Boom(sr, ch, kbps))
    assert isinstance(ei.value.__cause__, RuntimeError)


def test_codec_error_from_flush_propagates() -> None:
    class BadFlush(FakeCodec):
        def flush(self) -> bytes:
            raise CodecError("flush failed")

    with pytest.raises(CodecError, match="flush failed"):
        encode_mp3(_buffer(100), codec_factory=lambda sr, ch, kbps: BadFlush(sr, ch, kbps))


def test_more_than_two_channels_is_rejected() -> None:
    with pytest.raises(InvalidConfigError):
        encode_mp3(_buffer(100, channels=3), codec_factory=_recording_factory([]))


def test_wav_bytes_are_decoded_before_encoding() -> None:
    buf = _buffer(1500)
    codecs: list[FakeCodec] = []
    out = encode_wav_to_mp3(encode_wav(buf), codec_factory=_recording_factory(codecs))
    assert out.endswith(END)

    left = np.concatenate(codecs[0].left).astype(np.int32)
    expected = quantize_int16(buf.channel_data[0]).astype(np.int32)
    assert np.max(np.abs(left - expected)) <= 1


def test_ffmpeg_codec_contract_without_binary() -> None:
    codec = FfmpegMp3Codec(8000, 1, ffmpeg="trackviz-no-such-ffmpeg")
    with pytest.raises(CodecError):
        codec.encode_stereo(np.zeros(4, dtype=np.int16), np.zeros(4, dtype=np.int16))
    assert codec.encode_mono(np.zeros(4, dtype=np.int16)) == b""
    with pytest.raises(CodecError, match="not found"):
        codec.flush()
    assert codec.flush() == b""
    with pytest.raises(CodecError):
        codec.encode_mono(np.zeros(4, dtype=np.int16))


def test_missing_ffmpeg_surfaces_as_codec_error() -> None:
    with pytest.raises(CodecError):
        encode_mp3(_buffer(100), codec_factory=ffmpeg_codec_factory("trackviz-no-such-ffmpeg"))


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
def test_ffmpeg_produces_mp3_stream() -> None:
    data = encode_mp3(_buffer(44100), bitrate_kbps=128, codec_factory=ffmpeg_codec_factory("ffmpeg"))
    assert len(data) > 1000
    assert data[:3] == b"ID3" or (data[0] == 0xFF and (data[1] & 0xE0) == 0xE0)
