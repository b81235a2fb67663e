from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import numpy as np

from trackviz.audio.analyzer import AnalysisResult, SpectralAnalyzer
from trackviz.audio.fft import SpectrumFn, make_byte_spectrum
from trackviz.model.types import PCMBuffer

_LOGGER = logging.getLogger("trackviz.transport")


class LiveSource(Protocol):
    """Playing audio handle. stop() is idempotent; start_at() returns a fresh, playing handle."""

    def offset(self) -> float:
        ...

    def duration(self) -> float:
        ...

    def start_at(self, offset: float) -> "LiveSource":
        ...

    def stop(self) -> None:
        ...

    def read_frame(self, size: int) -> np.ndarray | None:
        ...


class BufferSource:
    """Plays a PCMBuffer against a monotonic clock.

    read_frame() returns the mono window ending at the playback position, or None
    when stopped, finished, or when the position hasn't advanced since the last read.
    """

    def __init__(self, buffer: PCMBuffer, *, start_offset: float = 0.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.buffer = buffer
        self._clock = clock
        self._mono = buffer.mono()
        offset = max(0.0, min(float(start_offset), buffer.duration_seconds))
        self._origin = clock() - offset
        self._stopped_at: float | None = None
        self._last_frame = -1

    @property
    def stopped(self) -> bool:
        return self._stopped_at is not None

    def duration(self) -> float:
        return self.buffer.duration_seconds

    def offset(self) -> float:
        if self._stopped_at is not None:
            return self._stopped_at
        return max(0.0, min(self._clock() - self._origin, self.duration()))

    def start_at(self, offset: float) -> "BufferSource":
        return BufferSource(self.buffer, start_offset=offset, clock=self._clock)

    def stop(self) -> None:
        if self._stopped_at is None:
            self._stopped_at = self.offset()

    def read_frame(self, size: int) -> np.ndarray | None:
        if self.stopped:
            return None
        elapsed = self._clock() - self._origin
        if elapsed >= self.duration():
            return None
        pos = int(elapsed * self.buffer.sample_rate)
        if pos <= 0 or pos == self._last_frame:
            return None
        self._last_frame = pos
        return self._mono[max(0, pos - int(size)) : pos]


@dataclass(frozen=True)
class PlaybackProgress:
    elapsed: float
    duration: float

    @property
    def fraction(self) -> float:
        if self.duration <= 0:
            return 0.0
        return min(self.elapsed / self.duration, 1.0)


def format_clock(seconds: float) -> str:
    """m:ss, e.g. 75.4 -> "1:15"."""
    s = max(0.0, float(seconds)) if math.isfinite(seconds) else 0.0
    return f"{int(s // 60)}:{int(s % 60):02d}"


class Monitor:
    """Binds one live source to one SpectralAnalyzer.

    Swapping sources (play/seek/stop) happens under a lock so a tick never sees a
    half-rebound pair.
    """

    def __init__(self, analyzer: SpectralAnalyzer, *, spectrum: SpectrumFn | None = None) -> None:
        self.analyzer = analyzer
        self.spectrum = spectrum or make_byte_spectrum(analyzer.fft_size)
        self._source: LiveSource | None = None
        self._lock = threading.Lock()

    @property
    def source(self) -> LiveSource | None:
        return self._source

    def play(self, source: LiveSource) -> None:
        with self._lock:
            if self._source is not None:
                self._source.stop()
            self._source = source

    def seek(self, seconds: float) -> LiveSource | None:
        """Stop the active source, start a new one at `seconds`, rebind analysis to it."""
        with self._lock:
            old = self._source
            if old is None:
                return None
            old.stop()
            target = max(0.0, min(float(seconds), old.duration()))
            self._source = old.start_at(target)
            _LOGGER.debug("seek to %.3fs", target)
            return self._source

    def seek_fraction(self, fraction: float) -> LiveSource | None:
        src = self._source
        if src is None:
            return None
        return self.seek(max(0.0, min(1.0, float(fraction))) * src.duration())

    def stop(self) -> None:
        with self._lock:
            if self._source is not None:
                self._source.stop()
            self._source = None
            self.analyzer.reset()

    def progress(self) -> PlaybackProgress:
        src = self._source
        if src is None:
            return PlaybackProgress(elapsed=0.0, duration=0.0)
        return PlaybackProgress(elapsed=src.offset(), duration=src.duration())

    def tick(self) -> AnalysisResult | None:
        """Analyze the newest frame; returns None (skipped tick) when nothing new is available."""
        with self._lock:
            src = self._source
            if src is None:
                return None
            frame = src.read_frame(self.analyzer.fft_size)
            if frame is None:
                return None
            return self.analyzer.tick(self.spectrum(frame))
