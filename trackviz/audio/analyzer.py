from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

import numpy as np

from trackviz.audio.fft import DEFAULT_FFT_SIZE, bin_frequency
from trackviz.model.types import FloatArray
from trackviz.util.pitch import NO_NOTE, frequency_to_note

_LOGGER = logging.getLogger("trackviz.analyzer")

# Smoothing blends: previous * keep + current * (1 - keep).
VOLUME_KEEP = 0.8
FREQ_KEEP = 0.7

# Peak magnitude below this (0..255 analyser scale) reports no note.
NOISE_FLOOR = 10.0
DEFAULT_CHANNELS = 8

# Band edges in bins at the reference fft size; scaled for other sizes.
REFERENCE_FFT_SIZE = 2048
BASS_TOP_BIN = 64
MID_TOP_BIN = 256

# Full scale of byte spectra, used by the level helpers below.
FULL_SCALE = 255.0
DEFAULT_MOOD_LEVELS = 60


@dataclass(frozen=True)
class BandRange:
    name: str
    lo: int  # inclusive
    hi: int  # inclusive


@dataclass(frozen=True)
class BandEnergy:
    average: float
    peak: float


@dataclass(frozen=True)
class SpectralFrame:
    magnitudes: FloatArray
    bin_width_hz: float

    @property
    def bins(self) -> int:
        return int(self.magnitudes.shape[0])


@dataclass(frozen=True)
class NoteDetection:
    channel: int
    frequency_hz: float  # smoothed
    note_name: str
    confidence: bool
    peak_hz: float = 0.0
    peak_magnitude: float = 0.0


@dataclass(frozen=True)
class AnalyzerState:
    """Smoothed values carried from one tick to the next."""

    volume: float = 0.0
    channel_freqs: tuple[float, ...] = field(default_factory=tuple)

    @staticmethod
    def initial(channels: int = DEFAULT_CHANNELS) -> "AnalyzerState":
        return AnalyzerState(volume=0.0, channel_freqs=(0.0,) * int(channels))


@dataclass(frozen=True)
class AnalysisResult:
    frame: SpectralFrame
    bands: dict[str, BandEnergy]
    volume: float
    instantaneous_volume: float
    notes: tuple[NoteDetection, ...]


def default_bands(fft_size: int = DEFAULT_FFT_SIZE) -> tuple[BandRange, ...]:
    """BASS / MID / HIGH bin ranges; 0-64, 65-256, 257-1023 at fft_size 2048."""
    scale = float(fft_size) / REFERENCE_FFT_SIZE
    top = max(0, int(fft_size) // 2 - 1)
    bass_hi = min(top, max(0, int(round(BASS_TOP_BIN * scale))))
    mid_hi = min(top, max(bass_hi + 1, int(round(MID_TOP_BIN * scale))))
    return (
        BandRange("BASS", 0, bass_hi),
        BandRange("MID", bass_hi + 1, mid_hi),
        BandRange("HIGH", mid_hi + 1, top),
    )


def band_energies(magnitudes: FloatArray | np.ndarray, bands: tuple[BandRange, ...]) -> dict[str, BandEnergy]:
    mags = np.asarray(magnitudes, dtype=np.float64)
    out: dict[str, BandEnergy] = {}
    for b in bands:
        seg = mags[b.lo : b.hi + 1]
        if seg.size == 0:
            out[b.name] = BandEnergy(average=0.0, peak=0.0)
            continue
        out[b.name] = BandEnergy(average=float(seg.mean()), peak=float(seg.max()))
    return out


def detect_channel_peaks(
    magnitudes: FloatArray | np.ndarray,
    *,
    channels: int,
    sample_rate: int,
    fft_size: int,
) -> list[tuple[float, float]]:
    """Split the spectrum into equal contiguous slices and return (peak_hz, peak_magnitude) per slice.

    Ties resolve to the lowest bin. Trailing bins that don't fill a slice are ignored.
    """
    mags = np.asarray(magnitudes, dtype=np.float64)
    per = mags.shape[0] // channels if channels > 0 else 0
    out: list[tuple[float, float]] = []
    for c in range(channels):
        if per <= 0:
            out.append((0.0, 0.0))
            continue
        seg = mags[c * per : (c + 1) * per]
        local = int(np.argmax(seg))
        out.append((bin_frequency(c * per + local, sample_rate, fft_size), float(seg[local])))
    return out


def analyze(
    magnitudes: FloatArray | np.ndarray,
    state: AnalyzerState,
    *,
    sample_rate: int,
    fft_size: int = DEFAULT_FFT_SIZE,
    channels: int = DEFAULT_CHANNELS,
    noise_floor: float = NOISE_FLOOR,
    bands: tuple[BandRange, ...] | None = None,
) -> tuple[AnalysisResult, AnalyzerState]:
    """One analysis tick. Pure: the next state is returned, never stored."""

    mags = np.asarray(magnitudes, dtype=np.float32).reshape(-1)
    frame = SpectralFrame(magnitudes=mags, bin_width_hz=float(sample_rate) / float(fft_size))

    instantaneous = float(mags.mean()) if mags.size else 0.0
    volume = state.volume * VOLUME_KEEP + instantaneous * (1.0 - VOLUME_KEEP)

    prev = state.channel_freqs if len(state.channel_freqs) == channels else (0.0,) * channels
    peaks = detect_channel_peaks(mags, channels=channels, sample_rate=sample_rate, fft_size=fft_size)

    notes: list[NoteDetection] = []
    freqs: list[float] = []
    for c, (peak_hz, peak_mag) in enumerate(peaks):
        smoothed = prev[c] * FREQ_KEEP + peak_hz * (1.0 - FREQ_KEEP)
        freqs.append(smoothed)
        heard = peak_mag >= noise_floor
        notes.append(
            NoteDetection(
                channel=c,
                frequency_hz=smoothed,
                note_name=frequency_to_note(peak_hz) if heard else NO_NOTE,
                confidence=heard,
                peak_hz=peak_hz,
                peak_magnitude=peak_mag,
            )
        )

    result = AnalysisResult(
        frame=frame,
        bands=band_energies(mags, bands if bands is not None else default_bands(fft_size)),
        volume=volume,
        instantaneous_volume=instantaneous,
        notes=tuple(notes),
    )
    return result, AnalyzerState(volume=volume, channel_freqs=tuple(freqs))


class SpectralAnalyzer:
    """Per-session analyzer: owns one AnalyzerState and threads it through analyze()."""

    def __init__(
        self,
        sample_rate: int,
        *,
        fft_size: int = DEFAULT_FFT_SIZE,
        channels: int = DEFAULT_CHANNELS,
        noise_floor: float = NOISE_FLOOR,
        bands: tuple[BandRange, ...] | None = None,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.fft_size = int(fft_size)
        self.channels = int(channels)
        self.noise_floor = float(noise_floor)
        self.bands = bands if bands is not None else default_bands(self.fft_size)
        self._state = AnalyzerState.initial(self.channels)

    @property
    def state(self) -> AnalyzerState:
        return self._state

    def update(self, magnitudes: FloatArray | np.ndarray) -> AnalysisResult:
        result, self._state = analyze(
            magnitudes,
            self._state,
            sample_rate=self.sample_rate,
            fft_size=self.fft_size,
            channels=self.channels,
            noise_floor=self.noise_floor,
            bands=self.bands,
        )
        return result

    def tick(self, magnitudes: FloatArray | np.ndarray | None) -> AnalysisResult | None:
        """Analyze when a frame is available; a missing frame skips the tick."""
        if magnitudes is None:
            return None
        return self.update(magnitudes)

    def reset(self) -> None:
        _LOGGER.debug("analyzer state reset")
        self._state = AnalyzerState.initial(self.channels)


def mood_level(volume: float, levels: int = DEFAULT_MOOD_LEVELS, *, full_scale: float = FULL_SCALE) -> int:
    """Index into a table of `levels` moods, calm (0) to chaotic (levels - 1)."""
    if levels <= 0 or not math.isfinite(volume) or volume <= 0:
        return 0
    return min(levels - 1, int(math.floor(volume / full_scale * levels)))


def spectrum_columns(
    magnitudes: FloatArray | np.ndarray,
    columns: int,
    rows: int,
    *,
    full_scale: float = FULL_SCALE,
) -> list[int]:
    """Bar height (0..rows) per text column, sampling every len // columns-th bin."""
    mags = np.asarray(magnitudes, dtype=np.float64).reshape(-1)
    if columns <= 0 or rows <= 0 or mags.size == 0:
        return []
    step = mags.shape[0] // columns
    heights: list[int] = []
    for x in range(columns):
        value = float(mags[min(x * step, mags.shape[0] - 1)])
        h = int(math.floor(value / full_scale * rows))
        heights.append(max(0, min(rows, h)))
    return heights
