from __future__ import annotations

from typing import Callable

import numpy as np

from trackviz.errors import InvalidConfigError
from trackviz.model.types import FloatArray

# Frame (fft_size time-domain samples) -> fft_size // 2 magnitudes.
SpectrumFn = Callable[[np.ndarray], FloatArray]

DEFAULT_FFT_SIZE = 2048

# Decibel window mapped onto the 0..255 byte scale (browser analyser defaults).
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


def _check_fft_size(fft_size: int) -> int:
    n = int(fft_size)
    if n < 32 or n > 32768 or (n & (n - 1)) != 0:
        raise InvalidConfigError(f"fft_size must be a power of two in 32..32768, got {fft_size}")
    return n


def _fit_frame(frame: np.ndarray, n: int) -> np.ndarray:
    x = np.asarray(frame, dtype=np.float64).reshape(-1)
    if x.shape[0] >= n:
        return x[-n:]
    # Short frames are left-padded so the newest samples stay at the end.
    return np.concatenate([np.zeros(n - x.shape[0]), x])


def make_magnitude_spectrum(fft_size: int = DEFAULT_FFT_SIZE) -> SpectrumFn:
    """Blackman-windowed real FFT, linear magnitudes normalized by fft_size."""
    n = _check_fft_size(fft_size)
    window = np.blackman(n)

    def _spectrum(frame: np.ndarray) -> FloatArray:
        x = _fit_frame(frame, n) * window
        mags = np.abs(np.fft.rfft(x))[: n // 2] / n
        return mags.astype(np.float32)

    return _spectrum


def make_byte_spectrum(
    fft_size: int = DEFAULT_FFT_SIZE,
    *,
    min_db: float = MIN_DECIBELS,
    max_db: float = MAX_DECIBELS,
) -> SpectrumFn:
    """Magnitudes on a 0..255 decibel scale, the scale the analyzer's noise floor assumes."""
    if not max_db > min_db:
        raise InvalidConfigError("max_db must be greater than min_db")
    linear = make_magnitude_spectrum(fft_size)

    def _spectrum(frame: np.ndarray) -> FloatArray:
        mags = linear(frame).astype(np.float64)
        db = 20.0 * np.log10(np.maximum(mags, 1e-12))
        scaled = (db - min_db) * (255.0 / (max_db - min_db))
        return np.floor(np.clip(scaled, 0.0, 255.0)).astype(np.float32)

    return _spectrum


def bin_frequency(bin_index: int, sample_rate: int, fft_size: int) -> float:
    return bin_index * float(sample_rate) / float(fft_size)
