from __future__ import annotations

import numpy as np
import pytest

from trackviz.audio.analyzer import (
    AnalyzerState,
    BandRange,
    SpectralAnalyzer,
    analyze,
    default_bands,
    mood_level,
    spectrum_columns,
)
from trackviz.util.pitch import NO_NOTE, frequency_to_note

SR = 44100
N = 2048


def _mags(**bins: float) -> np.ndarray:
    m = np.zeros(N // 2, dtype=np.float32)
    for k, v in bins.items():
        m[int(k.lstrip("b"))] = v
    return m


def test_default_bands_at_reference_size() -> None:
    assert default_bands(2048) == (
        BandRange("BASS", 0, 64),
        BandRange("MID", 65, 256),
        BandRange("HIGH", 257, 1023),
    )
    assert default_bands(1024) == (
        BandRange("BASS", 0, 32),
        BandRange("MID", 33, 128),
        BandRange("HIGH", 129, 511),
    )


def test_low_bin_energy_lands_in_bass_only() -> None:
    m = np.zeros(N // 2, dtype=np.float32)
    m[0:11] = 200.0
    res, _ = analyze(m, AnalyzerState.initial(), sample_rate=SR, fft_size=N)

    assert res.bands["BASS"].peak == pytest.approx(200.0)
    assert res.bands["BASS"].average == pytest.approx(200.0 * 11 / 65)
    assert res.bands["MID"].peak == 0.0
    assert res.bands["HIGH"].average == 0.0


def test_volume_smoothing() -> None:
    an = SpectralAnalyzer(SR, fft_size=N)
    flat = np.full(N // 2, 100.0, dtype=np.float32)
    vols = [an.update(flat).volume for _ in range(3)]
    assert vols == pytest.approx([20.0, 36.0, 48.8])


def test_peak_per_channel_uses_absolute_bin() -> None:
    per = (N // 2) // 8
    res, _ = analyze(_mags(b20=200.0, b169=120.0), AnalyzerState.initial(), sample_rate=SR, fft_size=N)

    ch0, ch1 = res.notes[0], res.notes[1]
    assert ch0.note_name == "A4"
    assert ch0.confidence is True
    assert ch0.peak_hz == pytest.approx(20 * SR / N)
    assert 128 <= 169 < 2 * per
    assert ch1.peak_hz == pytest.approx(169 * SR / N)
    assert ch1.note_name == frequency_to_note(169 * SR / N)
    for n in res.notes[2:]:
        assert n.note_name == NO_NOTE
        assert n.confidence is False


def test_noise_floor_is_inclusive() -> None:
    quiet, _ = analyze(_mags(b20=9.0), AnalyzerState.initial(), sample_rate=SR, fft_size=N)
    heard, _ = analyze(_mags(b20=10.0), AnalyzerState.initial(), sample_rate=SR, fft_size=N)
    assert quiet.notes[0].note_name == NO_NOTE
    assert heard.notes[0].note_name == "A4"


def test_frequency_smoothing() -> None:
    hz = 20 * SR / N
    an = SpectralAnalyzer(SR, fft_size=N)
    first = an.update(_mags(b20=200.0)).notes[0]
    second = an.update(_mags(b20=200.0)).notes[0]
    assert first.frequency_hz == pytest.approx(0.3 * hz)
    assert second.frequency_hz == pytest.approx(0.51 * hz)
    assert first.note_name == "A4"


def test_analyze_is_pure() -> None:
    state = AnalyzerState.initial()
    m = _mags(b20=200.0)
    a, next_a = analyze(m, state, sample_rate=SR, fft_size=N)
    b, next_b = analyze(m, state, sample_rate=SR, fft_size=N)
    assert state == AnalyzerState.initial()
    assert next_a == next_b
    assert a.volume == b.volume


def test_missing_frame_skips_tick_and_keeps_state() -> None:
    an = SpectralAnalyzer(SR, fft_size=N)
    an.update(_mags(b20=200.0))
    before = an.state
    assert an.tick(None) is None
    assert an.state == before


def test_reset_and_independent_sessions() -> None:
    a = SpectralAnalyzer(SR, fft_size=N)
    b = SpectralAnalyzer(SR, fft_size=N)
    a.update(np.full(N // 2, 50.0))
    assert b.state == AnalyzerState.initial(8)
    assert a.state.volume > 0
    a.reset()
    assert a.state == AnalyzerState.initial(8)


def test_mood_level() -> None:
    assert mood_level(0.0) == 0
    assert mood_level(-5.0) == 0
    assert mood_level(127.5) == 30
    assert mood_level(255.0) == 59
    assert mood_level(1000.0) == 59


def test_spectrum_columns() -> None:
    mags = np.array([0.0, 9.0, 255.0, 9.0, 127.5, 9.0, 300.0, 9.0])
    assert spectrum_columns(mags, 4, 10) == [0, 10, 5, 10]
    assert spectrum_columns(mags, 0, 10) == []
