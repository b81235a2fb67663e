from __future__ import annotations

import logging
import math

import numpy as np

from trackviz.audio.envelope import NOTE_PEAK, NOTE_SECONDS, note_envelope
from trackviz.model.types import PCMBuffer, Pattern, RenderConfig
from trackviz.util.pitch import cell_note_to_frequency
from trackviz.util.validate import validate_pattern, validate_render_config

_LOGGER = logging.getLogger("trackviz.render")

# Upper bound on partials per voice; low notes would otherwise sum thousands.
MAX_HARMONICS = 128


def saw_wave(freq_hz: float, frames: int, sample_rate: int) -> np.ndarray:
    """Band-limited sawtooth by harmonic summation, partials kept below Nyquist.

    A fundamental at or above Nyquist has no representable partials and renders silent.
    """
    t = np.arange(frames, dtype=np.float64) / float(sample_rate)
    nyquist = sample_rate * 0.5
    harmonics = min(MAX_HARMONICS, int(nyquist // freq_hz)) if freq_hz > 0 else 0

    out = np.zeros(frames, dtype=np.float64)
    phase = 2.0 * math.pi * freq_hz * t
    for k in range(1, harmonics + 1):
        sign = 1.0 if k % 2 == 1 else -1.0
        out += sign * np.sin(k * phase) / k
    return out * (2.0 / math.pi)


def render_pattern(pattern: Pattern, config: RenderConfig) -> PCMBuffer:
    """Render a pattern to a planar float32 buffer.

    Every non-silent cell triggers one enveloped sawtooth voice at the cell's own
    note. Voices are summed (no ducking, no voice limit) into every audio channel,
    then the mix is clamped to [-1, 1]. Writes past the buffer end are dropped:
    seconds_limit may cut the tail.
    """

    validate_render_config(config)
    validate_pattern(pattern)

    sr = int(config.sample_rate)
    row_dur = config.row_duration
    frames = config.frame_count(pattern.steps)

    note_frames = int(math.ceil(NOTE_SECONDS * sr))
    env_curve = note_envelope(NOTE_PEAK, NOTE_SECONDS).gains(np.arange(note_frames, dtype=np.float64) / sr)

    voices: dict[str, np.ndarray] = {}
    mix = np.zeros(frames, dtype=np.float64)

    rendered = 0
    dropped = 0
    for _c, r, ev in pattern.iter_events():
        start = int(round(r * row_dur * sr))
        if start >= frames:
            dropped += 1
            continue

        voice = voices.get(ev.pitch)
        if voice is None:
            voice = saw_wave(cell_note_to_frequency(ev.pitch), note_frames, sr) * env_curve
            voices[ev.pitch] = voice

        end = min(frames, start + note_frames)
        mix[start:end] += voice[: end - start] * (ev.velocity * float(config.master_gain))
        rendered += 1

    np.clip(mix, -1.0, 1.0, out=mix)
    mono = mix.astype(np.float32)

    _LOGGER.debug(
        "rendered %d voices (%d dropped past limit) into %d frames @ %d Hz x %d ch",
        rendered,
        dropped,
        frames,
        sr,
        config.audio_channels,
    )
    return PCMBuffer(sample_rate=sr, channel_data=tuple(mono.copy() for _ in range(int(config.audio_channels))))
