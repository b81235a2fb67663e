from __future__ import annotations

from bisect import bisect_right
from collections.abc import Sequence

import numpy as np

from trackviz.errors import InvalidConfigError
from trackviz.model.types import FloatArray

# Reference synthesized note: short pluck, 120 ms long, peaking at 0.12.
NOTE_SECONDS = 0.12
NOTE_PEAK = 0.12
ATTACK_SECONDS = 0.005
DECAY_RATIO = 0.25


class Envelope:
    """Piecewise-linear gain curve over (time_offset_seconds, gain) breakpoints.

    0 before the first breakpoint, holds the last gain after the last one.
    """

    def __init__(self, breakpoints: Sequence[tuple[float, float]]) -> None:
        points = [(float(t), float(g)) for t, g in breakpoints]
        if not points:
            raise InvalidConfigError("envelope needs at least one breakpoint")
        if points[0][1] != 0.0:
            raise InvalidConfigError("envelope must start at gain 0")
        for (t0, _), (t1, _) in zip(points, points[1:]):
            if not t1 > t0:
                raise InvalidConfigError(f"envelope breakpoints must be strictly increasing in time ({t0} -> {t1})")
        self._times = [t for t, _ in points]
        self._gains = [g for _, g in points]

    @property
    def breakpoints(self) -> list[tuple[float, float]]:
        return list(zip(self._times, self._gains))

    @property
    def duration(self) -> float:
        return self._times[-1]

    def gain_at(self, t: float) -> float:
        t = float(t)
        if t < self._times[0]:
            return 0.0
        if t >= self._times[-1]:
            return self._gains[-1]
        i = bisect_right(self._times, t) - 1
        t0, t1 = self._times[i], self._times[i + 1]
        g0, g1 = self._gains[i], self._gains[i + 1]
        return g0 + (g1 - g0) * ((t - t0) / (t1 - t0))

    def gains(self, times: FloatArray | np.ndarray) -> np.ndarray:
        """Vectorized gain_at over an array of offsets."""
        return np.interp(
            np.asarray(times, dtype=np.float64),
            self._times,
            self._gains,
            left=0.0,
            right=self._gains[-1],
        )


def note_envelope(peak: float = NOTE_PEAK, duration: float = NOTE_SECONDS) -> Envelope:
    """Attack to peak by 5 ms, decay to a quarter of peak at half duration, release to 0."""
    return Envelope(
        [
            (0.0, 0.0),
            (ATTACK_SECONDS, peak),
            (duration * 0.5, peak * DECAY_RATIO),
            (duration, 0.0),
        ]
    )
