from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.typing import NDArray

from trackviz.util.pitch import NO_NOTE, normalize_cell_note

FloatArray = NDArray[np.float32]

# Tracker volume column is hex 00..40; 0x40 is full velocity.
VOLUME_COLUMN_MAX = 0x40


@dataclass(frozen=True)
class NoteEvent:
    """One pattern cell.

    pitch is tracker notation ("C-4", "C#4") or None for silence.
    Events are immutable; editors replace a cell wholesale.
    """

    pitch: str | None = None
    instrument: int | None = None
    velocity: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "pitch", normalize_cell_note(self.pitch))
        v = float(self.velocity)
        if not (0.0 <= v <= 1.0):
            raise ValueError(f"velocity out of range: {self.velocity}")
        object.__setattr__(self, "velocity", v)
        if self.instrument is not None and not (0 <= int(self.instrument) <= 127):
            raise ValueError(f"instrument out of range: {self.instrument}")

    @property
    def is_silent(self) -> bool:
        return self.pitch is None

    def to_text(self) -> str:
        """Tracker cell text, e.g. "C-4 01 40" or "--- .. .."."""
        note = self.pitch or "---"
        instr = f"{int(self.instrument):02d}" if self.instrument is not None else ".."
        vol = f"{int(round(self.velocity * VOLUME_COLUMN_MAX)):02X}"
        if self.pitch is None and self.velocity == 1.0:
            vol = ".."
        return f"{note} {instr} {vol}"

    @staticmethod
    def from_text(text: str) -> "NoteEvent":
        parts = str(text).split()
        if not parts:
            return NoteEvent()
        if len(parts) > 3:
            raise ValueError(f"invalid cell: {text!r}")
        note = parts[0]
        instrument: int | None = None
        velocity = 1.0
        if len(parts) >= 2 and parts[1].strip(".") and parts[1] != "--":
            instrument = int(parts[1])
        if len(parts) == 3 and parts[2].strip(".") and parts[2] != "--":
            raw = int(parts[2], 16)
            velocity = max(0, min(VOLUME_COLUMN_MAX, raw)) / float(VOLUME_COLUMN_MAX)
        return NoteEvent(pitch=note, instrument=instrument, velocity=velocity)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"note": self.pitch or NO_NOTE}
        if self.instrument is not None:
            d["instrument"] = int(self.instrument)
        if self.velocity != 1.0:
            d["velocity"] = float(self.velocity)
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "NoteEvent":
        instr = d.get("instrument", None)
        return NoteEvent(
            pitch=d.get("note", None),
            instrument=(int(instr) if instr is not None else None),
            velocity=float(d.get("velocity", 1.0)),
        )


SILENCE = NoteEvent()


@dataclass(frozen=True)
class Pattern:
    """Dense channels x steps grid of NoteEvents.

    Every cell exists; empty cells hold SILENCE. Dimensions are fixed once built.
    """

    cells: tuple[tuple[NoteEvent, ...], ...]
    name: str = "pattern"

    def __post_init__(self) -> None:
        rows = tuple(tuple(row) for row in self.cells)
        if not rows:
            raise ValueError("pattern must have at least one channel")
        width = len(rows[0])
        if width <= 0:
            raise ValueError("pattern must have at least one step")
        for c, row in enumerate(rows):
            if len(row) != width:
                raise ValueError(f"channel {c} has {len(row)} steps, expected {width}")
            for ev in row:
                if not isinstance(ev, NoteEvent):
                    raise ValueError(f"channel {c} holds a non-NoteEvent cell: {ev!r}")
        object.__setattr__(self, "cells", rows)

    @staticmethod
    def empty(channels: int = 8, steps: int = 64, *, name: str = "pattern") -> "Pattern":
        return Pattern(cells=tuple((SILENCE,) * steps for _ in range(channels)), name=name)

    @property
    def channels(self) -> int:
        return len(self.cells)

    @property
    def steps(self) -> int:
        return len(self.cells[0])

    def cell(self, channel: int, step: int) -> NoteEvent:
        return self.cells[channel][step]

    def with_cell(self, channel: int, step: int, event: NoteEvent) -> "Pattern":
        if not (0 <= channel < self.channels) or not (0 <= step < self.steps):
            raise IndexError(f"cell out of range: ({channel}, {step})")
        row = list(self.cells[channel])
        row[step] = event
        cells = list(self.cells)
        cells[channel] = tuple(row)
        return Pattern(cells=tuple(cells), name=self.name)

    def iter_events(self):
        """Yield (channel, step, event) for every non-silent cell, channel-major."""
        for c, row in enumerate(self.cells):
            for r, ev in enumerate(row):
                if not ev.is_silent:
                    yield c, r, ev

    def active_count(self, channel: int) -> int:
        return sum(1 for ev in self.cells[channel] if not ev.is_silent)

    def activity(self, channel: int) -> float:
        return self.active_count(channel) / float(self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": 2,
            "name": self.name,
            "channels": self.channels,
            "steps": self.steps,
            "events": [
                {"channel": c, "step": r, **ev.to_dict()} for c, r, ev in self.iter_events()
            ],
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Pattern":
        channels = int(d.get("channels", 8))
        steps = int(d.get("steps", 64))
        grid = [[SILENCE] * steps for _ in range(channels)]
        for e in d.get("events", []) or []:
            c = int(e["channel"])
            r = int(e["step"])
            if not (0 <= c < channels) or not (0 <= r < steps):
                raise ValueError(f"event outside pattern: channel={c} step={r}")
            grid[c][r] = NoteEvent.from_dict(e)
        return Pattern(cells=tuple(tuple(row) for row in grid), name=str(d.get("name", "pattern")))


@dataclass(frozen=True)
class RenderConfig:
    bpm: float = 125.0
    sample_rate: int = 44100
    audio_channels: int = 2
    seconds_limit: float = 120.0
    steps_per_beat: int = 4
    tail_seconds: float = 1.0
    master_gain: float = 0.9

    @property
    def row_duration(self) -> float:
        return 60.0 / float(self.bpm) / float(self.steps_per_beat)

    def rendered_duration(self, steps: int) -> float:
        natural = steps * self.row_duration + float(self.tail_seconds)
        return min(float(self.seconds_limit), natural)

    def frame_count(self, steps: int) -> int:
        return int(math.ceil(self.sample_rate * self.rendered_duration(steps)))


@dataclass(frozen=True)
class PCMBuffer:
    """Planar float32 audio. Consumers treat channel arrays as read-only."""

    sample_rate: int
    channel_data: tuple[FloatArray, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        chans = tuple(np.asarray(ch, dtype=np.float32).reshape(-1) for ch in self.channel_data)
        if not chans:
            raise ValueError("PCM buffer needs at least one channel")
        n = chans[0].shape[0]
        if any(ch.shape[0] != n for ch in chans):
            raise ValueError("PCM channels must have equal length")
        object.__setattr__(self, "channel_data", chans)

    @property
    def channels(self) -> int:
        return len(self.channel_data)

    @property
    def frame_count(self) -> int:
        return int(self.channel_data[0].shape[0])

    @property
    def duration_seconds(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count / float(self.sample_rate)

    def mono(self) -> FloatArray:
        if self.channels == 1:
            return self.channel_data[0]
        return np.mean(np.stack(self.channel_data), axis=0).astype(np.float32)
