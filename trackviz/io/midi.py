from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import mido

from trackviz.model.types import Pattern
from trackviz.util.pitch import cell_note_to_midi


@dataclass
class MidiExportResult:
    path: str
    ticks_per_beat: int


def _channel_events(pattern: Pattern, channel: int, *, step_ticks: int) -> list[tuple[int, Any]]:
    midi_ch = channel % 16
    events: list[tuple[int, Any]] = []
    program: int | None = None
    for r, ev in enumerate(pattern.cells[channel]):
        if ev.pitch is None:
            continue
        start = r * step_ticks
        if ev.instrument is not None and ev.instrument != program:
            program = int(ev.instrument)
            events.append((start, mido.Message("program_change", program=program, channel=midi_ch)))
        note = cell_note_to_midi(ev.pitch)
        if not (0 <= note <= 127):
            continue
        vel = max(1, min(127, int(round(ev.velocity * 127))))
        events.append((start, mido.Message("note_on", note=note, velocity=vel, channel=midi_ch)))
        events.append((start + step_ticks, mido.Message("note_off", note=note, velocity=0, channel=midi_ch)))

    # Stable ordering: by time; note_off, then program_change, then note_on at the same tick.
    rank = {"note_off": 0, "program_change": 1, "note_on": 2}
    events.sort(key=lambda x: (x[0], rank[x[1].type]))
    return events


def pattern_to_midifile(pattern: Pattern, *, bpm: float, steps_per_beat: int = 4, ticks_per_beat: int = 480) -> mido.MidiFile:
    """One tempo track plus one track per channel that has notes; each note lasts one row."""
    mf = mido.MidiFile(ticks_per_beat=ticks_per_beat)
    step_ticks = max(1, ticks_per_beat // int(steps_per_beat))

    tempo_track = mido.MidiTrack()
    tempo_track.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(bpm), time=0))
    tempo_track.append(mido.MetaMessage("track_name", name=pattern.name, time=0))
    mf.tracks.append(tempo_track)

    for c in range(pattern.channels):
        if pattern.active_count(c) == 0:
            continue
        mt = mido.MidiTrack()
        mt.append(mido.MetaMessage("track_name", name=f"CH {c:02d}", time=0))
        last_t = 0
        for t, msg in _channel_events(pattern, c, step_ticks=step_ticks):
            msg.time = t - last_t
            last_t = t
            mt.append(msg)
        mf.tracks.append(mt)

    return mf


def export_midi(pattern: Pattern, path: str | Path, *, bpm: float, steps_per_beat: int = 4) -> MidiExportResult:
    out = Path(path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    mf = pattern_to_midifile(pattern, bpm=bpm, steps_per_beat=steps_per_beat)
    mf.save(out)
    return MidiExportResult(path=str(out), ticks_per_beat=mf.ticks_per_beat)
