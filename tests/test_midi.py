from __future__ import annotations

from pathlib import Path

import mido

from trackviz.io.midi import export_midi, pattern_to_midifile
from trackviz.model.types import NoteEvent, Pattern


def _pattern() -> Pattern:
    p = Pattern.empty(3, 8, name="midi-demo")
    p = p.with_cell(0, 0, NoteEvent("C-4", 5, 1.0))
    p = p.with_cell(0, 1, NoteEvent("E-4", 5, 0.5))
    return p


def test_pattern_to_midifile_layout() -> None:
    mf = pattern_to_midifile(_pattern(), bpm=125.0, steps_per_beat=4)

    # tempo track + one track per channel with notes
    assert len(mf.tracks) == 2
    tempo = [m for m in mf.tracks[0] if m.type == "set_tempo"]
    assert tempo[0].tempo == mido.bpm2tempo(125.0)

    msgs = [m for m in mf.tracks[1] if not m.is_meta]
    assert [m.type for m in msgs] == ["program_change", "note_on", "note_off", "note_on", "note_off"]
    assert msgs[0].program == 5
    assert (msgs[1].note, msgs[1].velocity, msgs[1].time) == (60, 127, 0)
    assert (msgs[2].note, msgs[2].time) == (60, 120)
    assert (msgs[3].note, msgs[3].velocity, msgs[3].time) == (64, 64, 0)


def test_export_midi_writes_loadable_file(tmp_path: Path) -> None:
    res = export_midi(_pattern(), tmp_path / "out" / "p.mid", bpm=90.0)
    mf = mido.MidiFile(res.path)
    assert mf.ticks_per_beat == res.ticks_per_beat
    notes = [m for m in mf.tracks[1] if m.type == "note_on"]
    assert [m.note for m in notes] == [60, 64]
