from __future__ import annotations

import math
import re

NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

# Sentinel shown for silence and for frequencies with no meaningful note.
NO_NOTE = "--"

A4_HZ = 440.0
A4_MIDI = 69

_EMPTY_CELLS = {"", "-", "--", "---", ".", "..", "...", "···"}

# Plain names: signed octave, no filler. "A4", "C#4", "C-1" (octave -1).
_NOTE_RE = re.compile(r"^([A-Ga-g])(#?)(-?\d{1,2})$")
# Tracker cells: natural notes carry a "-" filler. "C-4", "C#4", "C--1".
_CELL_RE = re.compile(r"^([A-Ga-g])(#|-)?(-?\d{1,2})$")


def frequency_to_note(freq_hz: float | None) -> str:
    """Quantize a frequency to the nearest equal-tempered note name ("A4").

    Total function: None, NaN, infinite or non-positive input maps to NO_NOTE.
    """
    if freq_hz is None:
        return NO_NOTE
    try:
        f = float(freq_hz)
    except (TypeError, ValueError):
        return NO_NOTE
    if not math.isfinite(f) or f <= 0:
        return NO_NOTE

    # Half-up rounding so x.5 semitones always resolve upward.
    semitones = math.floor(12.0 * math.log2(f / A4_HZ) + 0.5)
    return midi_to_note(A4_MIDI + semitones)


def midi_to_note(midi: int) -> str:
    return f"{NOTE_NAMES[midi % 12]}{midi // 12 - 1}"


def midi_to_hz(midi: int) -> float:
    return A4_HZ * (2.0 ** ((midi - A4_MIDI) / 12.0))


def _parse(pattern: re.Pattern[str], text: str, kind: str) -> int:
    m = pattern.match(str(text).strip())
    if not m:
        raise ValueError(f"invalid {kind}: {text!r}")
    letter, sep, octave = m.group(1).upper(), m.group(2), int(m.group(3))
    pitch_class = NOTE_NAMES.index(letter + ("#" if sep == "#" else ""))
    return (octave + 1) * 12 + pitch_class


def note_to_midi(name: str) -> int:
    """Plain note name ("A4", "C#-1") -> MIDI number. A "-" is always an octave sign."""
    return _parse(_NOTE_RE, name, "note name")


def cell_note_to_midi(text: str) -> int:
    """Tracker cell note ("C-4", "C#4", "C--1") -> MIDI number."""
    return _parse(_CELL_RE, text, "cell note")


def note_to_frequency(name: str) -> float:
    return midi_to_hz(note_to_midi(name))


def cell_note_to_frequency(text: str) -> float:
    return midi_to_hz(cell_note_to_midi(text))


def format_cell_note(midi: int) -> str:
    """Tracker cell notation: naturals get a dash filler ("C-4"), sharps don't ("C#4")."""
    name = NOTE_NAMES[midi % 12]
    filler = "-" if len(name) == 1 else ""
    return f"{name}{filler}{midi // 12 - 1}"


def normalize_cell_note(text: str | None) -> str | None:
    """Parse a cell's note column. Returns canonical tracker notation or None for silence."""
    if text is None:
        return None
    s = str(text).strip()
    if s in _EMPTY_CELLS:
        return None
    return format_cell_note(cell_note_to_midi(s))
