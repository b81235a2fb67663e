from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from trackviz.model.types import SILENCE, NoteEvent, Pattern
from trackviz.util.validate import validate_pattern


def _channel_cells(raw: Any, steps: int, index: int) -> list[NoteEvent]:
    row = [SILENCE] * steps
    if raw is None:
        return row
    if isinstance(raw, dict):
        items = [(int(k), v) for k, v in raw.items()]
    elif isinstance(raw, list):
        items = list(enumerate(raw))
    else:
        raise ValueError(f"channel {index} must be a list of cells or a step->cell mapping")
    for step, text in items:
        if not (0 <= step < steps):
            raise ValueError(f"channel {index}: step {step} outside 0..{steps - 1}")
        row[step] = NoteEvent.from_text("" if text is None else str(text))
    return row


def parse_pattern_yaml(text: str, *, default_name: str = "pattern") -> Pattern:
    """Parse tracker-text YAML.

    name: demo
    steps: 64
    channels:
      - ["C-4 01 40", "---", "E-4 01 20"]   # dense, padded with silence
      - {0: "C-3", 16: "G-3 02"}           # sparse step -> cell
    """
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError("pattern YAML must be a mapping/object")
    channels = data.get("channels")
    if not isinstance(channels, list) or not channels:
        raise ValueError("pattern YAML missing required field: channels")

    steps = data.get("steps")
    if steps is None:
        steps = max((len(ch) for ch in channels if isinstance(ch, list)), default=0)
        steps = max([steps] + [int(k) + 1 for ch in channels if isinstance(ch, dict) for k in ch])
    steps = int(steps)
    if steps <= 0:
        raise ValueError("pattern YAML needs steps > 0")

    rows = [tuple(_channel_cells(ch, steps, i)) for i, ch in enumerate(channels)]
    return validate_pattern(Pattern(cells=tuple(rows), name=str(data.get("name") or default_name)))


def load_pattern_yaml(path: str | Path) -> Pattern:
    p = Path(path)
    return parse_pattern_yaml(p.read_text(encoding="utf-8"), default_name=p.stem)


def pattern_to_yaml(pattern: Pattern) -> str:
    channels = [
        {r: ev.to_text() for r, ev in enumerate(row) if not ev.is_silent}
        for row in pattern.cells
    ]
    return yaml.safe_dump(
        {"name": pattern.name, "steps": pattern.steps, "channels": channels},
        sort_keys=False,
    )
