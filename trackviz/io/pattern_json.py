from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from trackviz.model.types import Pattern
from trackviz.util.validate import migrate_pattern_dict, validate_pattern


def load_pattern(path: str | Path) -> Pattern:
    p = Path(path)
    data: dict[str, Any] = json.loads(p.read_text(encoding="utf-8"))
    data = migrate_pattern_dict(data)
    return validate_pattern(Pattern.from_dict(data))


def save_pattern(pattern: Pattern, path: str | Path) -> str:
    out_path = Path(path).expanduser()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(pattern.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return str(out_path)
