from __future__ import annotations

import math
from typing import Any

from trackviz.errors import InvalidConfigError
from trackviz.model.types import NoteEvent, Pattern, RenderConfig
from trackviz.util.limits import (
    MAX_BPM,
    MAX_CHANNELS,
    MAX_SAMPLE_RATE,
    MAX_SECONDS_LIMIT,
    MAX_STEPS,
    MAX_STEPS_PER_BEAT,
)

CURRENT_SCHEMA_VERSION = 2


def validate_render_config(config: RenderConfig) -> RenderConfig:
    """Reject configs that can't produce a bounded render. Returns the config unchanged."""

    def _finite(name: str, v: float) -> float:
        try:
            f = float(v)
        except (TypeError, ValueError):
            raise InvalidConfigError(f"{name} must be a number, got {v!r}") from None
        if not math.isfinite(f):
            raise InvalidConfigError(f"{name} must be finite, got {v!r}")
        return f

    bpm = _finite("bpm", config.bpm)
    if bpm <= 0:
        raise InvalidConfigError(f"bpm must be > 0, got {config.bpm}")
    if bpm > MAX_BPM:
        raise InvalidConfigError(f"bpm must be <= {MAX_BPM}, got {config.bpm}")

    if int(config.sample_rate) <= 0:
        raise InvalidConfigError(f"sample_rate must be > 0, got {config.sample_rate}")
    if int(config.sample_rate) > MAX_SAMPLE_RATE:
        raise InvalidConfigError(f"sample_rate must be <= {MAX_SAMPLE_RATE}, got {config.sample_rate}")

    if int(config.audio_channels) not in {1, 2}:
        raise InvalidConfigError(f"audio_channels must be 1 or 2, got {config.audio_channels}")

    if not (1 <= int(config.steps_per_beat) <= MAX_STEPS_PER_BEAT):
        raise InvalidConfigError(f"steps_per_beat must be 1..{MAX_STEPS_PER_BEAT}, got {config.steps_per_beat}")

    limit = _finite("seconds_limit", config.seconds_limit)
    if limit <= 0:
        raise InvalidConfigError(f"seconds_limit must be > 0, got {config.seconds_limit}")
    if limit > MAX_SECONDS_LIMIT:
        raise InvalidConfigError(f"seconds_limit must be <= {MAX_SECONDS_LIMIT}, got {config.seconds_limit}")

    if _finite("tail_seconds", config.tail_seconds) < 0:
        raise InvalidConfigError("tail_seconds must be >= 0")
    _finite("master_gain", config.master_gain)
    return config


def migrate_pattern_dict(d: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a pattern JSON dict to the current schema.

    v1 stored dense rows of cell strings ("C-4 01 40") under "rows", channel-major.
    v2 stores sparse events.
    """

    schema = int(d.get("schema_version", 1) or 1)

    if schema < 2:
        rows = d.get("rows", []) or []
        events: list[dict[str, Any]] = []

        for c, row in enumerate(rows):
            for r, text in enumerate(row):
                ev = NoteEvent.from_text(str(text))
                if not ev.is_silent:
                    events.append({"channel": c, "step": r, **ev.to_dict()})
        d.setdefault("channels", len(rows) or 8)
        d.setdefault("steps", max((len(r) for r in rows), default=64))
        d["events"] = events
        d.pop("rows", None)
        schema = 2

    d["schema_version"] = CURRENT_SCHEMA_VERSION
    return d


def validate_pattern(pattern: Pattern) -> Pattern:
    if pattern.channels > MAX_CHANNELS:
        raise ValueError(f"too many channels: {pattern.channels} (max {MAX_CHANNELS})")
    if pattern.steps > MAX_STEPS:
        raise ValueError(f"too many steps: {pattern.steps} (max {MAX_STEPS})")
    return pattern
