from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from trackviz.model.types import RenderConfig

CONFIG_ENV = "TRACKVIZ_CONFIG"


def default_config_dir() -> Path:
    return Path.home() / ".config" / "trackviz"


def default_config_path() -> Path:
    configured = os.environ.get(CONFIG_ENV)
    if configured:
        return Path(configured).expanduser()
    return default_config_dir() / "config.json"


@dataclass
class AppConfig:
    bpm: float = 125.0
    sample_rate: int = 44100
    audio_channels: int = 2
    seconds_limit: float = 120.0
    steps_per_beat: int = 4
    mp3_bitrate_kbps: int = 128
    fft_size: int = 2048
    noise_floor: float = 10.0
    ffmpeg: str = "ffmpeg"

    def to_dict(self) -> dict[str, Any]:
        return {
            "bpm": self.bpm,
            "sample_rate": self.sample_rate,
            "audio_channels": self.audio_channels,
            "seconds_limit": self.seconds_limit,
            "steps_per_beat": self.steps_per_beat,
            "mp3_bitrate_kbps": self.mp3_bitrate_kbps,
            "fft_size": self.fft_size,
            "noise_floor": self.noise_floor,
            "ffmpeg": self.ffmpeg,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "AppConfig":
        base = AppConfig()
        return AppConfig(
            bpm=float(d.get("bpm", base.bpm)),
            sample_rate=int(d.get("sample_rate", base.sample_rate)),
            audio_channels=int(d.get("audio_channels", base.audio_channels)),
            seconds_limit=float(d.get("seconds_limit", base.seconds_limit)),
            steps_per_beat=int(d.get("steps_per_beat", base.steps_per_beat)),
            mp3_bitrate_kbps=int(d.get("mp3_bitrate_kbps", base.mp3_bitrate_kbps)),
            fft_size=int(d.get("fft_size", base.fft_size)),
            noise_floor=float(d.get("noise_floor", base.noise_floor)),
            ffmpeg=str(d.get("ffmpeg") or base.ffmpeg),
        )

    def render_config(self, **overrides: Any) -> RenderConfig:
        """RenderConfig from these defaults; None-valued overrides are ignored."""
        cfg = RenderConfig(
            bpm=self.bpm,
            sample_rate=self.sample_rate,
            audio_channels=self.audio_channels,
            seconds_limit=self.seconds_limit,
            steps_per_beat=self.steps_per_beat,
        )
        return replace(cfg, **{k: v for k, v in overrides.items() if v is not None})


def load_config(path: Path | None = None) -> AppConfig:
    p = path or default_config_path()
    if not p.exists():
        return AppConfig()
    data = json.loads(p.read_text(encoding="utf-8"))
    return AppConfig.from_dict(data)


def save_config(cfg: AppConfig, path: Path | None = None) -> Path:
    p = path or default_config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(cfg.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return p
