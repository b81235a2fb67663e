from __future__ import annotations

from pathlib import Path

import pytest

from trackviz.util.config import CONFIG_ENV, AppConfig, default_config_path, load_config, save_config


def test_missing_config_gives_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path / "none.json") == AppConfig()


def test_config_round_trip(tmp_path: Path) -> None:
    cfg = AppConfig(bpm=140.0, sample_rate=48000, mp3_bitrate_kbps=192, ffmpeg="/opt/ffmpeg")
    path = save_config(cfg, tmp_path / "cfg" / "config.json")
    assert load_config(path) == cfg


def test_env_overrides_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(CONFIG_ENV, str(tmp_path / "c.json"))
    assert default_config_path() == tmp_path / "c.json"
    save_config(AppConfig(bpm=99.0))
    assert load_config().bpm == 99.0


def test_render_config_ignores_none_overrides() -> None:
    rc = AppConfig(bpm=100.0).render_config(bpm=None, sample_rate=22050, seconds_limit=None)
    assert rc.bpm == 100.0
    assert rc.sample_rate == 22050
    assert rc.seconds_limit == 120.0
