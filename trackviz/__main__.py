from __future__ import annotations

import argparse
import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from trackviz.errors import PatternError, TrackvizError
from trackviz.model.types import Pattern
from trackviz.util.config import AppConfig, load_config


@dataclass
class DoctorResult:
    ok: bool
    notes: list[str]


def _doctor(ffmpeg: str) -> DoctorResult:
    notes: list[str] = []
    ok = True

    found = shutil.which(ffmpeg)
    if found:
        notes.append(f"ffmpeg: OK ({found})")
    else:
        ok = False
        notes.append("ffmpeg: MISSING (needed for MP3 encodes and non-WAV imports)")

    notes.append(f"python: {sys.version.split()[0]}")
    notes.append(f"platform: {sys.platform}")
    return DoctorResult(ok=ok, notes=notes)


def _load_pattern(path: str) -> Pattern:
    import yaml

    from trackviz.io.pattern_json import load_pattern
    from trackviz.io.pattern_yaml import load_pattern_yaml

    p = Path(path).expanduser()
    try:
        if p.suffix.lower() in {".yaml", ".yml"}:
            return load_pattern_yaml(p)
        return load_pattern(p)
    except (OSError, KeyError, TypeError, ValueError, yaml.YAMLError) as e:
        raise PatternError(f"cannot load pattern {p}: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="trackviz",
        add_help=True,
        formatter_class=argparse.RawTextHelpFormatter,
        description="trackviz: render tracker patterns to WAV/MP3 and analyze audio for visuals\n",
    )
    p.add_argument("--version", action="store_true", help="Print version and exit.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr.")
    p.add_argument("--config", default=None, help="Path to config JSON (default: ~/.config/trackviz/config.json)")

    sub = p.add_subparsers(dest="cmd")
    sub.add_parser("doctor", help="Check for external tools (ffmpeg).")

    render = sub.add_parser("render", help="Render a pattern (.json/.yaml) to WAV and optionally MP3.")
    render.add_argument("pattern", help="Pattern file (.json or .yaml)")
    render.add_argument("--out", required=True, help="Output WAV path")
    render.add_argument("--mp3", default=None, help="Also write an MP3 here")
    render.add_argument("--bpm", type=float, default=None)
    render.add_argument("--seconds-limit", dest="seconds_limit", type=float, default=None)
    render.add_argument("--sample-rate", dest="sample_rate", type=int, default=None)
    render.add_argument("--channels", dest="audio_channels", type=int, choices=[1, 2], default=None)
    render.add_argument("--steps-per-beat", dest="steps_per_beat", type=int, default=None)

    enc = sub.add_parser("encode", help="Encode an audio file to MP3.")
    enc.add_argument("input", help="Input audio (WAV, or anything ffmpeg reads)")
    enc.add_argument("output", help="Output MP3 path")
    enc.add_argument("--bitrate", type=int, default=None, help="kbps (default from config: 128)")

    note = sub.add_parser("note", help="Print the note name nearest to a frequency.")
    note.add_argument("freq", type=float)

    an = sub.add_parser("analyze", help="Print per-tick note/band metrics for an audio file.")
    an.add_argument("input", help="Input audio (WAV, or anything ffmpeg reads)")
    an.add_argument("--ticks", type=int, default=64, help="Number of ticks to print")
    an.add_argument("--fps", type=float, default=30.0, help="Ticks per second of audio")
    an.add_argument("--channels", type=int, default=8, help="Spectrum slices (note columns)")

    mid = sub.add_parser("export-midi", help="Export a pattern as a MIDI file.")
    mid.add_argument("pattern", help="Pattern file (.json or .yaml)")
    mid.add_argument("output", help="Output .mid path")
    mid.add_argument("--bpm", type=float, default=None)
    mid.add_argument("--steps-per-beat", dest="steps_per_beat", type=int, default=None)

    return p


def _cmd_render(args: argparse.Namespace, cfg: AppConfig) -> None:
    from trackviz.audio.encode import encode_mp3, ffmpeg_codec_factory
    from trackviz.audio.render import render_pattern
    from trackviz.audio.wav import write_wav

    pattern = _load_pattern(args.pattern)
    rc = cfg.render_config(
        bpm=args.bpm,
        seconds_limit=args.seconds_limit,
        sample_rate=args.sample_rate,
        audio_channels=args.audio_channels,
        steps_per_beat=args.steps_per_beat,
    )
    buf = render_pattern(pattern, rc)
    out = write_wav(args.out, buf)
    print(f"wrote {out} ({buf.duration_seconds:.2f}s, {buf.channels} ch @ {buf.sample_rate} Hz)")

    if args.mp3:
        data = encode_mp3(buf, bitrate_kbps=cfg.mp3_bitrate_kbps, codec_factory=ffmpeg_codec_factory(cfg.ffmpeg))
        mp3 = Path(args.mp3)
        mp3.parent.mkdir(parents=True, exist_ok=True)
        mp3.write_bytes(data)
        print(f"wrote {mp3} ({len(data)} bytes)")


def _cmd_encode(args: argparse.Namespace, cfg: AppConfig) -> None:
    from trackviz.audio.decode import decode_audio_file
    from trackviz.audio.encode import encode_mp3, ffmpeg_codec_factory

    buf = decode_audio_file(args.input, ffmpeg=cfg.ffmpeg)
    data = encode_mp3(
        buf,
        bitrate_kbps=int(args.bitrate or cfg.mp3_bitrate_kbps),
        codec_factory=ffmpeg_codec_factory(cfg.ffmpeg),
    )
    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    print(f"wrote {out} ({len(data)} bytes)")


def _cmd_analyze(args: argparse.Namespace, cfg: AppConfig) -> None:
    from trackviz.audio.analyzer import SpectralAnalyzer
    from trackviz.audio.decode import decode_audio_file
    from trackviz.audio.transport import BufferSource, Monitor, format_clock

    buf = decode_audio_file(args.input, ffmpeg=cfg.ffmpeg)
    if args.fps <= 0:
        raise SystemExit("ERROR: --fps must be > 0")

    # Drive playback from a stepped clock so the file is analyzed faster than real time.
    now = [0.0]
    analyzer = SpectralAnalyzer(buf.sample_rate, fft_size=cfg.fft_size, channels=args.channels, noise_floor=cfg.noise_floor)
    monitor = Monitor(analyzer)
    monitor.play(BufferSource(buf, clock=lambda: now[0]))

    for i in range(int(args.ticks)):
        now[0] = (i + 1) / float(args.fps)
        res = monitor.tick()
        if res is None:
            if now[0] >= buf.duration_seconds:
                break
            continue
        notes = " ".join(f"{n.note_name:>3}" for n in res.notes)
        bands = " ".join(f"{name} {e.average:6.1f}" for name, e in res.bands.items())
        print(f"{i:03d} {format_clock(now[0])} | {notes} | {bands} | vol {res.volume:6.1f}")
    monitor.stop()


def _cmd_export_midi(args: argparse.Namespace, cfg: AppConfig) -> None:
    from trackviz.io.midi import export_midi

    pattern = _load_pattern(args.pattern)
    res = export_midi(
        pattern,
        args.output,
        bpm=float(args.bpm or cfg.bpm),
        steps_per_beat=int(args.steps_per_beat or cfg.steps_per_beat),
    )
    print(f"wrote {res.path}")


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if getattr(args, "version", False):
        try:
            from importlib.metadata import version

            v = version("trackviz")
        except Exception:
            v = "0.0.0"
        print(f"trackviz {v}")
        return

    cfg = load_config(Path(args.config).expanduser() if args.config else None)

    if args.cmd == "doctor":
        res = _doctor(cfg.ffmpeg)
        status = "OK" if res.ok else "MISSING_DEPS"
        print(f"trackviz doctor: {status}")
        for n in res.notes:
            print(f"- {n}")
        if not res.ok:
            print("\nLinux (Debian/Ubuntu): sudo apt-get install ffmpeg")
            print("macOS: brew install ffmpeg")
        return

    if args.cmd == "note":
        from trackviz.util.pitch import frequency_to_note

        print(frequency_to_note(args.freq))
        return

    handlers = {
        "render": _cmd_render,
        "encode": _cmd_encode,
        "analyze": _cmd_analyze,
        "export-midi": _cmd_export_midi,
    }
    handler = handlers.get(args.cmd)
    if handler is None:
        parser.print_help()
        return

    try:
        handler(args, cfg)
    except TrackvizError as e:
        raise SystemExit(f"ERROR: {e}")


if __name__ == "__main__":
    main()
