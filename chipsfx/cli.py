from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .audio import SAMPLE_RATE, read_wav_info
from .config import DEFAULT_PARAMS, SynthParams
from .errors import ChipSfxError, InvalidParametersError
from .logging_utils import configure_logging, console_level, log_exception
from .offline import DEFAULT_SEED, render, suggest_filename
from .playback import LivePlayer
from .presets import SYSTEM_PRESETS, get_preset
from .synth import voice_lifetime

_LOGGER = logging.getLogger("chipsfx.cli")
_CONSOLE = Console()
_ERR_CONSOLE = Console(stderr=True)

# Extra wait after a voice's lifetime before `play` returns.
_PLAY_WAIT_MARGIN = 1.0


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--preset", type=str, help="Name of a built-in preset.")
    source.add_argument("--params", type=str, help="Flat JSON object of parameters.")
    source.add_argument("--params-file", type=Path, help="Path to a JSON parameter file.")
    parser.add_argument("--sample-rate", type=int, default=SAMPLE_RATE)


def _load_params(args: argparse.Namespace) -> SynthParams:
    if args.preset:
        return get_preset(args.preset).params
    raw: str | None = None
    if args.params is not None:
        raw = args.params
    elif args.params_file is not None:
        raw = args.params_file.read_text(encoding="utf-8")
    if raw is None:
        return DEFAULT_PARAMS
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidParametersError(f"parameters are not valid JSON: {exc}") from exc
    return SynthParams.from_mapping(data)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chipsfx")
    sub = parser.add_subparsers(dest="command", required=True)

    render_cmd = sub.add_parser("render", help="Render a sound effect to a WAV file.")
    _add_source_arguments(render_cmd)
    render_cmd.add_argument("--output", type=Path, default=None)
    render_cmd.add_argument("--seed", type=int, default=DEFAULT_SEED)

    play_cmd = sub.add_parser("play", help="Play a sound effect on the default output.")
    _add_source_arguments(play_cmd)

    sub.add_parser("presets", help="List built-in presets.")

    inspect_cmd = sub.add_parser("inspect", help="Show the header of a WAV file.")
    inspect_cmd.add_argument("path", type=Path)
    return parser


def _print_presets() -> None:
    table = Table(title="Presets")
    table.add_column("id")
    table.add_column("label")
    table.add_column("wave")
    table.add_column("sweep (Hz)")
    for preset in SYSTEM_PRESETS:
        params = preset.params
        sweep = f"{params.start_frequency:g}"
        if params.frequency_slide:
            sweep += f" -> {params.end_frequency:g}"
        table.add_row(preset.id, preset.label, params.wave_type, sweep)
    _CONSOLE.print(table)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "render":
            params = _load_params(args)
            audio = render(params, sample_rate=args.sample_rate, seed=args.seed)
            target = args.output or Path(suggest_filename(params))
            path = audio.save(target)
            _CONSOLE.print(
                f"Wrote {path} ({audio.samples.size} samples, {audio.duration:.3f}s, "
                f"sr={audio.sample_rate})"
            )
            return 0

        if args.command == "play":
            params = _load_params(args)
            with LivePlayer(sample_rate=args.sample_rate) as player:
                voice = player.play(params)
                voice.wait(timeout=voice_lifetime(params) + _PLAY_WAIT_MARGIN)
            return 0

        if args.command == "presets":
            _print_presets()
            return 0

        if args.command == "inspect":
            info = read_wav_info(args.path.read_bytes())
            for name, value in info.model_dump().items():
                _CONSOLE.print(f"{name}: {value}")
            _CONSOLE.print(f"frames: {info.frame_count}")
            return 0

        parser.print_help()
        return 1
    except InvalidParametersError as exc:
        _ERR_CONSOLE.print(f"[red]Invalid parameters:[/red] {escape(str(exc))}")
        return 2
    except (ChipSfxError, OSError) as exc:
        _LOGGER.warning(
            "chipsfx CLI failed: %s", exc, exc_info=console_level() <= logging.DEBUG
        )
        log_exception("chipsfx CLI", exc)
        _ERR_CONSOLE.print(f"[red]Error:[/red] {escape(str(exc))}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
