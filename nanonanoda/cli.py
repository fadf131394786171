from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from rich.console import Console

from . import __version__
from .audio import read_wav, write_wav
from .config import ChipSpec, ConverterConfig
from .errors import SerializationError
from .logging_utils import DEBUG_ENV, configure_logging, log_exception
from .pipeline import convert_to_vgm, resynthesize
from .spinner import Spinner, render_error

_LOGGER = logging.getLogger("nanonanoda.cli")
_CONSOLE = Console(stderr=True)


def default_output_path(source: Path, output_format: str) -> Path:
    if output_format == "vgm":
        return source.with_name(f"{source.stem}_resynth_ym.vgm")
    return source.with_name(f"{source.stem}_resynth.wav")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nanonanoda",
        description="Convert a WAV file into YMF262/YM2203 register data or a sine resynthesis.",
    )
    parser.add_argument("input", type=Path, help="Input WAV file.")
    parser.add_argument("-f", "--format", choices=["wav", "vgm"], default="wav")
    parser.add_argument("-o", "--output", type=Path, default=None)
    parser.add_argument("-w", "--window-size", type=int, default=None)
    parser.add_argument("--hop-size", type=int, default=None)
    parser.add_argument("-r", "--output-sample-rate", type=int, default=None)
    parser.add_argument(
        "--chip",
        action="append",
        default=None,
        metavar="NAME[:COUNT[:VOICES]]",
        help="Chip instances to target (repeatable). Default: ymf262:1:18 and ym2203:2:3.",
    )
    parser.add_argument("--loop", action="store_true", help="Loop the VGM from the start.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _build_config(args: argparse.Namespace) -> ConverterConfig:
    chips = tuple(ChipSpec.parse(text) for text in args.chip) if args.chip else None
    return ConverterConfig.from_options(
        window_size=args.window_size,
        hop_size=args.hop_size,
        output_sample_rate=args.output_sample_rate,
        format=args.format,
        chips=chips,
        loop=args.loop or None,
    )


def run(args: argparse.Namespace) -> Path:
    """Convert ``args.input`` and write the result; returns the output path."""
    config = _build_config(args)
    source: Path = args.input
    target: Path = args.output or default_output_path(source, config.format)
    samples, sample_rate = read_wav(source)

    if config.format == "vgm":
        with Spinner(f"Converting {source.name} to VGM"):
            data = convert_to_vgm(samples, sample_rate, config, title=source.stem)
        try:
            target.write_bytes(data)
        except OSError as exc:
            raise SerializationError(f"Cannot write {target}: {exc}") from exc
        return target

    with Spinner(f"Resynthesizing {source.name}"):
        audio = resynthesize(samples, sample_rate, config)
    return write_wav(target, audio, sample_rate=config.output_sample_rate)


def main(argv: list[str] | None = None) -> int:
    configure_logging(file_logging=True)
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        target = run(args)
    except Exception as exc:
        debug = bool(os.environ.get(DEBUG_ENV))
        _LOGGER.warning("nanonanoda CLI failed: %s", exc, exc_info=debug)
        log_exception("nanonanoda CLI", exc)
        render_error("nanonanoda CLI", exc)
        return 1
    _CONSOLE.print(f"Wrote {target}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
