from __future__ import annotations

import argparse
from importlib.metadata import PackageNotFoundError, version
import logging
from pathlib import Path
import sys
from typing import Sequence

from cpcp.config import CopyConfig, load_tuning
from cpcp.reporter import Reporter
from cpcp.run_service import (
    EXIT_COPY_ERRORS,
    EXIT_INVALID_CONFIG,
    EXIT_USAGE_ERROR,
    run_copy,
    split_operands,
)


try:
    VERSION = version("cpcp")
except PackageNotFoundError:
    # running from a source checkout without an install
    VERSION = "0+unknown"

EXIT_INTERRUPTED = 130

# Single-letter flags that take no value and may be clustered, as in -av.
CLUSTERABLE_FLAGS = set("vLPrRad")

ALIASES = {
    "-a": ["-d", "-R", "--preserve=all"],
    "--archive": ["-d", "-R", "--preserve=all"],
    "-d": ["--no-dereference", "--preserve=links"],
}


def expand_aliases(argv: Sequence[str]) -> list[str]:
    """Rewrite shorthand flags into the primitive flags they stand for.

    Expansion happens in place so a flag given later on the command line
    still overrides what an earlier alias implied.
    """
    expanded: list[str] = []
    pending = list(argv)
    pending.reverse()
    while pending:
        arg = pending.pop()
        if arg == "--":
            expanded.append(arg)
            expanded.extend(reversed(pending))
            break
        if len(arg) > 2 and arg[0] == "-" and arg[1] != "-" and set(arg[1:]) <= CLUSTERABLE_FLAGS:
            pending.extend(reversed([f"-{flag}" for flag in arg[1:]]))
            continue
        if arg in ALIASES:
            pending.extend(reversed(ALIASES[arg]))
            continue
        expanded.append(arg)
    return expanded


def parse_preserve(specs: Sequence[str]) -> tuple[bool, bool]:
    links = False
    mode = False
    for spec in specs:
        for item in spec.split(","):
            if item == "":
                continue
            if item == "links":
                links = True
            elif item == "mode":
                mode = True
            elif item == "all":
                links = True
                mode = True
            else:
                raise ValueError(f'unsupported preserve specification "{item}"')
    return links, mode


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value!r}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cpcp",
        description="Copy files and directories using many concurrent workers",
        epilog=(
            "aliases: -a/--archive is -d -R --preserve=all; "
            "-d is --no-dereference --preserve=links"
        ),
    )
    parser.add_argument("paths", nargs="*", metavar="PATH", help="source(s) followed by the destination")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Outputs details of work done.")
    parser.add_argument(
        "-L",
        "--dereference",
        dest="dereference",
        action="store_const",
        const=True,
        help="Follow links in source and copy what is pointed to.",
    )
    parser.add_argument(
        "-P",
        "--no-dereference",
        dest="dereference",
        action="store_const",
        const=False,
        help="Does not follow links in source and instead makes similar links in destination.",
    )
    parser.add_argument("-r", "-R", "--recursive", action="store_true", help="Copies directories recursively.")
    parser.add_argument(
        "--preserve",
        action="append",
        default=[],
        metavar="ATTRS",
        help="Preserve specified attributes. Available: links,mode,all",
    )
    parser.add_argument("-j", "--parallel", type=_positive_int, help="Number of concurrent copy workers.")
    parser.add_argument("--readdir-batch", type=_positive_int, help="Directory entries read per batch.")
    parser.add_argument("--copy-buffer", type=_positive_int, help="Per-worker copy buffer size in bytes.")
    parser.add_argument("--config", type=Path, help="YAML or JSON file with engine tuning values.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.set_defaults(dereference=True)
    return parser


def _configure_logging(verbosity: int) -> None:
    level = logging.DEBUG if verbosity > 1 else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )


def _build_config(args: argparse.Namespace, preserve_links: bool, preserve_mode: bool) -> CopyConfig:
    config = CopyConfig.build(
        verbosity=args.verbose,
        dereference=args.dereference,
        recursive=args.recursive,
        preserve_links=preserve_links,
        preserve_mode=preserve_mode,
    )
    tuning: dict[str, int] = {}
    if args.config is not None:
        tuning.update(load_tuning(args.config))
    if args.parallel is not None:
        tuning["parallel_tasks"] = args.parallel
    if args.readdir_batch is not None:
        tuning["readdir_batch"] = args.readdir_batch
    if args.copy_buffer is not None:
        tuning["copy_buffer"] = args.copy_buffer
    return config.with_tuning(tuning)


def _print_message(line: str) -> None:
    print(line, flush=True)


def _print_error(line: str) -> None:
    print(f"cpcp: {line}", file=sys.stderr, flush=True)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(expand_aliases(sys.argv[1:] if argv is None else argv))

    try:
        sources, destination = split_operands(args.paths)
        preserve_links, preserve_mode = parse_preserve(args.preserve)
    except ValueError as exc:
        print(f"cpcp: {exc}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    try:
        config = _build_config(args, preserve_links, preserve_mode)
    except ValueError as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    _configure_logging(config.verbosity)
    reporter = Reporter(
        emit_message=_print_message,
        emit_error=_print_error,
        message_buffer=config.message_buffer,
        error_buffer=config.error_buffer,
    )
    try:
        exit_code, summary = run_copy(sources, destination, config, reporter=reporter)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED

    if exit_code == EXIT_COPY_ERRORS:
        print(f"cpcp: there were {summary.errors} errors", file=sys.stderr)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
