from __future__ import annotations

from typing import Sequence
import logging
import os

from cpcp.config import CopyConfig
from cpcp.engine import CopyEngine, EngineState
from cpcp.models import EntryKind, RunSummary, classify_mode
from cpcp.reporter import Reporter, format_error


EXIT_SUCCESS = 0
EXIT_COPY_ERRORS = 1
EXIT_USAGE_ERROR = 2
EXIT_INVALID_CONFIG = 3


class UsageError(ValueError):
    """The operands cannot describe a copy at all."""


def _base_name(path: str) -> str:
    """Last path component, ignoring trailing separators; empty for a root."""
    stripped = path.rstrip(os.sep)
    if os.altsep:
        stripped = stripped.rstrip(os.altsep)
    return os.path.basename(stripped)


def _target_in(directory: str, src: str) -> str:
    name = _base_name(src)
    if not name:
        return directory
    return os.path.join(directory, name)


def _stat_source(src: str, config: CopyConfig) -> os.stat_result:
    if config.dereference:
        return os.stat(src)
    return os.lstat(src)


def _check_source(src: str, config: CopyConfig, reporter: Reporter) -> int | None:
    try:
        mode = _stat_source(src, config).st_mode
    except OSError as exc:
        reporter.error(format_error(src, exc))
        return None
    if classify_mode(mode) is EntryKind.DIRECTORY and not config.recursive:
        reporter.error(f'omitting directory "{src}"')
        return None
    return mode


def resolve_roots(
    sources: Sequence[str],
    destination: str,
    config: CopyConfig,
    reporter: Reporter,
) -> list[tuple[str, str, int]]:
    """Turn the operands into (source, destination, mode) root tasks.

    Problems with individual operands are reported and the operand is
    skipped; the remaining ones still produce roots.
    """
    if len(sources) == 1:
        src = sources[0]
        dst = destination
        if os.path.isdir(destination):
            dst = _target_in(destination, src)
        mode = _check_source(src, config, reporter)
        if mode is None:
            return []
        return [(src, dst, mode)]

    try:
        is_dir = classify_mode(os.stat(destination).st_mode) is EntryKind.DIRECTORY
    except FileNotFoundError:
        is_dir = False
    except OSError as exc:
        reporter.error(format_error(destination, exc))
        return []
    if not is_dir:
        reporter.error(f'target "{destination}" is not a directory')
        return []

    roots: list[tuple[str, str, int]] = []
    for src in sources:
        mode = _check_source(src, config, reporter)
        if mode is None:
            continue
        roots.append((src, _target_in(destination, src), mode))
    return roots


def split_operands(operands: Sequence[str | os.PathLike[str]]) -> tuple[list[str], str]:
    paths = [os.fspath(operand) for operand in operands]
    if not paths:
        raise UsageError("nothing specified to copy")
    if len(paths) == 1:
        raise UsageError(f'missing destination parameter after "{paths[0]}"')
    return paths[:-1], paths[-1]


def run_copy(
    sources: Sequence[str | os.PathLike[str]],
    destination: str | os.PathLike[str],
    config: CopyConfig,
    reporter: Reporter | None = None,
    logger: logging.Logger | None = None,
) -> tuple[int, RunSummary]:
    log = logger or logging.getLogger("cpcp.run")
    src_paths, dst_path = split_operands([*sources, destination])

    reporter = reporter or Reporter(
        message_buffer=config.message_buffer,
        error_buffer=config.error_buffer,
    )
    reporter.start()
    if config.verbosity > 1:
        reporter.message(f"cfg is {config!r}")
        reporter.message(f"args are {[*src_paths, dst_path]!r}")

    engine = CopyEngine(config, reporter, logger=logger)
    summary = RunSummary()
    try:
        engine.start()
        for src, dst, mode in resolve_roots(src_paths, dst_path, config, reporter):
            engine.submit(src, dst, mode)
            summary.roots_submitted += 1
        log.debug("Submitted %s root task(s)", summary.roots_submitted)
        try:
            # Short waits keep the main thread responsive to Ctrl-C.
            while not engine.wait(timeout=0.2):
                pass
        except KeyboardInterrupt:
            engine.cancel()
            engine.wait()
            reporter.error("interrupted")
            raise
    finally:
        if engine.state is not EngineState.IDLE:
            engine.close()
        summary.tasks_finished = engine.tracker.finished
        summary.errors = reporter.close()

    log.info(
        "Copied %s root(s): %s task(s) finished, %s error(s)",
        summary.roots_submitted,
        summary.tasks_finished,
        summary.errors,
    )
    exit_code = EXIT_SUCCESS if summary.ok else EXIT_COPY_ERRORS
    return exit_code, summary
