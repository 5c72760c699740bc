from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any
import json
import os

import yaml


DEFAULT_PARALLEL_TASKS = 1000
DEFAULT_READDIR_BATCH = 1000
DEFAULT_COPY_BUFFER = 65536
DEFAULT_MESSAGE_BUFFER = 1000
DEFAULT_ERROR_BUFFER = 1000

# tuning file key -> CopyConfig field
TUNING_KEYS = {
    "parallelTasks": "parallel_tasks",
    "readdirBatch": "readdir_batch",
    "copyBuffer": "copy_buffer",
    "messageBuffer": "message_buffer",
    "errorBuffer": "error_buffer",
}


def current_umask() -> int:
    """Return the process umask without changing it.

    There is no read-only query for the umask, so it is swapped out and
    immediately restored. Call this once, before any worker thread starts.
    """
    mask = os.umask(0)
    os.umask(mask)
    return mask & 0o777


@dataclass(frozen=True, slots=True)
class CopyConfig:
    """Read-only run settings shared by the driver and every worker."""

    verbosity: int = 0
    dereference: bool = True
    recursive: bool = False
    preserve_links: bool = False
    preserve_mode: bool = False
    parallel_tasks: int = DEFAULT_PARALLEL_TASKS
    readdir_batch: int = DEFAULT_READDIR_BATCH
    copy_buffer: int = DEFAULT_COPY_BUFFER
    message_buffer: int = DEFAULT_MESSAGE_BUFFER
    error_buffer: int = DEFAULT_ERROR_BUFFER
    # Permission bits the umask lets through, i.e. ~umask & 0o777.
    umask_mask: int = 0o755

    def __post_init__(self) -> None:
        for name in TUNING_KEYS.values():
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"{name} must be a positive integer")

    @classmethod
    def build(cls, umask: int | None = None, **overrides: Any) -> "CopyConfig":
        if umask is None:
            umask = current_umask()
        return cls(umask_mask=~umask & 0o777, **overrides)

    def with_tuning(self, tuning: dict[str, int]) -> "CopyConfig":
        return replace(self, **tuning)

    def apply_mask(self, mode: int) -> int:
        """Destination permission bits for a source mode."""
        bits = mode & 0o7777
        if self.preserve_mode:
            return bits
        return bits & self.umask_mask


def _as_positive_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{field_name} must be a positive integer")
    return value


def _load_raw_tuning(tuning_path: Path) -> dict[str, Any]:
    if not tuning_path.exists():
        raise ValueError(f"Config file does not exist: {tuning_path}")

    suffix = tuning_path.suffix.lower()
    text = tuning_path.read_text(encoding="utf-8")
    if suffix in {".yml", ".yaml"}:
        loaded = yaml.safe_load(text)
    elif suffix == ".json":
        loaded = json.loads(text)
    else:
        raise ValueError("Config file must be .yaml/.yml or .json")

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError("Config root must be an object")
    return loaded


def load_tuning(tuning_path: Path) -> dict[str, int]:
    """Read engine sizing overrides, keyed by CopyConfig field name."""
    raw = _load_raw_tuning(tuning_path)
    tuning: dict[str, int] = {}
    for key, value in raw.items():
        field_name = TUNING_KEYS.get(key)
        if field_name is None:
            raise ValueError(f"Unknown config key: {key}")
        tuning[field_name] = _as_positive_int(value, key)
    return tuning
