from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import stat


class EntryKind(Enum):
    REGULAR = "regular"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"


def classify_mode(st_mode: int) -> EntryKind:
    if stat.S_ISLNK(st_mode):
        return EntryKind.SYMLINK
    if stat.S_ISDIR(st_mode):
        return EntryKind.DIRECTORY
    if stat.S_ISREG(st_mode):
        return EntryKind.REGULAR
    return EntryKind.OTHER


@dataclass(slots=True)
class CopyTask:
    src: str = ""
    dst: str = ""
    mode: int = 0

    @property
    def kind(self) -> EntryKind:
        return classify_mode(self.mode)

    def fill(self, src: str, dst: str, mode: int) -> "CopyTask":
        self.src = src
        self.dst = dst
        self.mode = mode
        return self

    def clear(self) -> None:
        self.src = ""
        self.dst = ""
        self.mode = 0


@dataclass(slots=True)
class RunSummary:
    roots_submitted: int = 0
    tasks_finished: int = 0
    errors: int = 0

    @property
    def ok(self) -> bool:
        return self.errors == 0
