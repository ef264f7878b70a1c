"""Per-run counters."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class WriteKind(str, Enum):
    """Mutation kinds counted by the write interceptor."""

    CREATED = "created"
    SET = "set"
    UPDATED = "updated"
    DELETED = "deleted"
    ADDED = "added"


@dataclass
class RunStats:
    """Counters for one ``migrate()`` invocation.

    While ``frozen`` is set the interceptor ignores writes, which is how
    the engine keeps its own history writes out of the counts.
    """

    scanned_files: int = 0
    executed_files: int = 0
    created: int = 0
    set: int = 0
    updated: int = 0
    deleted: int = 0
    added: int = 0
    frozen: bool = field(default=False, compare=False)

    def increment(self, kind: WriteKind) -> None:
        setattr(self, kind.value, getattr(self, kind.value) + 1)

    @contextmanager
    def freeze(self) -> Iterator[RunStats]:
        self.frozen = True
        try:
            yield self
        finally:
            self.frozen = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned_files": self.scanned_files,
            "executed_files": self.executed_files,
            "created": self.created,
            "set": self.set,
            "updated": self.updated,
            "deleted": self.deleted,
            "added": self.added,
        }

    def summary(self) -> str:
        return (
            f"Files scanned:{self.scanned_files} executed:{self.executed_files} "
            f"Docs added:{self.added} created:{self.created} updated:{self.updated} "
            f"set:{self.set} deleted:{self.deleted}"
        )


__all__ = ["RunStats", "WriteKind"]
