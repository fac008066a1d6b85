"""Data passed between the orchestrator stages."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    DIR_ADDED = "dir-added"
    DIR_REMOVED = "dir-removed"


@dataclass(frozen=True)
class ChangeEvent:
    path: str
    kind: ChangeKind
    timestamp: float = field(default_factory=time.time)


@dataclass
class BuildResult:
    ok: bool
    diagnostics: List[str] = field(default_factory=list)

    @classmethod
    def failed(cls, *messages):
        return cls(ok=False, diagnostics=list(messages))


# Live reload message vocabulary
CONNECTED = "connected"
RELOAD = "reload"
REFRESH_CSS = "refreshcss"
