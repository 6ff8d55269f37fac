"""Transient event types passed between the watcher and the coalescer."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict

WatchEventKind = Literal["created", "modified", "removed", "renamed"]


class WatchEvent(BaseModel):
    """A raw filesystem change below the watched base directory."""

    model_config = ConfigDict(frozen=True)

    path: Path
    kind: WatchEventKind
    observed_at: float                  # time.monotonic() at receipt
    is_directory: bool = False
    dest_path: Path | None = None       # renamed only


class SettledTrigger(BaseModel):
    """Emitted once the directory has been quiet for the debounce period."""

    model_config = ConfigDict(frozen=True)

    fired_at: float
    event_count: int
