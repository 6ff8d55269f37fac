"""Recursive directory watcher built on watchdog.

``ChangeWatcher`` keeps an explicit set of watched directories, one
non-recursive watchdog watch per directory, and grows or shrinks that set
as directories are created, removed or renamed below the base directory.
Events are handed from watchdog's observer thread to an ``asyncio.Queue``
on the loop that called ``start()``. ``None`` on that queue marks the end
of the stream; nothing is ever queued after it.

Usage:
    watcher = ChangeWatcher(profile.base_dir).start()
    while (event := await watcher.queue.get()) is not None:
        ...
    watcher.stop()
"""

import asyncio
import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from savefile.errors import WatchUnavailableError
from savefile.watch.events import WatchEvent, WatchEventKind

logger = logging.getLogger(__name__)

_KINDS: dict[str, WatchEventKind] = {
    EVENT_TYPE_CREATED: "created",
    EVENT_TYPE_MODIFIED: "modified",
    EVENT_TYPE_DELETED: "removed",
    EVENT_TYPE_MOVED: "renamed",
}


class _Handler(FileSystemEventHandler):
    def __init__(self, watcher: "ChangeWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._watcher._dispatch(event)


class ChangeWatcher:
    """Watch ``base_dir`` and everything below it.

    Args:
        base_dir: Directory to observe.
        event_filter: Optional predicate; events for which it returns
            ``False`` are dropped before they reach the queue. The
            terminal root-removal event is never filtered.
        observer_factory: Callable returning a watchdog observer.
    """

    def __init__(
        self,
        base_dir: Path,
        event_filter: Callable[[WatchEvent], bool] | None = None,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        self.base_dir = Path(os.path.abspath(base_dir))
        self._event_filter = event_filter
        self._observer_factory = observer_factory
        self._handler = _Handler(self)
        self._observer = None
        self._watches: dict[Path, object] = {}
        self._lock = threading.RLock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._started = False
        self._ended = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "ChangeWatcher":
        """Begin observing. Must be called from a running event loop.

        Raises:
            WatchUnavailableError: If ``base_dir`` is missing or unreadable.
            RuntimeError: If the watcher was already started once.
        """
        if self._started:
            raise RuntimeError("ChangeWatcher cannot be restarted")
        self._started = True

        base = self.base_dir
        if not base.is_dir():
            raise WatchUnavailableError(base, "not a directory")
        if not os.access(base, os.R_OK | os.X_OK):
            raise WatchUnavailableError(base, "permission denied")

        self._loop = asyncio.get_running_loop()
        self._observer = self._observer_factory()
        try:
            self._add_tree(base)
            self._observer.start()
        except OSError as e:
            raise WatchUnavailableError(base, e) from e

        logger.info(f"Watching {base} ({len(self._watches)} directories)")
        return self

    def stop(self) -> None:
        """End the event stream and shut the observer down.

        Safe to call more than once and from any thread.
        """
        self._end_stream()
        observer = self._observer
        if observer is not None and observer.is_alive():
            observer.stop()
            observer.join(timeout=5)
        logger.debug(f"Stopped watching {self.base_dir}")

    @property
    def queue(self) -> asyncio.Queue:
        """Queue of WatchEvents; ``None`` marks the end of the stream."""
        return self._queue

    @property
    def watched(self) -> frozenset[Path]:
        """Directories that currently have a watch."""
        with self._lock:
            return frozenset(self._watches)

    # ------------------------------------------------------------------
    # Watch set maintenance
    # ------------------------------------------------------------------

    def _add_tree(self, directory: Path) -> None:
        """Watch ``directory`` and all directories below it."""
        for root, _dirs, _files in os.walk(directory, followlinks=False):
            self._add_one(Path(root))

    def _add_one(self, directory: Path) -> None:
        with self._lock:
            if directory in self._watches:
                return
            try:
                watch = self._observer.schedule(self._handler, str(directory), recursive=False)
            except FileNotFoundError:
                logger.debug(f"Directory vanished before it could be watched: {directory}")
                return
            self._watches[directory] = watch

    def _remove_tree(self, directory: Path) -> None:
        with self._lock:
            doomed = [
                path for path in self._watches
                if path == directory or directory in path.parents
            ]
            for path in doomed:
                watch = self._watches.pop(path)
                try:
                    self._observer.unschedule(watch)
                except (KeyError, OSError) as e:
                    logger.debug(f"Watch on {path} already gone: {e}")

    # ------------------------------------------------------------------
    # Event delivery (observer thread)
    # ------------------------------------------------------------------

    def _dispatch(self, raw: FileSystemEvent) -> None:
        kind = _KINDS.get(raw.event_type)
        if kind is None:
            # opened / closed notifications carry no change
            return

        src = Path(os.fsdecode(raw.src_path))
        dest = Path(os.fsdecode(raw.dest_path)) if kind == "renamed" else None
        event = WatchEvent(
            path=src,
            kind=kind,
            observed_at=time.monotonic(),
            is_directory=raw.is_directory,
            dest_path=dest,
        )

        if src == self.base_dir and kind in ("removed", "renamed"):
            self._deliver(event.model_copy(update={"kind": "removed", "dest_path": None}))
            logger.warning(f"Watched directory {self.base_dir} was removed")
            self._end_stream()
            return

        if raw.is_directory:
            if kind == "created":
                self._add_tree(src)
            elif kind == "removed":
                self._remove_tree(src)
            elif kind == "renamed":
                self._remove_tree(src)
                if dest is not None and (dest == self.base_dir or self.base_dir in dest.parents):
                    self._add_tree(dest)

        if self._event_filter is None or self._event_filter(event):
            self._deliver(event)

    def _deliver(self, event: WatchEvent) -> None:
        with self._lock:
            if self._ended or self._loop is None or self._loop.is_closed():
                return
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def _end_stream(self) -> None:
        with self._lock:
            if self._ended:
                return
            self._ended = True
            if self._loop is not None and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._queue.put_nowait, None)
