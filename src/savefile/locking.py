"""Per-profile mutual exclusion.

Capture, restore, delete and retain for one profile must never overlap.
Within a process this is a keyed mutex (profile name -> ``threading.Lock``);
across processes (a running ``savefile watch`` and a manual
``savefile backup restore``) an advisory ``fcntl.flock`` on
``<locks_dir>/<profile>.lock`` is taken as well.

Usage:
    locks = ProfileLocks(config.locks_dir)
    with locks.hold("game"):
        ...
"""

import fcntl
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


class ProfileLocks:
    """Keyed mutex over profile names."""

    def __init__(self, locks_dir: Path) -> None:
        self.locks_dir = locks_dir
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, profile: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(profile)
            if lock is None:
                lock = self._locks[profile] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, profile: str) -> Iterator[None]:
        """Block until the profile is free, then hold it for the ``with`` body."""
        lock = self._lock_for(profile)
        if lock.locked():
            logger.debug(f"Waiting for lock on profile '{profile}'")
        with lock:
            self.locks_dir.mkdir(parents=True, exist_ok=True)
            with open(self.locks_dir / f"{profile}.lock", "a") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
