"""The long-lived watch task for one profile.

``watch_profile`` wires a ``ChangeWatcher`` to a ``DebounceCoalescer`` and
runs ``run_capture`` once per settled trigger. Captures run in a worker
thread so the watcher queue keeps filling while one is in progress, and
they run one at a time: the loop does not read the next trigger until
the current capture has returned.

A failed capture is logged and the loop keeps watching; only
``DuplicateIdError`` ends the task. Setting ``stop_event`` ends the
stream; a capture already running is allowed to finish, and no new
capture starts afterwards.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from savefile.config.models import Profile
from savefile.errors import DuplicateIdError, SavefileError
from savefile.watch.coalescer import DebounceCoalescer
from savefile.watch.events import WatchEvent
from savefile.watch.watcher import ChangeWatcher

logger = logging.getLogger(__name__)


def make_event_filter(
    profile: Profile,
    ignore_dirs: tuple[Path, ...] = (),
) -> Callable[[WatchEvent], bool]:
    """Build a predicate that keeps only events the profile cares about.

    File events pass when the profile's rules include the path; directory
    events pass when the walk would enter the directory. Anything inside
    ``ignore_dirs`` (the backup store) is dropped.
    """
    rules = profile.rules
    base = Path(os.path.abspath(profile.base_dir))
    ignored = tuple(Path(os.path.abspath(p)) for p in ignore_dirs)

    def _relevant(path: Path, is_directory: bool) -> bool:
        if any(path == d or d in path.parents for d in ignored):
            return False
        try:
            relative = path.relative_to(base).as_posix()
        except ValueError:
            return False
        if relative == ".":
            return True
        if is_directory:
            return rules.should_descend(relative) or rules.includes(relative, is_dir=True)
        return rules.includes(relative)

    def accept(event: WatchEvent) -> bool:
        if _relevant(event.path, event.is_directory):
            return True
        return event.dest_path is not None and _relevant(event.dest_path, event.is_directory)

    return accept


async def watch_profile(
    profile: Profile,
    run_capture: Callable[[], Any],
    stop_event: asyncio.Event | None = None,
    ignore_dirs: tuple[Path, ...] = (),
    watcher_factory: Callable[..., ChangeWatcher] = ChangeWatcher,
) -> int:
    """Watch ``profile.base_dir`` and capture after each quiet period.

    Args:
        profile: Profile to watch.
        run_capture: Blocking callable performing one backup. Run in a
            worker thread.
        stop_event: Set it to stop watching. When ``None`` the task runs
            until the base directory disappears or it is cancelled.
        ignore_dirs: Directories whose changes never trigger a backup.
        watcher_factory: Builds the watcher (tests substitute fakes).

    Returns:
        Number of captures that completed successfully.

    Raises:
        WatchUnavailableError: If the base directory cannot be watched.
    """
    stop_event = stop_event or asyncio.Event()
    watcher = watcher_factory(
        profile.base_dir,
        event_filter=make_event_filter(profile, ignore_dirs),
    ).start()

    async def _stop_when_requested() -> None:
        await stop_event.wait()
        logger.info(f"Stop requested for '{profile.name}'")
        await asyncio.to_thread(watcher.stop)

    stopper = asyncio.create_task(_stop_when_requested())
    coalescer = DebounceCoalescer(profile.debounce)
    captures = 0

    try:
        async for trigger in coalescer.settle(watcher.queue):
            if stop_event.is_set():
                break
            logger.info(
                f"'{profile.name}': contents changed on disk "
                f"({trigger.event_count} event(s)), backing up"
            )
            try:
                await asyncio.to_thread(run_capture)
            except DuplicateIdError:
                raise
            except (SavefileError, OSError) as e:
                logger.error(f"Backup of '{profile.name}' failed, still watching: {e}")
                continue
            captures += 1
    finally:
        stopper.cancel()
        await asyncio.to_thread(watcher.stop)

    logger.info(f"Stopped watching '{profile.name}' after {captures} backup(s)")
    return captures
