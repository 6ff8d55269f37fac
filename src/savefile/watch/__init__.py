"""Change detection: watcher, debounce coalescer, and the watch task.

Usage:
    from savefile.watch import ChangeWatcher, DebounceCoalescer, watch_profile
"""

from savefile.watch.coalescer import DebounceCoalescer
from savefile.watch.events import SettledTrigger, WatchEvent
from savefile.watch.runner import make_event_filter, watch_profile
from savefile.watch.watcher import ChangeWatcher

__all__ = [
    "ChangeWatcher",
    "DebounceCoalescer",
    "SettledTrigger",
    "WatchEvent",
    "make_event_filter",
    "watch_profile",
]
