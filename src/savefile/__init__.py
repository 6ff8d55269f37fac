"""savefile: profile-driven local backups of a directory tree.

Watches a directory, waits for it to settle, and captures the files a
profile's include rules select into a numbered backup that can later be
listed, restored, pruned or deleted.

Usage:
    from savefile import BackupService, load_config
    from savefile import Profile, ProfileStore, RuleSet
    from savefile import ChangeWatcher, DebounceCoalescer
"""

__version__ = "0.1.0"

# Config
from savefile.config.loader import load_config
from savefile.config.models import AppConfig, Profile
from savefile.config.profiles import ProfileStore

# Rules
from savefile.rules import IncludeRule, RuleSet

# Backup
from savefile.backup.capture import capture
from savefile.backup.catalog import BackupCatalog
from savefile.backup.models import (
    BackupManifest,
    BackupSummary,
    DeletionReport,
    FileEntry,
    RestoreReport,
)
from savefile.backup.restore import restore

# Watch
from savefile.watch.coalescer import DebounceCoalescer
from savefile.watch.watcher import ChangeWatcher

# Service
from savefile.locking import ProfileLocks
from savefile.service import BackupService

# Errors
from savefile.errors import (
    BackupNotFoundError,
    CaptureFailedError,
    DuplicateIdError,
    InvalidProfileError,
    NotFoundError,
    ProfileExistsError,
    ProfileNotFoundError,
    RestoreFailedError,
    SavefileError,
    WatchUnavailableError,
)

__all__ = [
    # Config
    "load_config",
    "AppConfig",
    "Profile",
    "ProfileStore",
    # Rules
    "IncludeRule",
    "RuleSet",
    # Backup
    "capture",
    "restore",
    "BackupCatalog",
    "BackupManifest",
    "BackupSummary",
    "DeletionReport",
    "FileEntry",
    "RestoreReport",
    # Watch
    "ChangeWatcher",
    "DebounceCoalescer",
    # Service
    "BackupService",
    "ProfileLocks",
    # Errors
    "SavefileError",
    "NotFoundError",
    "ProfileNotFoundError",
    "BackupNotFoundError",
    "ProfileExistsError",
    "InvalidProfileError",
    "CaptureFailedError",
    "RestoreFailedError",
    "WatchUnavailableError",
    "DuplicateIdError",
]
