"""Snapshot capture, the backup catalog, and restore.

Usage:
    from savefile.backup import BackupCatalog, capture, restore
    from savefile.backup import BackupManifest, FileEntry, RestoreReport
"""

from savefile.backup.capture import capture, read_manifest, write_manifest
from savefile.backup.catalog import BackupCatalog
from savefile.backup.models import (
    BackupManifest,
    BackupSummary,
    DeletionReport,
    FileEntry,
    RestoreFailure,
    RestoreReport,
)
from savefile.backup.restore import restore

__all__ = [
    "BackupCatalog",
    "BackupManifest",
    "BackupSummary",
    "DeletionReport",
    "FileEntry",
    "RestoreFailure",
    "RestoreReport",
    "capture",
    "read_manifest",
    "restore",
    "write_manifest",
]
