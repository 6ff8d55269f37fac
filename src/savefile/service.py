"""High-level backup operations for named profiles.

``BackupService`` is what the CLI talks to. It loads profiles, takes the
per-profile lock around every mutating operation and drives capture,
catalog and restore.

Usage:
    from savefile.config import load_config
    from savefile.service import BackupService

    service = BackupService(load_config())
    summary = service.create_backup("game")
    report = service.restore_backup("game")          # latest
    service.retain_backups("game", 5)
"""

import asyncio
import logging

from savefile.backup.capture import capture
from savefile.backup.catalog import BackupCatalog
from savefile.backup.models import BackupSummary, DeletionReport, RestoreReport
from savefile.backup.restore import restore
from savefile.config.models import AppConfig, Profile
from savefile.config.profiles import ProfileStore
from savefile.errors import BackupNotFoundError
from savefile.locking import ProfileLocks
from savefile.watch.runner import watch_profile

logger = logging.getLogger(__name__)


class BackupService:
    """Entry point for create, list, restore, delete, retain and watch.

    Args:
        config: Tool configuration; all state lives below ``config.data_dir``.
        catalog: Optional pre-built catalog (tests inject one).
    """

    def __init__(self, config: AppConfig, catalog: BackupCatalog | None = None) -> None:
        self.config = config
        self.profiles = ProfileStore(config.profiles_dir)
        self.catalog = catalog or BackupCatalog(config.catalog_path, config.saves_dir)
        self.locks = ProfileLocks(config.locks_dir)

    def close(self) -> None:
        self.catalog.close()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def create_backup(self, name: str) -> BackupSummary:
        """Capture the profile's base directory as a new backup.

        Raises:
            ProfileNotFoundError: If the profile does not exist.
            CaptureFailedError: If an included object vanished or was
                unreadable. Nothing is registered.
            DuplicateIdError: If the id sequence was changed underneath us.
        """
        profile = self.profiles.load(name)
        with self.locks.hold(name):
            return self._capture_locked(profile)

    def _capture_locked(self, profile: Profile) -> BackupSummary:
        self.catalog.discard_staging(profile.name)
        staging = self.catalog.staging_dir(profile.name)
        manifest = capture(
            profile,
            self.catalog.next_id(profile.name),
            staging,
            ignore_dirs=(self.config.data_dir,),
        )
        try:
            summary = self.catalog.register(manifest, staging)
        except BaseException:
            self.catalog.discard_staging(profile.name)
            raise
        logger.info(
            f"Backup {summary.backup_id} of '{profile.name}': "
            f"{summary.entry_count} entries, {summary.total_size} bytes"
        )
        return summary

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_backups(self, name: str, count: int | None = None) -> list[BackupSummary]:
        """List a profile's backups oldest first (newest ``count`` if given).

        Raises:
            ProfileNotFoundError: If the profile does not exist.
        """
        self.profiles.load(name)
        return self.catalog.list_backups(name, count=count)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore_backup(self, name: str, backup_id: int | None = None) -> RestoreReport:
        """Write a backup back over the profile's base directory.

        Files present on disk but absent from the backup are left alone.

        Args:
            name: Profile name.
            backup_id: Backup to restore; ``None`` restores the newest.

        Returns:
            RestoreReport with restored paths and per-entry failures.

        Raises:
            ProfileNotFoundError: If the profile does not exist.
            BackupNotFoundError: If the id is unknown, or there are no
                backups at all. Raised before anything is written.
        """
        profile = self.profiles.load(name)
        with self.locks.hold(name):
            if backup_id is None:
                latest = self.catalog.latest(name)
                if latest is None:
                    raise BackupNotFoundError(name)
                backup_id = latest.backup_id
            manifest = self.catalog.load_manifest(name, backup_id)
            logger.info(f"Restoring backup {backup_id} of '{name}' into {profile.base_dir}")
            return restore(manifest, self.catalog.backup_dir(name, backup_id), profile.base_dir)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_backup(self, name: str, backup_id: int | None = None) -> DeletionReport:
        """Delete one backup, or all of the profile's backups when no id is given.

        Raises:
            ProfileNotFoundError: If the profile does not exist.
            BackupNotFoundError: If ``backup_id`` is given but unknown.
        """
        self.profiles.load(name)
        with self.locks.hold(name):
            deleted = self.catalog.delete(name, backup_id)
        return DeletionReport(profile_name=name, deleted_ids=deleted)

    def retain_backups(self, name: str, count: int) -> DeletionReport:
        """Keep only the newest ``count`` backups.

        Raises:
            ProfileNotFoundError: If the profile does not exist.
            ValueError: If ``count`` is negative.
        """
        self.profiles.load(name)
        with self.locks.hold(name):
            deleted = self.catalog.retain(name, count)
        if deleted:
            logger.info(f"Retained {count} backup(s) of '{name}', deleted {deleted}")
        return DeletionReport(profile_name=name, deleted_ids=deleted)

    def delete_profile(self, name: str) -> DeletionReport:
        """Remove the profile together with all of its backups.

        Raises:
            ProfileNotFoundError: If the profile does not exist.
        """
        self.profiles.load(name)
        with self.locks.hold(name):
            deleted = self.catalog.delete_profile(name)
            self.profiles.delete(name)
        return DeletionReport(profile_name=name, deleted_ids=deleted, profile_removed=True)

    # ------------------------------------------------------------------
    # Watch
    # ------------------------------------------------------------------

    async def watch(self, name: str, stop_event: asyncio.Event | None = None, **kwargs) -> int:
        """Back the profile up every time its directory settles after changes.

        Runs until ``stop_event`` is set or the base directory goes away.
        Extra keyword arguments are passed to ``watch_profile``.

        Returns:
            Number of backups taken.

        Raises:
            ProfileNotFoundError: If the profile does not exist.
            WatchUnavailableError: If the base directory cannot be watched.
            DuplicateIdError: If registering a backup hits a taken id.
        """
        profile = self.profiles.load(name)

        def run_capture() -> BackupSummary:
            with self.locks.hold(name):
                return self._capture_locked(profile)

        logger.info(f"Watching '{name}' ({profile.base_dir}, delay {profile.debounce}s)")
        return await watch_profile(
            profile,
            run_capture,
            stop_event,
            ignore_dirs=(self.config.data_dir,),
            **kwargs,
        )
