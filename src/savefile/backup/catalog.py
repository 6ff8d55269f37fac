"""Backup catalog: id allocation, ordering and deletion.

The catalog keeps one row per registered backup in a SQLite database
accessed through SQLAlchemy, and owns the on-disk backup directories::

    <saves_dir>/<profile>/<id>/manifest.json
    <saves_dir>/<profile>/<id>/files/...
    <saves_dir>/<profile>/.staging/<token>/     (captures in progress)

Ids come from a per-profile sequence row that only ever grows, so ids are
never reused even after deletes. A backup becomes visible to ``list_backups()``
only once ``register()`` has moved its fully written staging directory
into place and committed the row in the same transaction.

Callers are expected to hold the profile's lock (see ``savefile.locking``)
around every mutating call.

Usage:
    catalog = BackupCatalog(config.catalog_path, config.saves_dir)
    staging = catalog.staging_dir("game")
    manifest = capture(profile, catalog.next_id("game"), staging)
    catalog.register(manifest, staging)
    catalog.list_backups("game", count=5)
"""

import logging
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import Connection, Engine, create_engine, text

from savefile.backup.capture import read_manifest
from savefile.backup.models import BackupManifest, BackupSummary
from savefile.errors import BackupNotFoundError, DuplicateIdError

logger = logging.getLogger(__name__)

STAGING_DIRNAME = ".staging"

_CREATE_BACKUPS = """
    CREATE TABLE IF NOT EXISTS backups (
        profile TEXT NOT NULL,
        backup_id INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        total_size INTEGER NOT NULL DEFAULT 0,
        entry_count INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (profile, backup_id)
    )
"""

_CREATE_SEQUENCES = """
    CREATE TABLE IF NOT EXISTS sequences (
        profile TEXT PRIMARY KEY,
        next_id INTEGER NOT NULL
    )
"""


class BackupCatalog:
    """Per-profile registry of backups.

    Args:
        catalog_path: SQLite database file (created if missing).
        saves_dir: Root directory holding each profile's backup trees.
        engine: Optional pre-built SQLAlchemy engine (tests use this to
            share an in-memory database).
    """

    def __init__(
        self,
        catalog_path: Path,
        saves_dir: Path,
        engine: Engine | None = None,
    ) -> None:
        self.saves_dir = saves_dir
        if engine is None:
            catalog_path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(f"sqlite:///{catalog_path}")
        self._engine = engine
        with self._engine.begin() as conn:
            conn.execute(text(_CREATE_BACKUPS))
            conn.execute(text(_CREATE_SEQUENCES))

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def profile_dir(self, profile: str) -> Path:
        return self.saves_dir / profile

    def backup_dir(self, profile: str, backup_id: int) -> Path:
        return self.profile_dir(profile) / str(backup_id)

    def staging_dir(self, profile: str) -> Path:
        """Create and return a fresh private staging directory."""
        path = self.profile_dir(profile) / STAGING_DIRNAME / uuid.uuid4().hex
        path.mkdir(parents=True)
        return path

    def discard_staging(self, profile: str) -> int:
        """Remove staging directories left behind by interrupted captures.

        Only safe while holding the profile's lock.

        Returns:
            Number of directories removed.
        """
        root = self.profile_dir(profile) / STAGING_DIRNAME
        if not root.is_dir():
            return 0
        removed = 0
        for leftover in root.iterdir():
            shutil.rmtree(leftover, ignore_errors=True)
            removed += 1
        if removed:
            logger.warning(f"Discarded {removed} stale staging dir(s) for '{profile}'")
        return removed

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def next_id(self, profile: str) -> int:
        """Return the id the next registered backup will receive."""
        with self._engine.connect() as conn:
            return self._next_id(conn, profile)

    def register(self, manifest: BackupManifest, staging_dir: Path) -> BackupSummary:
        """Make a captured backup visible.

        Checks the manifest's id against the sequence, moves the staging
        directory to its final location, inserts the catalog row and
        advances the sequence, all inside one transaction. If anything
        fails the directory is moved back and nothing is registered.

        Raises:
            DuplicateIdError: If the id is already taken or is not the
                sequence's next id.
        """
        profile = manifest.profile_name
        final_dir = self.backup_dir(profile, manifest.backup_id)
        summary = manifest.summary()
        moved = False

        try:
            with self._engine.begin() as conn:
                expected = self._next_id(conn, profile)
                taken = conn.execute(
                    text("SELECT 1 FROM backups WHERE profile = :profile AND backup_id = :id"),
                    {"profile": profile, "id": manifest.backup_id},
                ).first()
                if taken or manifest.backup_id != expected or final_dir.exists():
                    raise DuplicateIdError(profile, manifest.backup_id, expected)

                conn.execute(
                    text("""
                        INSERT INTO backups (profile, backup_id, created_at, total_size, entry_count)
                        VALUES (:profile, :id, :created_at, :total_size, :entry_count)
                    """),
                    {
                        "profile": profile,
                        "id": summary.backup_id,
                        "created_at": summary.created_at.isoformat(),
                        "total_size": summary.total_size,
                        "entry_count": summary.entry_count,
                    },
                )
                conn.execute(
                    text("""
                        INSERT INTO sequences (profile, next_id) VALUES (:profile, :next_id)
                        ON CONFLICT (profile) DO UPDATE SET next_id = excluded.next_id
                    """),
                    {"profile": profile, "next_id": manifest.backup_id + 1},
                )

                staging_dir.rename(final_dir)
                moved = True
        except BaseException:
            if moved:
                final_dir.rename(staging_dir)
            raise

        logger.info(f"Registered backup {summary.backup_id} for profile '{profile}'")
        return summary

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_backups(self, profile: str, count: int | None = None) -> list[BackupSummary]:
        """Return backups oldest first; with ``count``, only the newest ``count``."""
        if count is not None and count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        with self._engine.connect() as conn:
            result = conn.execute(
                text("""
                    SELECT backup_id, created_at, total_size, entry_count
                    FROM backups WHERE profile = :profile
                    ORDER BY backup_id
                """),
                {"profile": profile},
            )
            summaries = [self._to_summary(row._mapping) for row in result]
        if count is not None:
            summaries = summaries[len(summaries) - count:] if count else []
        return summaries

    def get(self, profile: str, backup_id: int) -> BackupSummary:
        """Return one backup's summary.

        Raises:
            BackupNotFoundError: If the id is not registered.
        """
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT backup_id, created_at, total_size, entry_count
                    FROM backups WHERE profile = :profile AND backup_id = :id
                """),
                {"profile": profile, "id": backup_id},
            ).first()
        if row is None:
            raise BackupNotFoundError(profile, backup_id)
        return self._to_summary(row._mapping)

    def latest(self, profile: str) -> BackupSummary | None:
        backups = self.list_backups(profile, count=1)
        return backups[0] if backups else None

    def load_manifest(self, profile: str, backup_id: int) -> BackupManifest:
        """Load the stored manifest of a registered backup.

        Raises:
            BackupNotFoundError: If the id is not registered.
        """
        self.get(profile, backup_id)
        return read_manifest(self.backup_dir(profile, backup_id))

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete(self, profile: str, backup_id: int | None = None) -> list[int]:
        """Delete one backup, or every backup of the profile when ``backup_id`` is None.

        The id sequence is kept, so deleted ids are never handed out again.

        Returns:
            Ids that were deleted.

        Raises:
            BackupNotFoundError: If ``backup_id`` is given but not registered.
        """
        if backup_id is not None:
            self.get(profile, backup_id)
            ids = [backup_id]
        else:
            ids = [s.backup_id for s in self.list_backups(profile)]
        self._delete_ids(profile, ids)
        return ids

    def retain(self, profile: str, count: int) -> list[int]:
        """Delete all but the newest ``count`` backups.

        Returns:
            Ids that were deleted (empty when ``count`` >= total).
        """
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        ids = [s.backup_id for s in self.list_backups(profile)]
        doomed = ids[: max(len(ids) - count, 0)]
        self._delete_ids(profile, doomed)
        return doomed

    def delete_profile(self, profile: str) -> list[int]:
        """Forget every backup and the id sequence, and remove all stored bytes."""
        ids = [s.backup_id for s in self.list_backups(profile)]
        with self._engine.begin() as conn:
            conn.execute(text("DELETE FROM backups WHERE profile = :profile"), {"profile": profile})
            conn.execute(text("DELETE FROM sequences WHERE profile = :profile"), {"profile": profile})
        profile_dir = self.profile_dir(profile)
        if profile_dir.exists():
            shutil.rmtree(profile_dir)
        logger.info(f"Removed catalog and {len(ids)} backup(s) of profile '{profile}'")
        return ids

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _delete_ids(self, profile: str, ids: list[int]) -> None:
        if not ids:
            return
        # Rows go first so list_backups() never shows a backup whose bytes are gone
        with self._engine.begin() as conn:
            for backup_id in ids:
                conn.execute(
                    text("DELETE FROM backups WHERE profile = :profile AND backup_id = :id"),
                    {"profile": profile, "id": backup_id},
                )
        for backup_id in ids:
            backup_dir = self.backup_dir(profile, backup_id)
            if backup_dir.exists():
                shutil.rmtree(backup_dir)
            logger.info(f"Deleted backup {backup_id} of profile '{profile}'")

    @staticmethod
    def _next_id(conn: Connection, profile: str) -> int:
        row = conn.execute(
            text("SELECT next_id FROM sequences WHERE profile = :profile"),
            {"profile": profile},
        ).first()
        return row[0] if row else 1

    @staticmethod
    def _to_summary(row: Any) -> BackupSummary:
        return BackupSummary(
            backup_id=row["backup_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            total_size=row["total_size"],
            entry_count=row["entry_count"],
        )
