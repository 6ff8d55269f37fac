"""Snapshot capture driven by a Profile.

``capture()`` walks the profile's base directory depth-first, applies the
profile's include rules, copies every included regular file into a
private staging directory and finally writes ``manifest.json`` there.
Writing the manifest is the last step; the staging directory only becomes
a visible backup once the catalog registers it.

Capture is all-or-nothing: if an included object disappears or cannot be
read while the walk is running, the staging directory is removed and
``CaptureFailedError`` is raised.

Usage:
    from savefile.backup.capture import capture

    staging = catalog.staging_dir(profile.name)
    manifest = capture(profile, catalog.next_id(profile.name), staging)
    catalog.register(manifest, staging)
"""

import logging
import os
import shutil
import stat
from datetime import datetime, timezone
from pathlib import Path

from savefile.backup.models import BackupManifest, FileEntry
from savefile.config.models import Profile
from savefile.errors import CaptureFailedError
from savefile.rules import RuleSet

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
FILES_DIRNAME = "files"
_CHUNK_SIZE = 1024 * 1024


def _timestamp(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(st.st_mtime_ns / 1_000_000_000, tz=timezone.utc)


def write_manifest(manifest: BackupManifest, directory: Path) -> Path:
    """Durably write ``manifest.json`` into ``directory``.

    The document is written to a temporary name, fsynced and renamed so a
    reader never sees a half-written manifest.
    """
    path = directory / MANIFEST_FILENAME
    tmp_path = directory / f".{MANIFEST_FILENAME}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(manifest.model_dump_json(indent=2))
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)
    return path


def read_manifest(directory: Path) -> BackupManifest:
    """Load ``manifest.json`` from a backup directory."""
    path = directory / MANIFEST_FILENAME
    return BackupManifest.model_validate_json(path.read_text(encoding="utf-8"))


def capture(
    profile: Profile,
    backup_id: int,
    staging_dir: Path,
    ignore_dirs: tuple[Path, ...] = (),
) -> BackupManifest:
    """Capture the profile's included files into ``staging_dir``.

    Args:
        profile: Profile describing the base directory and include rules.
        backup_id: Id the catalog will assign to this backup.
        staging_dir: Empty, private directory to hold the captured bytes.
            Removed again if the capture fails.
        ignore_dirs: Absolute directories never to descend into (the
            backup store itself, when it lives under the base directory).

    Returns:
        The manifest, already written to ``staging_dir/manifest.json``.

    Raises:
        CaptureFailedError: If the base directory or an included object is
            missing or unreadable during the walk.
    """
    base = profile.base_dir
    walker = _Walker(
        base=base,
        files_dir=staging_dir / FILES_DIRNAME,
        rules=profile.rules,
        include_directories=profile.include_directories,
        ignore_dirs={os.path.realpath(p) for p in ignore_dirs},
    )

    try:
        if not base.is_dir():
            raise CaptureFailedError(base, FileNotFoundError(f"base directory missing: {base}"))
        walker.files_dir.mkdir(parents=True, exist_ok=True)
        walker.walk(base, "")

        try:
            manifest = BackupManifest(
                backup_id=backup_id,
                profile_name=profile.name,
                base_dir=base,
                entries=tuple(walker.entries),
            )
            write_manifest(manifest, staging_dir)
        except (ValueError, UnicodeError) as e:
            # Covers pydantic validation and serialization errors
            raise CaptureFailedError(staging_dir / MANIFEST_FILENAME, e) from e
    except BaseException:
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise

    logger.info(
        f"Captured {len(manifest.entries)} entries "
        f"({manifest.total_size} bytes) for profile '{profile.name}'"
    )
    return manifest


class _Walker:
    """Depth-first walk that accumulates FileEntry records."""

    def __init__(
        self,
        base: Path,
        files_dir: Path,
        rules: RuleSet,
        include_directories: bool,
        ignore_dirs: set[str],
    ) -> None:
        self.base = base
        self.files_dir = files_dir
        self.rules = rules
        self.include_directories = include_directories
        self.ignore_dirs = ignore_dirs
        self.entries: list[FileEntry] = []

    def walk(self, directory: Path, prefix: str, excluded: bool = False) -> None:
        """Capture the included children of ``directory``.

        ``excluded`` marks a directory the rules exclude but that is entered
        because an earlier include rule may match below it. Such a directory
        is not part of the backup, so failing to list it is not an error.
        """
        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=lambda e: e.name)
        except OSError as e:
            if excluded:
                logger.debug(f"Skipping unreadable excluded directory {directory}: {e}")
                return
            raise CaptureFailedError(directory, e) from e

        for child in children:
            relative = f"{prefix}{child.name}"
            path = Path(child.path)

            if child.is_symlink():
                if self.rules.includes(relative):
                    self._capture_symlink(path, relative)
            elif child.is_dir(follow_symlinks=False):
                if os.path.realpath(path) in self.ignore_dirs:
                    logger.debug(f"Skipping backup store directory {path}")
                    continue
                included = self.rules.includes(relative, is_dir=True)
                if self.include_directories and included:
                    self._capture_directory(path, relative)
                if self.rules.should_descend(relative):
                    self.walk(path, f"{relative}/", excluded=not included)
            elif child.is_file(follow_symlinks=False):
                if self.rules.includes(relative):
                    self._capture_file(path, relative)
            else:
                self._skip_special(path)

    def _capture_symlink(self, path: Path, relative: str) -> None:
        try:
            target = os.readlink(path)
            st = os.lstat(path)
        except OSError as e:
            raise CaptureFailedError(path, e) from e
        self.entries.append(
            FileEntry(
                relative_path=relative,
                kind="symlink",
                modified_at=_timestamp(st),
                link_target=target,
            )
        )

    def _capture_directory(self, path: Path, relative: str) -> None:
        try:
            st = os.lstat(path)
        except OSError as e:
            raise CaptureFailedError(path, e) from e
        self.entries.append(
            FileEntry(relative_path=relative, kind="directory", modified_at=_timestamp(st))
        )

    def _capture_file(self, path: Path, relative: str) -> None:
        content_ref = f"{FILES_DIRNAME}/{relative}"
        dest = self.files_dir / relative
        dest.parent.mkdir(parents=True, exist_ok=True)

        try:
            src = open(path, "rb")
        except OSError as e:
            raise CaptureFailedError(path, e) from e

        size = 0
        with src, open(dest, "wb") as out:
            try:
                st = os.fstat(src.fileno())
            except OSError as e:
                raise CaptureFailedError(path, e) from e
            while True:
                try:
                    chunk = src.read(_CHUNK_SIZE)
                except OSError as e:
                    raise CaptureFailedError(path, e) from e
                if not chunk:
                    break
                # Write errors concern the store, not the source; let them propagate
                out.write(chunk)
                size += len(chunk)

        os.utime(dest, ns=(st.st_atime_ns, st.st_mtime_ns))
        self.entries.append(
            FileEntry(
                relative_path=relative,
                kind="file",
                size=size,
                modified_at=_timestamp(st),
                content_ref=content_ref,
                mode=stat.S_IMODE(st.st_mode),
            )
        )

    def _skip_special(self, path: Path) -> None:
        try:
            mode = os.lstat(path).st_mode
        except FileNotFoundError:
            # Vanished before we could even tell what it was
            return
        kind = "socket" if stat.S_ISSOCK(mode) else "fifo" if stat.S_ISFIFO(mode) else "device"
        logger.debug(f"Skipping {kind} {path}")
