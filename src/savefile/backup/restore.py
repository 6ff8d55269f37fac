"""Restore a captured backup over the live base directory.

Restore is additive: every manifest entry is written back (directories
created, files overwritten, symlinks recreated) and anything on disk that
the manifest does not mention is left alone. A failure on one entry is
logged and recorded in the returned ``RestoreReport``; the remaining
entries are still restored.

Files are written to a temporary name next to their destination and then
renamed over it, so a reader never sees a half-restored file.

Usage:
    from savefile.backup.restore import restore

    manifest = catalog.load_manifest("game", 4)
    report = restore(manifest, catalog.backup_dir("game", 4), profile.base_dir)
    report.raise_for_failures()
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path

from savefile.backup.models import BackupManifest, FileEntry, RestoreFailure, RestoreReport

logger = logging.getLogger(__name__)


def restore(
    manifest: BackupManifest,
    backup_dir: Path,
    base_dir: Path | None = None,
) -> RestoreReport:
    """Write every entry of ``manifest`` back under ``base_dir``.

    Args:
        manifest: Manifest of the backup to restore.
        backup_dir: Directory holding the backup's captured bytes.
        base_dir: Destination root. Defaults to the base directory the
            backup was captured from.

    Returns:
        RestoreReport listing restored paths and per-entry failures.
    """
    base = base_dir or manifest.base_dir
    report = RestoreReport(profile_name=manifest.profile_name, backup_id=manifest.backup_id)

    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot create base directory {base}: {e}")

    base_real = os.path.realpath(base)
    store_real = os.path.realpath(backup_dir)

    for entry in manifest.entries:
        dest = base / entry.relative_path
        try:
            _ensure_inside(dest.parent, base_real)
            if entry.kind == "directory":
                dest.mkdir(parents=True, exist_ok=True)
            elif entry.kind == "symlink":
                _restore_symlink(dest, entry.link_target)
            else:
                src = backup_dir / entry.content_ref
                _ensure_inside(src, store_real)
                _restore_file(src, dest, entry)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not restore {entry.relative_path}: {e}")
            report.failures.append(RestoreFailure(path=entry.relative_path, cause=str(e)))
            continue
        report.restored.append(entry.relative_path)

    if report.failures:
        logger.error(
            f"Restored backup {manifest.backup_id} of '{manifest.profile_name}' "
            f"with {len(report.failures)} failure(s)"
        )
    else:
        logger.info(
            f"Restored backup {manifest.backup_id} of '{manifest.profile_name}' "
            f"({len(report.restored)} entries) into {base}"
        )
    return report


def _ensure_inside(path: Path, root_real: str) -> None:
    """Refuse paths that resolve (through symlinks) outside ``root_real``."""
    resolved = os.path.realpath(path)
    if os.path.commonpath([resolved, root_real]) != root_real:
        raise ValueError(f"{path} resolves outside {root_real}")


def _restore_file(src: Path, dest: Path, entry: FileEntry) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if dest.is_dir() and not dest.is_symlink():
        raise IsADirectoryError(f"a directory is in the way: {dest}")

    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".restore", dir=dest.parent)
    try:
        with os.fdopen(fd, "wb") as out, open(src, "rb") as captured:
            shutil.copyfileobj(captured, out)
        if entry.mode is not None:
            os.chmod(tmp_name, entry.mode)
        mtime = entry.modified_at.timestamp()
        os.utime(tmp_name, (mtime, mtime))
        os.replace(tmp_name, dest)
    except BaseException:
        if os.path.lexists(tmp_name):
            os.unlink(tmp_name)
        raise


def _restore_symlink(dest: Path, target: str) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if dest.is_dir() and not dest.is_symlink():
        raise IsADirectoryError(f"a directory is in the way: {dest}")

    # Create beside the destination and rename over it
    tmp = dest.with_name(f".{dest.name}.{os.getpid()}.link")
    if os.path.lexists(tmp):
        os.unlink(tmp)
    os.symlink(target, tmp)
    try:
        os.replace(tmp, dest)
    except BaseException:
        os.unlink(tmp)
        raise
