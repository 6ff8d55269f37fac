"""Backup manifest and result models.

A manifest is the immutable record of one capture: which paths under the
profile's base directory were captured, what kind of object each one was,
and where its bytes live inside the backup directory.

Usage:
    from savefile.backup.models import BackupManifest, FileEntry

    manifest = BackupManifest(
        backup_id=3,
        profile_name="game",
        base_dir=Path("/home/me/saves"),
        entries=[FileEntry(relative_path="slot1.sav", kind="file", size=10,
                           modified_at=now, content_ref="files/slot1.sav")],
    )
"""

import base64
import os
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)

from savefile.errors import RestoreFailedError

EntryKind = Literal["file", "directory", "symlink"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump_os_path(value: str) -> str | dict[str, str]:
    """JSON form of a path; names that are not valid UTF-8 keep their raw bytes."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return {"bytes": base64.b64encode(os.fsencode(value)).decode("ascii")}
    return value


def _load_os_path(value):
    if isinstance(value, dict) and "bytes" in value:
        return os.fsdecode(base64.b64decode(value["bytes"]))
    return value


# A filesystem name as os.scandir returns it, surrogate escapes included
OsPath = Annotated[
    str,
    BeforeValidator(_load_os_path),
    PlainSerializer(_dump_os_path, when_used="json"),
]


class FileEntry(BaseModel):
    """One captured filesystem object."""

    model_config = ConfigDict(frozen=True)

    relative_path: OsPath               # POSIX path relative to base_dir
    kind: EntryKind
    size: int = 0
    modified_at: datetime
    content_ref: OsPath | None = None   # bytes location inside the backup dir (files only)
    mode: int | None = None             # permission bits (files only)
    link_target: OsPath | None = None   # symlinks only

    @field_validator("relative_path")
    @classmethod
    def _stay_inside_base(cls, value: str) -> str:
        path = PurePosixPath(value)
        if not value or path.is_absolute() or ".." in path.parts or path == PurePosixPath("."):
            raise ValueError(f"relative_path must stay inside the base directory: {value!r}")
        return path.as_posix()

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "FileEntry":
        if self.kind == "file" and not self.content_ref:
            raise ValueError(f"file entry {self.relative_path!r} needs a content_ref")
        if self.kind == "symlink" and self.link_target is None:
            raise ValueError(f"symlink entry {self.relative_path!r} needs a link_target")
        return self


class BackupManifest(BaseModel):
    """Immutable record of a single backup."""

    model_config = ConfigDict(frozen=True)

    backup_id: int = Field(ge=1)
    profile_name: str
    created_at: datetime = Field(default_factory=_utcnow)
    base_dir: Path
    entries: tuple[FileEntry, ...] = ()

    @field_validator("entries")
    @classmethod
    def _unique_paths(cls, value: tuple[FileEntry, ...]) -> tuple[FileEntry, ...]:
        seen: set[str] = set()
        for entry in value:
            if entry.relative_path in seen:
                raise ValueError(f"duplicate entry: {entry.relative_path}")
            seen.add(entry.relative_path)
        return value

    @property
    def total_size(self) -> int:
        return sum(e.size for e in self.entries if e.kind == "file")

    def summary(self) -> "BackupSummary":
        return BackupSummary(
            backup_id=self.backup_id,
            created_at=self.created_at,
            total_size=self.total_size,
            entry_count=len(self.entries),
        )


class BackupSummary(BaseModel):
    """Catalog row for one backup."""

    backup_id: int
    created_at: datetime
    total_size: int = 0
    entry_count: int = 0


# ============================================================================
# Operation Results
# ============================================================================


class RestoreFailure(BaseModel):
    """A single entry that could not be written during restore."""

    path: str
    cause: str


class RestoreReport(BaseModel):
    """Outcome of a restore. Restores always overwrite live files."""

    profile_name: str
    backup_id: int
    restored: list[str] = Field(default_factory=list)
    failures: list[RestoreFailure] = Field(default_factory=list)
    overwrites_live_files: bool = True

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        """Raise ``RestoreFailedError`` if any entry failed."""
        if self.failures:
            raise RestoreFailedError(self.failures)


class DeletionReport(BaseModel):
    """Outcome of delete/retain/delete-profile. Deletions cannot be undone."""

    profile_name: str
    deleted_ids: list[int] = Field(default_factory=list)
    profile_removed: bool = False
    irreversible: bool = True
