"""Exception hierarchy for savefile.

Every error raised by the library derives from ``SavefileError`` so the
CLI can report library failures without catching unrelated exceptions.

Usage:
    from savefile.errors import BackupNotFoundError, CaptureFailedError
"""

from pathlib import Path


class SavefileError(Exception):
    """Base class for all savefile errors."""

    pass


class NotFoundError(SavefileError):
    """A profile or backup does not exist."""

    pass


class ProfileNotFoundError(NotFoundError):
    """Raised when no profile file exists for the given name."""

    def __init__(self, name: str, path: Path | None = None) -> None:
        self.name = name
        self.path = path
        message = f"No profile named '{name}'"
        if path is not None:
            message += f" (expected {path})"
        super().__init__(message)


class BackupNotFoundError(NotFoundError):
    """Raised when a backup id is not in the profile's catalog."""

    def __init__(self, profile_name: str, backup_id: int | None = None) -> None:
        self.profile_name = profile_name
        self.backup_id = backup_id
        if backup_id is None:
            message = f"Profile '{profile_name}' has no backups"
        else:
            message = f"Backup {backup_id} not found for profile '{profile_name}'"
        super().__init__(message)


class ProfileExistsError(SavefileError):
    """Raised when creating a profile whose name is already taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Profile '{name}' already exists")


class InvalidProfileError(SavefileError):
    """Raised when a profile file cannot be parsed or validated."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid profile {path}: {reason}")


class CaptureFailedError(SavefileError):
    """Raised when an included path vanishes or is unreadable mid-capture.

    The capture is abandoned as a whole; nothing is registered.
    """

    def __init__(self, path: Path, cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Capture failed at {path}: {cause}")


class RestoreFailedError(SavefileError):
    """Raised on demand when a restore finished with per-entry failures."""

    def __init__(self, failures: list) -> None:
        self.failures = failures
        paths = ", ".join(str(f.path) for f in failures[:5])
        more = f" (+{len(failures) - 5} more)" if len(failures) > 5 else ""
        super().__init__(
            f"Restore failed for {len(failures)} path(s): {paths}{more}"
        )


class WatchUnavailableError(SavefileError):
    """Raised when the base directory cannot be watched at start time."""

    def __init__(self, path: Path, cause: BaseException | str) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Cannot watch {path}: {cause}")


class DuplicateIdError(SavefileError):
    """Raised when registering a manifest would reuse or skip a backup id.

    Signals that the single-writer discipline was violated; callers treat
    it as fatal.
    """

    def __init__(self, profile_name: str, backup_id: int, expected: int | None = None) -> None:
        self.profile_name = profile_name
        self.backup_id = backup_id
        self.expected = expected
        message = f"Backup id {backup_id} cannot be registered for profile '{profile_name}'"
        if expected is not None:
            message += f" (next id is {expected})"
        super().__init__(message)
