"""JSON profile store.

Each profile lives in ``<profiles_dir>/<name>.json``. The store only reads
and writes those documents; deleting a profile's backups is the
``BackupService``'s job.
"""

import json
import logging
import re
from pathlib import Path

from pydantic import ValidationError

from savefile.config.models import Profile
from savefile.errors import InvalidProfileError, ProfileExistsError, ProfileNotFoundError

logger = logging.getLogger(__name__)

# Profile names double as directory and SQL parameter values
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_profile_name(name: str) -> str:
    """Return ``name`` unchanged, or raise ``ValueError`` if unusable."""
    if not _NAME_RE.match(name):
        raise ValueError(
            f"Invalid profile name {name!r}: use letters, digits, '.', '_' or '-'"
        )
    return name


class ProfileStore:
    """Load, list, create and delete profiles in a directory."""

    def __init__(self, profiles_dir: Path) -> None:
        self.profiles_dir = profiles_dir

    def path_for(self, name: str) -> Path:
        return self.profiles_dir / f"{validate_profile_name(name)}.json"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def load(self, name: str) -> Profile:
        """Load a profile by name.

        Raises:
            ProfileNotFoundError: If there is no such profile file.
            InvalidProfileError: If the file is not a valid profile.
        """
        path = self.path_for(name)
        try:
            raw = path.read_text()
        except FileNotFoundError:
            raise ProfileNotFoundError(name, path) from None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidProfileError(path, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidProfileError(path, "expected a JSON object")

        try:
            return Profile.model_validate({**data, "name": name})
        except ValidationError as e:
            raise InvalidProfileError(path, str(e)) from e

    def list(self, prefix: str | None = None) -> list[tuple[str, Path]]:
        """List ``(name, path)`` pairs, optionally filtered by name prefix."""
        if not self.profiles_dir.is_dir():
            return []
        found = []
        for path in sorted(self.profiles_dir.glob("*.json")):
            if not path.is_file():
                continue
            if prefix and not path.stem.startswith(prefix):
                continue
            found.append((path.stem, path))
        return found

    def create(self, profile: Profile) -> Path:
        """Write a new profile document.

        Raises:
            ProfileExistsError: If a profile with that name already exists.
        """
        path = self.path_for(profile.name)
        if path.exists():
            raise ProfileExistsError(profile.name)
        self.profiles_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(profile.to_json())
        logger.info(f"Created profile '{profile.name}' at {path}")
        return path

    def delete(self, name: str) -> None:
        """Remove a profile document.

        Raises:
            ProfileNotFoundError: If there is no such profile file.
        """
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            raise ProfileNotFoundError(name, path) from None
        logger.info(f"Deleted profile '{name}'")
