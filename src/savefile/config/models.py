"""Pydantic models for tool configuration and backup profiles."""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from savefile.rules import RuleSet


# ============================================================================
# Tool Configuration
# ============================================================================


class AppConfig(BaseModel):
    """Tool-wide settings from savefile.toml and the environment."""

    data_dir: Path
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def profiles_dir(self) -> Path:
        return self.data_dir / "profiles"

    @property
    def saves_dir(self) -> Path:
        return self.data_dir / "saves"

    @property
    def locks_dir(self) -> Path:
        return self.data_dir / "locks"

    @property
    def catalog_path(self) -> Path:
        return self.data_dir / "catalog.db"


# ============================================================================
# Profiles
# ============================================================================


class Profile(BaseModel):
    """A named description of what to back up, from where, and when.

    Stored on disk as ``profiles/<name>.json``::

        {
          "base": "/home/me/Games/Saves",
          "include": ["slot*/", "!*.tmp"],
          "delay": 5.0
        }

    The name is the file stem and is not part of the JSON document.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = ""
    base_dir: Path = Field(
        validation_alias=AliasChoices("base", "base_dir"),
        serialization_alias="base",
    )
    include_rules: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("include", "include_rules"),
        serialization_alias="include",
    )
    debounce: float = Field(
        default=5.0,
        ge=0,
        validation_alias=AliasChoices("delay", "debounce"),
        serialization_alias="delay",
    )
    default_action: Literal["include", "exclude"] = "include"
    include_directories: bool = False  # record directory entries (keeps empty dirs)

    @field_validator("base_dir")
    @classmethod
    def _require_absolute(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError(f"base directory must be absolute: {value}")
        return value

    @field_validator("include_rules")
    @classmethod
    def _check_rules(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        # Raises ValueError on malformed patterns
        RuleSet.parse(value)
        return value

    @property
    def rules(self) -> RuleSet:
        return RuleSet.parse(self.include_rules, default_action=self.default_action)

    def to_json(self) -> str:
        """Serialize to the on-disk profile document (without the name)."""
        return self.model_dump_json(by_alias=True, exclude={"name"}, indent=2) + "\n"
