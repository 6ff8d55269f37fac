"""Configuration loading for savefile.

Settings come from, in increasing priority: built-in defaults, the
``savefile.toml`` file in the data directory (or an explicit path), and
the ``SAVEFILE_HOME`` / ``SAVEFILE_LOG_LEVEL`` environment variables.

Example ``savefile.toml``::

    [store]
    data_dir = "/srv/savefile"

    [logging]
    level = "DEBUG"
"""

import os
import tomllib
from pathlib import Path

from savefile.config.models import AppConfig

CONFIG_FILENAME = "savefile.toml"
HOME_ENV = "SAVEFILE_HOME"
LOG_LEVEL_ENV = "SAVEFILE_LOG_LEVEL"


def default_data_dir() -> Path:
    """Return the data directory used when nothing else is configured.

    ``$SAVEFILE_HOME`` if set, else ``$XDG_DATA_HOME/savefile``, else
    ``~/.local/share/savefile``.
    """
    env_home = os.environ.get(HOME_ENV)
    if env_home:
        return Path(env_home).expanduser()
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "savefile"
    return Path.home() / ".local" / "share" / "savefile"


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load tool configuration from TOML.

    Args:
        config_path: Path to a savefile.toml. When ``None``, the file in
            the default data directory is used if present.

    Returns:
        AppConfig with environment overrides applied.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
        ValueError: If the file is not valid TOML or has invalid values.
    """
    data_dir = default_data_dir()

    if config_path is None:
        candidate = data_dir / CONFIG_FILENAME
        config_path = candidate if candidate.exists() else None
    elif not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    data: dict = {}
    if config_path is not None:
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    store = data.get("store", {})
    logging_settings = data.get("logging", {})

    # Environment wins over the file
    if os.environ.get(HOME_ENV):
        resolved_dir = data_dir
    else:
        resolved_dir = Path(store.get("data_dir", data_dir)).expanduser()

    level = os.environ.get(LOG_LEVEL_ENV) or logging_settings.get("level", "INFO")

    return AppConfig(data_dir=resolved_dir, log_level=level)
