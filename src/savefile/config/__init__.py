"""Configuration management: tool settings, TOML loading, and profiles.

Usage:
    >>> from savefile.config import load_config, ProfileStore, Profile
"""

from savefile.config.loader import load_config
from savefile.config.models import AppConfig, Profile
from savefile.config.profiles import ProfileStore

__all__ = ["load_config", "AppConfig", "Profile", "ProfileStore"]
