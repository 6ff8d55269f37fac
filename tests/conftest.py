"""Shared fixtures: a live directory to back up and a data directory."""

from pathlib import Path

import pytest

from savefile.config.models import AppConfig, Profile


def write_bytes(path: Path, size: int, fill: bytes = b"x") -> Path:
    """Create ``path`` (and parents) holding ``size`` bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(fill * size)
    return path


@pytest.fixture
def live_dir(tmp_path: Path) -> Path:
    """Base directory with a.txt (1 KiB) and docs/b.txt (2 KiB)."""
    base = tmp_path / "live"
    write_bytes(base / "a.txt", 1024, b"a")
    write_bytes(base / "docs" / "b.txt", 2048, b"b")
    return base


@pytest.fixture
def profile(live_dir: Path) -> Profile:
    return Profile(name="p", base_dir=live_dir, debounce=0.05)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(data_dir=tmp_path / "data")
