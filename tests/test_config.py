"""Tests for tool configuration loading, the Profile model and ProfileStore."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from savefile.config import AppConfig, Profile, ProfileStore, load_config
from savefile.config.loader import CONFIG_FILENAME, HOME_ENV, LOG_LEVEL_ENV
from savefile.config.profiles import validate_profile_name
from savefile.errors import InvalidProfileError, ProfileExistsError, ProfileNotFoundError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(HOME_ENV, raising=False)
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)


# ------------------------------------------------------------------
# load_config
# ------------------------------------------------------------------


class TestLoadConfig:
    """TOML loading with environment overrides."""

    def test_defaults_without_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv(HOME_ENV, str(tmp_path / "home"))
        config = load_config()
        assert config.data_dir == tmp_path / "home"
        assert config.log_level == "INFO"

    def test_xdg_fallback(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
        assert load_config().data_dir == tmp_path / "xdg" / "savefile"

    def test_load_explicit_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / CONFIG_FILENAME
        config_file.write_text(
            f'[store]\ndata_dir = "{tmp_path / "store"}"\n\n[logging]\nlevel = "debug"\n'
        )
        config = load_config(config_file)
        assert config.data_dir == tmp_path / "store"
        assert config.log_level == "DEBUG"

    def test_default_file_in_data_dir_is_read(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv(HOME_ENV, str(tmp_path))
        (tmp_path / CONFIG_FILENAME).write_text('[logging]\nlevel = "WARNING"\n')
        assert load_config().log_level == "WARNING"

    def test_env_overrides_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        config_file = tmp_path / CONFIG_FILENAME
        config_file.write_text(f'[store]\ndata_dir = "{tmp_path / "store"}"\n')
        monkeypatch.setenv(HOME_ENV, str(tmp_path / "env-home"))
        monkeypatch.setenv(LOG_LEVEL_ENV, "error")
        config = load_config(config_file)
        assert config.data_dir == tmp_path / "env-home"
        assert config.log_level == "ERROR"

    def test_explicit_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml_raises_value_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / CONFIG_FILENAME
        config_file.write_text("[store\n")
        with pytest.raises(ValueError, match="Invalid TOML"):
            load_config(config_file)

    def test_unknown_log_level_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            AppConfig(data_dir=tmp_path, log_level="LOUD")

    def test_layout_properties(self, tmp_path: Path) -> None:
        config = AppConfig(data_dir=tmp_path)
        assert config.catalog_path == tmp_path / "catalog.db"
        assert config.profiles_dir == tmp_path / "profiles"
        assert config.saves_dir == tmp_path / "saves"
        assert config.locks_dir == tmp_path / "locks"


# ------------------------------------------------------------------
# Profile model
# ------------------------------------------------------------------


class TestProfile:
    """On-disk keys, defaults and validation."""

    def test_reads_document_keys(self, tmp_path: Path) -> None:
        profile = Profile.model_validate(
            {"base": str(tmp_path), "include": ["*.sav", "!*.tmp"], "delay": 2.5}
        )
        assert profile.base_dir == tmp_path
        assert profile.include_rules == ("*.sav", "!*.tmp")
        assert profile.debounce == 2.5

    def test_defaults(self, tmp_path: Path) -> None:
        profile = Profile(base_dir=tmp_path)
        assert profile.include_rules == ()
        assert profile.debounce == 5.0
        assert profile.default_action == "include"
        assert not profile.include_directories

    def test_relative_base_rejected(self) -> None:
        with pytest.raises(ValidationError, match="absolute"):
            Profile(base_dir=Path("relative/dir"))

    def test_negative_delay_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            Profile(base_dir=tmp_path, debounce=-1)

    def test_malformed_rule_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="Empty include rule"):
            Profile(base_dir=tmp_path, include_rules=("!",))

    def test_frozen(self, tmp_path: Path) -> None:
        profile = Profile(base_dir=tmp_path)
        with pytest.raises(ValidationError):
            profile.debounce = 1.0

    def test_to_json_uses_document_keys(self, tmp_path: Path) -> None:
        profile = Profile(name="game", base_dir=tmp_path, include_rules=("*.sav",), debounce=3)
        data = json.loads(profile.to_json())
        assert data["base"] == str(tmp_path)
        assert data["include"] == ["*.sav"]
        assert data["delay"] == 3.0
        assert "name" not in data

    def test_rules_property_uses_default_action(self, tmp_path: Path) -> None:
        profile = Profile(base_dir=tmp_path, include_rules=("*.sav",), default_action="exclude")
        assert profile.rules.includes("x.sav")
        assert not profile.rules.includes("x.txt")


# ------------------------------------------------------------------
# ProfileStore
# ------------------------------------------------------------------


class TestProfileStore:
    """JSON profile files under the profiles directory."""

    def test_create_then_load(self, tmp_path: Path) -> None:
        store = ProfileStore(tmp_path / "profiles")
        store.create(Profile(name="game", base_dir=tmp_path, include_rules=("*.sav",)))
        loaded = store.load("game")
        assert loaded.name == "game"
        assert loaded.base_dir == tmp_path
        assert loaded.include_rules == ("*.sav",)
        assert store.exists("game")

    def test_create_twice_raises(self, tmp_path: Path) -> None:
        store = ProfileStore(tmp_path / "profiles")
        store.create(Profile(name="game", base_dir=tmp_path))
        with pytest.raises(ProfileExistsError):
            store.create(Profile(name="game", base_dir=tmp_path))

    def test_load_missing_raises(self, tmp_path: Path) -> None:
        store = ProfileStore(tmp_path / "profiles")
        with pytest.raises(ProfileNotFoundError, match="missing"):
            store.load("missing")

    def test_load_invalid_json(self, tmp_path: Path) -> None:
        store = ProfileStore(tmp_path)
        store.path_for("bad").write_text("{not json")
        with pytest.raises(InvalidProfileError, match="invalid JSON"):
            store.load("bad")

    def test_load_non_object(self, tmp_path: Path) -> None:
        store = ProfileStore(tmp_path)
        store.path_for("bad").write_text("[1, 2]")
        with pytest.raises(InvalidProfileError, match="JSON object"):
            store.load("bad")

    def test_load_failing_validation(self, tmp_path: Path) -> None:
        store = ProfileStore(tmp_path)
        store.path_for("bad").write_text(json.dumps({"base": "relative"}))
        with pytest.raises(InvalidProfileError):
            store.load("bad")

    def test_list_sorted_with_prefix(self, tmp_path: Path) -> None:
        store = ProfileStore(tmp_path / "profiles")
        for name in ("game-b", "docs", "game-a"):
            store.create(Profile(name=name, base_dir=tmp_path))
        assert [n for n, _ in store.list()] == ["docs", "game-a", "game-b"]
        assert [n for n, _ in store.list(prefix="game")] == ["game-a", "game-b"]

    def test_list_without_directory(self, tmp_path: Path) -> None:
        assert ProfileStore(tmp_path / "absent").list() == []

    def test_delete(self, tmp_path: Path) -> None:
        store = ProfileStore(tmp_path / "profiles")
        store.create(Profile(name="game", base_dir=tmp_path))
        store.delete("game")
        assert not store.exists("game")
        with pytest.raises(ProfileNotFoundError):
            store.delete("game")

    @pytest.mark.parametrize("name", ["", "../etc", "a/b", ".hidden", "sp ace"])
    def test_invalid_names_rejected(self, name: str) -> None:
        with pytest.raises(ValueError, match="Invalid profile name"):
            validate_profile_name(name)
