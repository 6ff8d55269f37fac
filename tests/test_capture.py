"""Tests for snapshot capture and manifest persistence."""

import os
import sys
from pathlib import Path

import pytest

from conftest import write_bytes
from savefile.backup.capture import FILES_DIRNAME, MANIFEST_FILENAME, _Walker, capture, read_manifest
from savefile.config.models import Profile
from savefile.errors import CaptureFailedError


def _deny_listing(monkeypatch: pytest.MonkeyPatch, dirname: str) -> None:
    """Make os.scandir fail with EACCES for directories called ``dirname``."""
    real_scandir = os.scandir

    def scandir(path):
        if not isinstance(path, int) and os.path.basename(os.fspath(path)) == dirname:
            raise PermissionError(13, "Permission denied", os.fspath(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)


class TestCapture:
    """Walking the base directory into a staging area."""

    def test_captures_included_files(self, profile: Profile, tmp_path: Path) -> None:
        staging = tmp_path / "staging"
        manifest = capture(profile, 1, staging)

        assert [e.relative_path for e in manifest.entries] == ["a.txt", "docs/b.txt"]
        assert [e.size for e in manifest.entries] == [1024, 2048]
        assert manifest.total_size == 3072
        assert manifest.backup_id == 1
        assert manifest.profile_name == "p"
        assert (staging / FILES_DIRNAME / "docs" / "b.txt").read_bytes() == b"b" * 2048

    def test_manifest_written_last_and_readable(self, profile: Profile, tmp_path: Path) -> None:
        staging = tmp_path / "staging"
        manifest = capture(profile, 7, staging)
        assert (staging / MANIFEST_FILENAME).is_file()
        assert read_manifest(staging) == manifest

    def test_entries_record_content_ref_and_mode(self, profile: Profile, tmp_path: Path) -> None:
        os.chmod(profile.base_dir / "a.txt", 0o640)
        manifest = capture(profile, 1, tmp_path / "staging")
        entry = manifest.entries[0]
        assert entry.kind == "file"
        assert entry.content_ref == f"{FILES_DIRNAME}/a.txt"
        assert entry.mode == 0o640

    def test_exclude_rule_skips_files(self, live_dir: Path, tmp_path: Path) -> None:
        write_bytes(live_dir / "scratch.tmp", 10)
        write_bytes(live_dir / "docs" / "more.tmp", 10)
        profile = Profile(name="p", base_dir=live_dir, include_rules=("!*.tmp",))
        manifest = capture(profile, 1, tmp_path / "staging")
        assert [e.relative_path for e in manifest.entries] == ["a.txt", "docs/b.txt"]

    def test_excluded_directory_pruned(self, live_dir: Path, tmp_path: Path) -> None:
        write_bytes(live_dir / "cache" / "blob.bin", 100)
        profile = Profile(name="p", base_dir=live_dir, include_rules=("!cache/",))
        manifest = capture(profile, 1, tmp_path / "staging")
        assert "cache/blob.bin" not in [e.relative_path for e in manifest.entries]

    def test_default_exclude_with_include_rule(self, live_dir: Path, tmp_path: Path) -> None:
        profile = Profile(
            name="p", base_dir=live_dir, include_rules=("docs/",), default_action="exclude"
        )
        manifest = capture(profile, 1, tmp_path / "staging")
        assert [e.relative_path for e in manifest.entries] == ["docs/b.txt"]

    def test_directory_entries_when_enabled(self, live_dir: Path, tmp_path: Path) -> None:
        (live_dir / "empty").mkdir()
        profile = Profile(name="p", base_dir=live_dir, include_directories=True)
        manifest = capture(profile, 1, tmp_path / "staging")
        assert [(e.relative_path, e.kind) for e in manifest.entries] == [
            ("a.txt", "file"),
            ("docs", "directory"),
            ("docs/b.txt", "file"),
            ("empty", "directory"),
        ]

    def test_symlink_recorded_not_followed(self, live_dir: Path, tmp_path: Path) -> None:
        outside = write_bytes(tmp_path / "outside" / "big.bin", 4096)
        os.symlink(outside.parent, live_dir / "elsewhere")
        os.symlink("a.txt", live_dir / "link")
        profile = Profile(name="p", base_dir=live_dir)

        manifest = capture(profile, 1, tmp_path / "staging")
        by_path = {e.relative_path: e for e in manifest.entries}
        assert by_path["link"].kind == "symlink"
        assert by_path["link"].link_target == "a.txt"
        assert by_path["elsewhere"].kind == "symlink"
        assert "elsewhere/big.bin" not in by_path
        assert manifest.total_size == 3072

    def test_fifo_skipped(self, live_dir: Path, tmp_path: Path) -> None:
        os.mkfifo(live_dir / "pipe")
        profile = Profile(name="p", base_dir=live_dir)
        manifest = capture(profile, 1, tmp_path / "staging")
        assert "pipe" not in [e.relative_path for e in manifest.entries]

    def test_ignored_store_directory(self, live_dir: Path, tmp_path: Path) -> None:
        store = live_dir / ".savefile"
        write_bytes(store / "catalog.db", 64)
        profile = Profile(name="p", base_dir=live_dir)
        manifest = capture(profile, 1, tmp_path / "staging", ignore_dirs=(store,))
        assert [e.relative_path for e in manifest.entries] == ["a.txt", "docs/b.txt"]

    def test_identical_trees_capture_identical_entries(
        self, profile: Profile, tmp_path: Path
    ) -> None:
        first = capture(profile, 1, tmp_path / "s1")
        second = capture(profile, 2, tmp_path / "s2")
        assert first.entries == second.entries

    @pytest.mark.skipif(sys.platform != "linux", reason="needs byte-string file names")
    def test_non_utf8_name_kept(self, live_dir: Path, tmp_path: Path) -> None:
        name = os.fsdecode(b"bad\xff.sav")
        write_bytes(live_dir / name, 16)
        profile = Profile(name="p", base_dir=live_dir)
        staging = tmp_path / "staging"

        manifest = capture(profile, 1, staging)

        assert name in [e.relative_path for e in manifest.entries]
        assert read_manifest(staging) == manifest
        document = (staging / MANIFEST_FILENAME).read_text(encoding="utf-8")
        assert '"bytes"' in document
        assert '"relative_path": "a.txt"' in document
        assert (staging / FILES_DIRNAME / name).read_bytes() == b"x" * 16

    def test_excluded_directory_not_listed(
        self, live_dir: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        write_bytes(live_dir / "cache" / "junk.bin", 10)
        _deny_listing(monkeypatch, "cache")
        profile = Profile(name="p", base_dir=live_dir, include_rules=("!cache/", "*.txt"))
        manifest = capture(profile, 1, tmp_path / "staging")
        assert [e.relative_path for e in manifest.entries] == ["a.txt", "docs/b.txt"]

    def test_unlistable_excluded_directory_skipped(
        self, live_dir: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        write_bytes(live_dir / "cache" / "junk.bin", 10)
        _deny_listing(monkeypatch, "cache")
        profile = Profile(name="p", base_dir=live_dir, include_rules=("*.sav", "!cache/"))
        assert profile.rules.should_descend("cache")

        manifest = capture(profile, 1, tmp_path / "staging")

        assert [e.relative_path for e in manifest.entries] == ["a.txt", "docs/b.txt"]


class TestCaptureFailures:
    """All-or-nothing behaviour."""

    def test_missing_base_dir(self, tmp_path: Path) -> None:
        profile = Profile(name="p", base_dir=tmp_path / "gone")
        staging = tmp_path / "staging"
        with pytest.raises(CaptureFailedError):
            capture(profile, 1, staging)
        assert not staging.exists()

    def test_file_vanishing_mid_walk(
        self, profile: Profile, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        original = _Walker._capture_file

        def vanish_first(self, path: Path, relative: str) -> None:
            if relative == "docs/b.txt":
                path.unlink()
            original(self, path, relative)

        monkeypatch.setattr(_Walker, "_capture_file", vanish_first)
        staging = tmp_path / "staging"

        with pytest.raises(CaptureFailedError) as exc_info:
            capture(profile, 1, staging)

        assert exc_info.value.path == profile.base_dir / "docs" / "b.txt"
        assert isinstance(exc_info.value.cause, FileNotFoundError)
        assert not staging.exists()

    @pytest.mark.skipif(os.geteuid() == 0, reason="root can read any file")
    def test_unreadable_file(self, profile: Profile, tmp_path: Path) -> None:
        target = profile.base_dir / "a.txt"
        os.chmod(target, 0)
        try:
            with pytest.raises(CaptureFailedError):
                capture(profile, 1, tmp_path / "staging")
        finally:
            os.chmod(target, 0o644)

    def test_unlistable_included_directory_fails(
        self, profile: Profile, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _deny_listing(monkeypatch, "docs")
        with pytest.raises(CaptureFailedError) as exc_info:
            capture(profile, 1, tmp_path / "staging")
        assert isinstance(exc_info.value.cause, PermissionError)

    @pytest.mark.skipif(sys.platform != "linux", reason="needs byte-string file names")
    def test_unserializable_manifest_fails_cleanly(self, tmp_path: Path) -> None:
        base = tmp_path / os.fsdecode(b"live\xff")
        write_bytes(base / "a.txt", 8)
        profile = Profile(name="p", base_dir=base)
        staging = tmp_path / "staging"

        with pytest.raises(CaptureFailedError):
            capture(profile, 1, staging)
        assert not staging.exists()
