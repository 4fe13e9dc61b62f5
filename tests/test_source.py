"""Tests for pipeline/source.py - mode detection, image discovery, versions."""

from pathlib import Path

import pytest

from utm_repack.pipeline import source
from utm_repack.storage.exceptions import SourceImageNotFoundError


class TestIsCiMode:
    def test_github_actions_selects_ci(self):
        assert source.is_ci_mode({"GITHUB_ACTIONS": "true"}) is True

    def test_missing_or_empty_is_local(self):
        assert source.is_ci_mode({}) is False
        assert source.is_ci_mode({"GITHUB_ACTIONS": ""}) is False


class TestVersionSortKey:
    def test_numeric_runs_compare_as_numbers(self):
        names = ["img_10.img.xz", "img_9.img.xz", "img_100.img.xz"]
        assert sorted(names, key=source.version_sort_key) == [
            "img_9.img.xz",
            "img_10.img.xz",
            "img_100.img.xz",
        ]

    def test_kernel_versions(self):
        names = ["vmlinuz-6.1.0-9-arm64", "vmlinuz-6.1.0-12-arm64", "vmlinuz-5.15.0-1-arm64"]
        assert max(names, key=source.version_sort_key) == "vmlinuz-6.1.0-12-arm64"

    def test_newest_by_version_empty(self):
        assert source.newest_by_version([]) is None


class TestLocateSourceImage:
    def test_local_mode_picks_highest_version(self, make_config, image_dir):
        for name in ("fnos_20240101_9.img.xz", "fnos_20240101_10.img.xz", "notes.txt"):
            (image_dir / name).write_bytes(b"x")

        result = source.locate_source_image(make_config())

        assert result.name == "fnos_20240101_10.img.xz"

    def test_local_mode_empty_directory_raises(self, make_config):
        with pytest.raises(SourceImageNotFoundError) as excinfo:
            source.locate_source_image(make_config())
        assert excinfo.value.exit_code == 1

    def test_ci_mode_uses_explicit_source(self, make_config, tmp_path, workspace):
        explicit = tmp_path / "explicit.img.xz"
        explicit.write_bytes(b"x")
        (workspace / "other_1.img.xz").write_bytes(b"x")

        result = source.locate_source_image(make_config(ci_mode=True, source_file=explicit))

        assert result == explicit.resolve()

    def test_ci_mode_scans_workspace_first_match(self, make_config, workspace):
        (workspace / "b_2.img.xz").write_bytes(b"x")
        (workspace / "a_1.img.xz").write_bytes(b"x")

        result = source.locate_source_image(make_config(ci_mode=True))

        assert result.name == "a_1.img.xz"

    def test_ci_mode_ignores_image_dir(self, make_config, source_image):
        with pytest.raises(SourceImageNotFoundError):
            source.locate_source_image(make_config(ci_mode=True))

    def test_explicit_source_must_be_regular_file(self, make_config, tmp_path):
        directory = tmp_path / "dir.img.xz"
        directory.mkdir()

        with pytest.raises(SourceImageNotFoundError, match="dir.img.xz"):
            source.locate_source_image(make_config(ci_mode=True, source_file=directory))

    def test_explicit_source_missing(self, make_config, tmp_path):
        with pytest.raises(SourceImageNotFoundError):
            source.locate_source_image(
                make_config(source_file=tmp_path / "missing.img.xz")
            )


class TestDeriveVersion:
    def test_last_underscore_digit_run(self):
        assert source.derive_version(Path("foo_20240102_99.img.xz")) == "99"

    def test_override_wins_verbatim(self):
        assert source.derive_version(Path("foo_20240102_99.img.xz"), "v1.2 beta/3") == "v1.2 beta/3"

    def test_fallback_uses_timestamp(self):
        assert source.derive_version(Path("image.img.xz"), now=1700000000.7) == "local-1700000000"

    def test_digits_without_underscore_are_ignored(self):
        assert source.derive_version(Path("image-2024.img.xz"), now=5) == "local-5"
