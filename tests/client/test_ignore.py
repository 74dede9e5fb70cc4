"""Tests for the file filter."""

from __future__ import annotations

import pytest

from davsync.client.sync.ignore import (
    FileFilter,
    FilterMode,
    compile_matcher,
    detect_filter_mode,
    wildcard_to_regex,
)
from davsync.core.config import SyncSettings


class TestDetectFilterMode:
    """Tests for detect_filter_mode."""

    @pytest.mark.parametrize(
        ("pattern", "mode"),
        [
            ("*.git", FilterMode.WILDCARD),
            ("draft?.md", FilterMode.WILDCARD),
            ("^\\.git$", FilterMode.REGEX),
            ("(a|b)", FilterMode.REGEX),
            (".git", FilterMode.SIMPLE),
            ("node_modules", FilterMode.SIMPLE),
        ],
    )
    def test_modes(self, pattern: str, mode: FilterMode) -> None:
        assert detect_filter_mode(pattern) is mode


class TestCompileMatcher:
    """Tests for compile_matcher."""

    def test_wildcard_to_regex_escapes(self) -> None:
        assert wildcard_to_regex("*.md") == "^.*\\.md$"

    def test_wildcard_is_anchored(self) -> None:
        matches = compile_matcher("*.log")
        assert matches("debug.log")
        assert not matches("debug.log.md")

    def test_regex_searches(self) -> None:
        matches = compile_matcher("^draft-")
        assert matches("draft-1.md")
        assert not matches("final-draft-1.md")

    def test_simple_prefix(self) -> None:
        matches = compile_matcher("build", prefix=True)
        assert matches("build")
        assert matches("build/out.js")
        assert not matches("builder")

    def test_invalid_regex_never_matches(self) -> None:
        """A broken regex should be ignored rather than raise."""
        matches = compile_matcher("([")
        assert not matches("([")
        assert not matches("anything")

    def test_blank_pattern_never_matches(self) -> None:
        assert not compile_matcher("   ")("")


class TestFileFilter:
    """Tests for FileFilter.should_ignore."""

    def test_folder_segment(self) -> None:
        """A folder name anywhere in the path should exclude it."""
        file_filter = FileFilter(ignore_folders=[".git"], ignore_files=[], ignore_extensions=[])
        assert file_filter.should_ignore("notes/.git/config")
        assert file_filter.should_ignore(".git/HEAD")
        assert not file_filter.should_ignore("notes/git/config")

    def test_folder_full_path(self) -> None:
        file_filter = FileFilter(ignore_folders=["notes/archive"], ignore_files=[], ignore_extensions=[])
        assert file_filter.should_ignore("notes/archive/old.md")
        assert not file_filter.should_ignore("notes/current.md")

    def test_file_name_and_full_path(self) -> None:
        file_filter = FileFilter(
            ignore_folders=[], ignore_files=[".DS_Store", "notes/secret.md"], ignore_extensions=[]
        )
        assert file_filter.should_ignore("photos/.DS_Store")
        assert file_filter.should_ignore("notes/secret.md")
        assert not file_filter.should_ignore("other/secret.md")

    def test_file_wildcard(self) -> None:
        file_filter = FileFilter(ignore_folders=[], ignore_files=["~*"], ignore_extensions=[])
        assert file_filter.should_ignore("docs/~lock.docx")

    def test_extension_case_and_dot(self) -> None:
        """Extensions should match case-insensitively, with or without a dot."""
        file_filter = FileFilter(ignore_folders=[], ignore_files=[], ignore_extensions=[".TMP", "bak"])
        assert file_filter.should_ignore("a/b.tmp")
        assert file_filter.should_ignore("a/b.Bak")
        assert not file_filter.should_ignore("a/tmp")

    def test_defaults(self) -> None:
        """None should select the default ignore lists."""
        file_filter = FileFilter()
        assert file_filter.should_ignore("node_modules/x/index.js")
        assert file_filter.should_ignore("Thumbs.db") is False
        assert file_filter.should_ignore("thumbs.db")
        assert file_filter.should_ignore("a.swp")
        assert not file_filter.should_ignore("notes/a.md")

    def test_root_never_ignored(self) -> None:
        assert not FileFilter().should_ignore("/")

    def test_from_settings(self) -> None:
        settings = SyncSettings(ignore_folders=["private"], ignore_files=[], ignore_extensions=[])
        file_filter = FileFilter.from_settings(settings)
        assert file_filter.should_ignore("private/a.md")
        assert not file_filter.should_ignore(".git/config")
