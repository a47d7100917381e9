"""Tests for single-wildcard ignore patterns."""

import pytest

from repoindex.patterns import IgnorePattern, PathMatcher


class TestIgnorePattern:
    def test_exact_match(self):
        p = IgnorePattern("node_modules")
        assert p.matches("node_modules")
        assert not p.matches("node_modules2")

    def test_leading_wildcard(self):
        p = IgnorePattern("*.min.js")
        assert p.matches("app.min.js")
        assert p.matches(".min.js")
        assert not p.matches("app.js")

    def test_trailing_wildcard(self):
        p = IgnorePattern("build*")
        assert p.matches("build")
        assert p.matches("build-output")
        assert not p.matches("rebuild")

    def test_middle_wildcard(self):
        p = IgnorePattern("test_*_data")
        assert p.matches("test_big_data")
        assert not p.matches("test_big_data.txt")

    def test_regex_characters_are_literal(self):
        p = IgnorePattern("*.log")
        assert not p.matches("applog")
        assert IgnorePattern("a+b").matches("a+b")
        assert not IgnorePattern("a+b").matches("aab")

    def test_case_sensitive(self):
        assert not IgnorePattern("*.LOG").matches("app.log")

    def test_more_than_one_wildcard_rejected(self):
        with pytest.raises(ValueError):
            IgnorePattern("*.*")

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            IgnorePattern("")


class TestPathMatcher:
    @pytest.fixture
    def matcher(self):
        return PathMatcher(["node_modules", "dist*"], ["*.lock", "package-lock.json"])

    def test_ignored_directory_anywhere_in_path(self, matcher):
        assert matcher.is_ignored("node_modules/x/index.js")
        assert matcher.is_ignored("web/node_modules/lib.js")
        assert matcher.is_ignored("dist-esm/a.js")

    def test_directory_pattern_not_applied_to_filename(self, matcher):
        assert not matcher.is_ignored("src/node_modules")
        assert not matcher.is_ignored("src/dist.py")

    def test_file_patterns(self, matcher):
        assert matcher.is_ignored("Cargo.lock")
        assert matcher.is_ignored("web/package-lock.json")
        assert not matcher.is_ignored("src/lock.py")

    def test_plain_source_kept(self, matcher):
        assert not matcher.is_ignored("src/app/main.py")
