"""Tests for npm version specifier resolution."""

import pytest
from semantic_version import Version

from guardpkg.adapters.semver import max_satisfying, parse_range, parse_version, resolve_version

DOCUMENT = {
    "dist-tags": {"latest": "2.1.0", "next": "1.3.0-beta.1"},
    "versions": {
        v: {}
        for v in ["0.9.0", "1.0.0", "1.2.0", "1.2.5", "1.3.0-beta.1", "2.0.0", "2.1.0"]
    },
}


class TestResolveVersion:
    """Test resolution against a registry document."""

    @pytest.mark.parametrize(
        "spec,expected",
        [
            (None, "2.1.0"),
            ("", "2.1.0"),
            ("latest", "2.1.0"),
            ("next", "1.3.0-beta.1"),
            ("1.2.0", "1.2.0"),
            ("^1.0.0", "1.2.5"),
            ("~1.2.0", "1.2.5"),
            ("~1", "1.2.5"),
            (">=1.0.0 <2.0.0", "1.2.5"),
            (">= 1.0.0 < 2.0.0", "1.2.5"),
            ("1.x", "1.2.5"),
            ("1", "1.2.5"),
            ("*", "2.1.0"),
            ("<=1.2", "1.2.5"),
            (">1.2", "2.1.0"),
            ("1.0.0 - 1.2.0", "1.2.0"),
            ("^0.9.0", "0.9.0"),
            ("^1.0.0 || ^2.0.0", "2.1.0"),
        ],
    )
    def test_resolves(self, spec, expected):
        assert resolve_version(DOCUMENT, spec) == expected

    def test_missing_exact_version(self):
        assert resolve_version(DOCUMENT, "9.9.9") is None

    def test_unsatisfiable_range(self):
        assert resolve_version(DOCUMENT, "^3.0.0") is None

    def test_unparseable_spec_falls_back_to_latest(self):
        """Test git URLs and other specifiers resolve to latest."""
        assert resolve_version(DOCUMENT, "git+https://github.com/owner/repo.git") == "2.1.0"
        assert resolve_version(DOCUMENT, "file:../local") == "2.1.0"

    def test_alias_is_not_resolved(self):
        """Test that an npm alias never resolves against the aliasing package."""
        assert resolve_version(DOCUMENT, "npm:other-package@^1.0.0") is None

    def test_prereleases_excluded_from_ranges(self):
        assert max_satisfying(list(DOCUMENT["versions"]), ">=1.2.5 <2.0.0") == "1.2.5"

    def test_non_semver_versions_are_ignored(self):
        assert max_satisfying(["1.0.0", "not-a-version", "1.1"], "^1.0.0") == "1.0.0"


class TestParseVersion:
    def test_full_version(self):
        assert parse_version("1.2.3") == Version("1.2.3")
        assert parse_version("v1.2.3-rc.1+build").prerelease == ("rc", "1")

    def test_partial_is_not_a_version(self):
        assert parse_version("1.2") is None
        assert parse_range("1.2") is not None
