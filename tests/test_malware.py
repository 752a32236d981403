"""Tests for the malware hash registry."""

import json

import pytest

from guardpkg.analyzers.malware import MalwareHashRegistry, hash_bytes

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class TestMalwareHashRegistry:
    """Test registry lookups and persistence."""

    def test_hash_bytes(self):
        assert hash_bytes(b"") == EMPTY_SHA256

    def test_contains_is_case_insensitive(self):
        registry = MalwareHashRegistry([EMPTY_SHA256.upper()])
        assert registry.contains(EMPTY_SHA256)
        assert EMPTY_SHA256 in registry
        assert len(registry) == 1

    def test_add(self):
        registry = MalwareHashRegistry()
        assert not registry.contains(EMPTY_SHA256)
        registry.add(EMPTY_SHA256)
        assert registry.contains(EMPTY_SHA256)

    def test_non_string_membership(self):
        registry = MalwareHashRegistry([EMPTY_SHA256])
        assert 42 not in registry

    def test_load_missing_file(self, tmp_path):
        """Test that a missing file yields an empty registry."""
        registry = MalwareHashRegistry.load(tmp_path / "missing.json")
        assert len(registry) == 0

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "hashes.json"
        MalwareHashRegistry([EMPTY_SHA256]).save(path)
        assert json.loads(path.read_text()) == [EMPTY_SHA256]
        assert MalwareHashRegistry.load(path).contains(EMPTY_SHA256)

    def test_load_rejects_non_list(self, tmp_path):
        path = tmp_path / "hashes.json"
        path.write_text(json.dumps({"hash": EMPTY_SHA256}))
        with pytest.raises(ValueError):
            MalwareHashRegistry.load(path)
