"""
Tests for file change detection and source file discovery.
"""

import json

import pytest

from semantic_dupes.errors import CorruptIndexError
from semantic_dupes.file_tracker import FileTracker, diff_hashes, hash_content
from semantic_dupes.scanner import find_source_files, is_excluded


class TestDiffHashes:
    """Partitioning files into added/modified/deleted/unchanged."""

    def test_partition(self):
        previous = {"a.ts": "1", "b.ts": "2", "c.ts": "3"}
        current = {"a.ts": "1", "b.ts": "changed", "d.ts": "4"}

        changes = diff_hashes(current, previous)

        assert changes.added == ["d.ts"]
        assert changes.modified == ["b.ts"]
        assert changes.deleted == ["c.ts"]
        assert changes.unchanged == ["a.ts"]
        assert changes.has_changes
        assert changes.to_process == ["b.ts", "d.ts"]

    def test_no_changes(self):
        hashes = {"a.ts": "1"}
        changes = diff_hashes(hashes, dict(hashes))

        assert not changes.has_changes
        assert changes.to_process == []

    def test_lists_are_sorted(self):
        changes = diff_hashes({"z.ts": "1", "a.ts": "2", "m.ts": "3"}, {})
        assert changes.added == ["a.ts", "m.ts", "z.ts"]

    def test_hash_content(self):
        assert hash_content("abc") == hash_content("abc")
        assert hash_content("abc") != hash_content("abd")
        assert len(hash_content("")) == 64


class TestFileTracker:
    """Recorded hashes and their persistence."""

    def test_detect_changes(self):
        tracker = FileTracker({"a.ts": "1"})
        changes = tracker.detect_changes({"a.ts": "2"})
        assert changes.modified == ["a.ts"]

    def test_set_get_remove(self):
        tracker = FileTracker()
        tracker.set("a.ts", "1")

        assert tracker.get("a.ts") == "1"
        assert "a.ts" in tracker
        assert len(tracker) == 1
        assert tracker.remove("a.ts") is True
        assert tracker.remove("a.ts") is False
        assert tracker.get("a.ts") is None

    def test_save_and_load(self, tmp_path):
        tracker = FileTracker({"b.ts": "2", "a.ts": "1"})
        tracker.save(tmp_path)

        data = json.loads((tmp_path / "hashes.json").read_text())
        assert data["version"] == 1
        assert list(data["files"]) == ["a.ts", "b.ts"]

        loaded = FileTracker.load(tmp_path)
        assert loaded.snapshot() == {"a.ts": "1", "b.ts": "2"}
        assert loaded.tracked_files() == ["a.ts", "b.ts"]

    def test_missing_file_is_empty(self, tmp_path):
        assert len(FileTracker.load(tmp_path)) == 0

    def test_corrupt_file_raises(self, tmp_path):
        (tmp_path / "hashes.json").write_text('{"version": 1, "files": [1, 2]}')

        with pytest.raises(CorruptIndexError, match="Malformed"):
            FileTracker.load(tmp_path)

    def test_invalid_json_raises(self, tmp_path):
        (tmp_path / "hashes.json").write_text("{not json")

        with pytest.raises(CorruptIndexError):
            FileTracker.load(tmp_path)


class TestScanner:
    """Source file discovery."""

    @pytest.fixture
    def project(self, tmp_path):
        files = [
            "src/App.tsx",
            "src/utils/format.ts",
            "src/utils/format.test.ts",
            "src/types.d.ts",
            "src/legacy.js",
            "src/tool.py",
            "src/notes.md",
            "node_modules/lib/index.js",
            "dist/bundle.js",
            "src/__tests__/App.tsx",
            ".sdupes_index/vectors.json",
        ]
        for rel in files:
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("export const x = 1;\n")
        return tmp_path

    def test_default_excludes(self, project):
        assert find_source_files(project) == [
            "src/App.tsx",
            "src/legacy.js",
            "src/tool.py",
            "src/utils/format.ts",
        ]

    def test_user_excludes(self, project):
        files = find_source_files(project, ["src/utils/*", "*.py"])
        assert files == ["src/App.tsx", "src/legacy.js"]

    def test_is_excluded_matches_top_level_directories(self):
        assert is_excluded("dist/a.js", ["*/dist/*"])
        assert not is_excluded("src/distance.ts", ["*/dist/*"])
