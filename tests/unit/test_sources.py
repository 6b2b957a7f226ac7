"""
Unit tests for source capture (backupd/backup/sources.py).

Tests the size-filtered copy primitive and SnapshotCapture.
"""

import os
import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from backupd.backup.sources import (
    SnapshotCapture,
    SourceError,
    copy_tree,
    staging_names
)
from backupd.models import SourceSpec


class TestCopyTree:
    """Test copy_tree for size-filtered recursive copies."""

    def test_copies_small_files(self, temp_files, tmp_path):
        dest = tmp_path / "dest"

        copy_tree(str(temp_files), str(dest), 1024)

        assert (dest / "test_file1.txt").read_text() == "Test content 1"
        assert (dest / "nested" / "test_file3.txt").exists()

    def test_skips_files_over_cap(self, temp_files, tmp_path):
        dest = tmp_path / "dest"

        copy_tree(str(temp_files), str(dest), 1024)

        assert not (dest / "big.bin").exists()

    def test_file_at_cap_is_copied(self, temp_files, tmp_path):
        dest = tmp_path / "dest"

        copy_tree(str(temp_files), str(dest), 2048)

        assert (dest / "big.bin").exists()

    def test_exclude_patterns(self, temp_files, tmp_path):
        dest = tmp_path / "dest"

        copy_tree(str(temp_files), str(dest), 4096, exclude_patterns=("*.pyc", "nested"))

        assert not (dest / "test_file.pyc").exists()
        assert not (dest / "nested").exists()
        assert (dest / "test_file2.log").exists()

    def test_missing_source_raises(self, tmp_path):
        with pytest.raises(SourceError, match="does not exist"):
            copy_tree(str(tmp_path / "missing"), str(tmp_path / "dest"), 1024)

    def test_file_source_raises(self, temp_files, tmp_path):
        with pytest.raises(SourceError, match="Not a directory"):
            copy_tree(str(temp_files / "test_file1.txt"), str(tmp_path / "dest"), 1024)

    def test_partial_failure_keeps_copied_files(self, temp_files, tmp_path):
        dest = tmp_path / "dest"
        real_copy2 = shutil.copy2

        def failing_copy(src, dst, *args, **kwargs):
            if os.fspath(src).endswith("test_file2.log"):
                raise OSError("read error")
            return real_copy2(src, dst, *args, **kwargs)

        with patch("shutil.copy2", side_effect=failing_copy):
            with pytest.raises(SourceError, match="Partially copied"):
                copy_tree(str(temp_files), str(dest), 1024)

        assert (dest / "test_file1.txt").exists()
        assert not (dest / "test_file2.log").exists()


class TestStagingNames:
    """Test staging subdirectory naming."""

    def test_basenames(self):
        sources = [SourceSpec("/home/u/workdir", 1), SourceSpec("/home/u/documents/", 1)]

        assert staging_names(sources) == ["workdir", "documents"]

    def test_duplicate_basenames_get_suffix(self):
        sources = [SourceSpec("/a/data", 1), SourceSpec("/b/data", 1), SourceSpec("/c/data", 1)]

        assert staging_names(sources) == ["data", "data_2", "data_3"]


class TestSnapshotCapture:
    """Test SnapshotCapture across several sources."""

    def _make_source(self, root: Path, name: str) -> Path:
        source = root / name
        source.mkdir(parents=True)
        (source / f"{name}.txt").write_text(name)
        return source

    def test_captures_every_source(self, tmp_path):
        sources = [
            SourceSpec(str(self._make_source(tmp_path / "src", name)), 1024)
            for name in ("workdir", "documents")
        ]
        staging = tmp_path / "staging"

        result = SnapshotCapture(max_workers=2).capture(sources, str(staging))

        assert sorted(os.path.basename(p) for p in result.copied) == ["documents", "workdir"]
        assert result.failed == {}
        assert (staging / "workdir" / "workdir.txt").exists()

    def test_failed_source_does_not_abort(self, tmp_path):
        good = self._make_source(tmp_path / "src", "good")
        missing = tmp_path / "src" / "missing"
        sources = [SourceSpec(str(missing), 1024), SourceSpec(str(good), 1024)]

        result = SnapshotCapture().capture(sources, str(tmp_path / "staging"))

        assert [os.path.basename(p) for p in result.copied] == ["good"]
        assert list(result.failed) == [str(missing)]

    def test_per_source_size_cap(self, tmp_path):
        small_cap = self._make_source(tmp_path / "a", "small_cap")
        large_cap = self._make_source(tmp_path / "b", "large_cap")
        for source in (small_cap, large_cap):
            (source / "blob.bin").write_bytes(b"x" * 500)
        sources = [SourceSpec(str(small_cap), 100), SourceSpec(str(large_cap), 1000)]
        staging = tmp_path / "staging"

        SnapshotCapture().capture(sources, str(staging))

        assert not (staging / "small_cap" / "blob.bin").exists()
        assert (staging / "large_cap" / "blob.bin").exists()

    def test_no_sources(self, tmp_path):
        result = SnapshotCapture().capture([], str(tmp_path / "staging"))

        assert result.copied == []
        assert result.failed == {}
