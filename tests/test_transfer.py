#!/usr/bin/env python3
"""
Test suite for lib/transfer.py - directory mirroring, copy, relocate
"""

import pytest
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from lib.inventory import FileRecord
from lib.transfer import (
    same_filesystem, mirror_directories, copy_records, relocate_file,
)


class TestSameFilesystem:
    """Test same-filesystem detection"""

    def test_same_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir)
            (p / "a").touch()
            (p / "b").touch()
            assert same_filesystem(p / "a", p / "b")

    def test_nonexistent_path_returns_false(self):
        """Non-existent paths should return False (not crash)"""
        assert same_filesystem(Path("/nonexistent/a"), Path("/nonexistent/b")) is False


class TestMirrorDirectories:
    def test_creates_nested_and_empty_dirs(self, tmp_path):
        src = tmp_path / 'src'
        (src / 'a' / 'b').mkdir(parents=True)
        (src / 'empty').mkdir()

        created = mirror_directories(src, tmp_path / 'dst')

        assert (tmp_path / 'dst' / 'a' / 'b').is_dir()
        assert (tmp_path / 'dst' / 'empty').is_dir()
        assert created == 3

    def test_second_run_creates_nothing(self, tmp_path):
        src = tmp_path / 'src'
        (src / 'a').mkdir(parents=True)
        mirror_directories(src, tmp_path / 'dst')
        assert mirror_directories(src, tmp_path / 'dst') == 0


class TestCopyRecords:
    def test_copies_and_overwrites(self, tmp_path):
        src = tmp_path / 'src' / 'lib'
        src.mkdir(parents=True)
        (src / 'x.js').write_text("new")
        dest_root = tmp_path / 'dst'
        (dest_root / 'lib').mkdir(parents=True)
        (dest_root / 'lib' / 'x.js').write_text("old")

        count = copy_records([FileRecord(src / 'x.js', 'lib', 'x.js')], dest_root)

        assert count == 1
        assert (dest_root / 'lib' / 'x.js').read_text() == "new"


class TestRelocateFile:
    """Staged download → destination"""

    def test_same_fs_replace(self, tmp_path):
        staged = tmp_path / "temp_1_a.php"
        staged.write_text("decoded")
        dest = tmp_path / "dst" / "sub" / "a.php"

        assert relocate_file(staged, dest) is True
        assert dest.read_text() == "decoded"
        assert not staged.exists()

    def test_replaces_existing_destination(self, tmp_path):
        staged = tmp_path / "temp_1_a.php"
        staged.write_text("decoded")
        dest = tmp_path / "a.php"
        dest.write_text("stale")

        assert relocate_file(staged, dest) is True
        assert dest.read_text() == "decoded"

    def test_cross_fs_copy_verify_delete(self, tmp_path):
        staged = tmp_path / "temp_1_a.php"
        staged.write_text("hello world")
        dest = tmp_path / "dst" / "a.php"

        with patch('lib.transfer.same_filesystem', return_value=False):
            assert relocate_file(staged, dest) is True

        assert dest.read_text() == "hello world"
        assert not staged.exists()

    def test_missing_source_raises(self, tmp_path):
        with pytest.raises(OSError):
            relocate_file(tmp_path / "gone.php", tmp_path / "dst" / "gone.php")

    def test_interrupted_cross_fs_copy_leaves_no_partial_file(self, tmp_path):
        """Disk full mid-copy: nothing appears at dest, staged file survives"""
        staged = tmp_path / "temp_1_a.php"
        staged.write_text("<?php function full() {}")
        dest = tmp_path / "dst" / "a.php"

        def partial_copy(src, dst):
            Path(dst).write_bytes(b"<?php fun")
            raise OSError(28, "No space left on device")

        with patch('lib.transfer.same_filesystem', return_value=False), \
                patch('lib.transfer.shutil.copy2', side_effect=partial_copy):
            with pytest.raises(OSError):
                relocate_file(staged, dest)

        assert not dest.exists()
        assert list(dest.parent.iterdir()) == []
        assert staged.exists()

    def test_cross_fs_size_mismatch_keeps_old_destination(self, tmp_path):
        staged = tmp_path / "temp_1_a.php"
        staged.write_text("hello world")
        dest = tmp_path / "dst" / "a.php"
        dest.parent.mkdir()
        dest.write_text("previous")

        def short_copy(src, dst):
            Path(dst).write_text("hello")

        with patch('lib.transfer.same_filesystem', return_value=False), \
                patch('lib.transfer.shutil.copy2', side_effect=short_copy):
            assert relocate_file(staged, dest) is False

        assert dest.read_text() == "previous"
        assert [p.name for p in dest.parent.iterdir()] == ["a.php"]
        assert staged.exists()
