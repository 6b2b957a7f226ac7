"""
Shared pytest fixtures for backupd tests.

This module provides fixtures for:
- Source trees with small and oversized files
- Backup destination directories
- Daemon configuration
- Mock fixtures for the scheduler
"""

import os
import tarfile
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from backupd.config import DaemonConfig
from backupd.models import BackupEntry, RetentionConfig, SourceSpec


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - source/test_file1.txt
    - source/test_file2.log
    - source/nested/test_file3.txt
    - source/big.bin (2 KB, over the 1 KB cap used in tests)
    - source/test_file.pyc (should be excluded in tests)
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'test_file1.txt').write_text('Test content 1')
    (source / 'test_file2.log').write_text('Test log content')

    nested_dir = source / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    (source / 'big.bin').write_bytes(b'x' * 2048)
    (source / 'test_file.pyc').write_bytes(b'compiled python')

    return source


@pytest.fixture
def destination(tmp_path):
    """Empty backup destination directory."""
    dest = tmp_path / 'backups'
    dest.mkdir()
    return dest


@pytest.fixture
def retention_config():
    """Default retention windows: 1 day short window, 1 year maximum age."""
    return RetentionConfig(short_window_minutes=1440, max_age_minutes=525600)


@pytest.fixture
def daemon_config(temp_files, destination, retention_config):
    """DaemonConfig backing up temp_files into destination."""
    return DaemonConfig(
        sources=(SourceSpec(path=str(temp_files), max_file_size_bytes=1024),),
        destination=str(destination),
        interval_seconds=600,
        min_free_space_kb=0,
        retention=retention_config,
        store_backend='directory',
        compression_format='tar.gz',
        capture_workers=2
    )


@pytest.fixture
def make_entry():
    """Build a BackupEntry aged a number of minutes before now."""
    def _make(now, minutes, name=None):
        created_at = now - timedelta(minutes=minutes)
        return BackupEntry(name=name or f"age_{minutes}", created_at=created_at)
    return _make


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a sample tar archive for store tests.
    """
    test_dir = tmp_path / 'test_data'
    test_dir.mkdir()
    (test_dir / 'file1.txt').write_text('Content 1')
    (test_dir / 'file2.txt').write_text('Content 2')

    archive_path = tmp_path / 'staged.tar'
    with tarfile.open(archive_path, 'w') as tar:
        tar.add(test_dir, arcname='test_data')

    return archive_path


@pytest.fixture
def set_mtime():
    """Set a file's modification time to a given datetime."""
    def _set(path, when: datetime):
        stamp = when.timestamp()
        os.utime(path, (stamp, stamp))
    return _set


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('backupd.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
