"""
Unit tests for configuration (backupd/config.py).
"""

import os

import pytest

from backupd import config as config_module
from backupd.config import Config, ConfigError, DaemonConfig, load_config, parse_size


class _Profile(config_module.TestingConfig):
    BACKUP_SOURCES = ('~/workdir', '/srv/data')
    BACKUP_DIR = '/var/backups/daemon'
    MAX_FILE_SIZE = '100k'
    EXCLUDE_PATTERNS = ('*.pyc',)
    BACKUP_INTERVAL = '600'
    MIN_FREE_SPACE_KB = '1000000'
    LOG_LEVEL = 'info'


class TestParseSize:

    @pytest.mark.parametrize("value,expected", [
        ('100', 100),
        ('100k', 102400),
        ('100K', 102400),
        ('100kb', 102400),
        ('10M', 10 * 1024 ** 2),
        ('1G', 1024 ** 3),
        (' 5 k ', 5120),
        (2048, 2048),
    ])
    def test_valid(self, value, expected):
        assert parse_size(value) == expected

    @pytest.mark.parametrize("value", ['', 'k', '10T', '1.5M', '-1', 'lots', -5])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_size(value)


class TestDaemonConfig:
    """Test resolving DaemonConfig from a configuration class."""

    def test_from_object(self):
        daemon_config = DaemonConfig.from_object(_Profile)

        assert [s.path for s in daemon_config.sources] == [os.path.expanduser('~/workdir'), '/srv/data']
        assert all(s.max_file_size_bytes == 102400 for s in daemon_config.sources)
        assert all(s.exclude_patterns == ('*.pyc',) for s in daemon_config.sources)
        assert daemon_config.destination == '/var/backups/daemon'
        assert daemon_config.interval_seconds == 600
        assert daemon_config.min_free_space_kb == 1000000
        assert daemon_config.retention.short_window_minutes == 1440
        assert daemon_config.retention.max_age_minutes == 525600
        assert daemon_config.log_level == 'INFO'

    def test_derived_paths(self):
        daemon_config = DaemonConfig.from_object(_Profile)

        assert daemon_config.log_path == '/var/backups/daemon/logs.txt'
        assert daemon_config.lock_path == '/var/backups/daemon/.backupd.lock'

    def test_destination_made_absolute(self):
        class Relative(_Profile):
            BACKUP_DIR = 'relative/backups'

        assert os.path.isabs(DaemonConfig.from_object(Relative).destination)

    def test_overrides(self):
        daemon_config = DaemonConfig.from_object(_Profile, interval_seconds=5, store_backend='container')

        assert daemon_config.interval_seconds == 5
        assert daemon_config.store_backend == 'container'

    def test_immutable(self):
        daemon_config = DaemonConfig.from_object(_Profile)

        with pytest.raises(AttributeError):
            daemon_config.interval_seconds = 1

    @pytest.mark.parametrize("attribute,value,message", [
        ('BACKUP_INTERVAL', '0', 'interval must be positive'),
        ('BACKUP_INTERVAL', 'often', 'Invalid configuration'),
        ('MIN_FREE_SPACE_KB', '-1', 'must not be negative'),
        ('MAX_FILE_SIZE', 'huge', 'Invalid configuration'),
        ('CAPTURE_WORKERS', '0', 'at least 1'),
        ('STORE_BACKEND', 's3', 'Invalid store backend'),
        ('COMPRESSION_FORMAT', 'rar', 'Invalid compression format'),
        ('RETENTION_MAX_MINUTES', '60', 'Invalid configuration'),
    ])
    def test_invalid_settings(self, attribute, value, message):
        profile = type('Broken', (_Profile,), {attribute: value})

        with pytest.raises(ConfigError, match=message):
            DaemonConfig.from_object(profile)

    def test_missing_setting(self):
        class Incomplete:
            BACKUP_SOURCES = ()

        with pytest.raises(ConfigError, match="Missing configuration setting"):
            DaemonConfig.from_object(Incomplete)

    def test_base_defaults(self):
        assert Config.MAX_FILE_SIZE == os.environ.get('MAX_FILE_SIZE', '100k')
        assert Config.STORE_BACKEND == os.environ.get('STORE_BACKEND', 'directory')


class TestLoadConfig:

    def test_testing_profile(self):
        daemon_config = load_config('testing')

        assert daemon_config.sources == ()
        assert daemon_config.interval_seconds == 1
        assert daemon_config.debug is True

    def test_profile_from_environment(self, monkeypatch):
        monkeypatch.setenv('BACKUPD_ENV', 'testing')

        assert load_config().capture_workers == 1

    def test_unknown_profile(self):
        with pytest.raises(ConfigError, match="Unknown configuration profile"):
            load_config('staging')

    def test_overrides(self, tmp_path):
        daemon_config = load_config('testing', destination=str(tmp_path))

        assert daemon_config.destination == str(tmp_path)
