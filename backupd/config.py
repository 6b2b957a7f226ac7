import os
import re
from dataclasses import dataclass
from typing import Tuple

from backupd.backup.compression import ARCHIVE_EXTENSIONS
from backupd.models import RetentionConfig, SourceSpec


class ConfigError(Exception):
    """Raised when the daemon configuration is invalid."""
    pass


_SIZE_RE = re.compile(r'^\s*(\d+)\s*([kKmMgG]?)[bB]?\s*$')
_SIZE_UNITS = {'': 1, 'k': 1024, 'm': 1024 ** 2, 'g': 1024 ** 3}


def parse_size(value) -> int:
    """
    Parse a size with an optional rsync-style suffix into bytes.

    Accepts plain byte counts and ``k``/``M``/``G`` suffixes
    (case-insensitive, binary multiples), e.g. ``100k`` or ``10M``.

    Raises:
        ValueError: If the value is not a recognised size
    """
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Size must not be negative: {value}")
        return value

    match = _SIZE_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid size: {value!r}")

    number, unit = match.groups()
    return int(number) * _SIZE_UNITS[unit.lower()]


def _split_env(name: str, default: str, separator: str) -> Tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(item.strip() for item in raw.split(separator) if item.strip())


class Config:
    """Base configuration"""

    # Sources
    BACKUP_SOURCES = _split_env('BACKUP_SOURCES', os.pathsep.join(['~/workdir', '~/documents']), os.pathsep)
    MAX_FILE_SIZE = os.environ.get('MAX_FILE_SIZE', '100k')
    EXCLUDE_PATTERNS = _split_env('EXCLUDE_PATTERNS', '', ',')
    CAPTURE_WORKERS = os.environ.get('CAPTURE_WORKERS', '4')

    # Destination
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or '~/.backup'
    STORE_BACKEND = os.environ.get('STORE_BACKEND', 'directory')
    COMPRESSION_FORMAT = os.environ.get('COMPRESSION_FORMAT', 'tar.gz')

    # Schedule
    BACKUP_INTERVAL = os.environ.get('BACKUP_INTERVAL', '600')  # seconds
    MIN_FREE_SPACE_KB = os.environ.get('MIN_FREE_SPACE_KB', '1000000')

    # Retention (minutes): 24 hours / 1 year
    RETENTION_SHORT_MINUTES = os.environ.get('RETENTION_SHORT_MINUTES', '1440')
    RETENTION_MAX_MINUTES = os.environ.get('RETENTION_MAX_MINUTES', '525600')

    # Logging
    DEBUG = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')
    BACKUP_INTERVAL = os.environ.get('BACKUP_INTERVAL', '60')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    DEBUG = True
    BACKUP_SOURCES = ()
    BACKUP_DIR = os.path.join(os.environ.get('TMPDIR', '/tmp'), 'backupd-test')
    BACKUP_INTERVAL = '1'
    MIN_FREE_SPACE_KB = '0'
    CAPTURE_WORKERS = '1'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class DaemonConfig:
    """Immutable daemon settings, resolved once at startup."""

    sources: Tuple[SourceSpec, ...]
    destination: str
    interval_seconds: int
    min_free_space_kb: int
    retention: RetentionConfig
    store_backend: str = 'directory'
    compression_format: str = 'tar.gz'
    capture_workers: int = 4
    log_level: str = 'INFO'
    debug: bool = False

    @property
    def log_path(self) -> str:
        return os.path.join(self.destination, 'logs.txt')

    @property
    def lock_path(self) -> str:
        return os.path.join(self.destination, '.backupd.lock')

    @classmethod
    def from_object(cls, obj, **overrides) -> 'DaemonConfig':
        """
        Build a DaemonConfig from a configuration class or object.

        Args:
            obj: Object exposing the upper-case settings of ``Config``
            **overrides: Field values that replace the resolved ones

        Raises:
            ConfigError: If any setting is missing or invalid
        """
        try:
            max_file_size = parse_size(getattr(obj, 'MAX_FILE_SIZE'))
            exclude_patterns = tuple(getattr(obj, 'EXCLUDE_PATTERNS', ()))
            sources = tuple(
                SourceSpec(
                    path=os.path.expanduser(path),
                    max_file_size_bytes=max_file_size,
                    exclude_patterns=exclude_patterns
                )
                for path in getattr(obj, 'BACKUP_SOURCES')
            )

            values = {
                'sources': sources,
                'destination': os.path.abspath(os.path.expanduser(getattr(obj, 'BACKUP_DIR'))),
                'interval_seconds': int(getattr(obj, 'BACKUP_INTERVAL')),
                'min_free_space_kb': int(getattr(obj, 'MIN_FREE_SPACE_KB')),
                'retention': RetentionConfig(
                    short_window_minutes=int(getattr(obj, 'RETENTION_SHORT_MINUTES')),
                    max_age_minutes=int(getattr(obj, 'RETENTION_MAX_MINUTES'))
                ),
                'store_backend': getattr(obj, 'STORE_BACKEND', 'directory'),
                'compression_format': getattr(obj, 'COMPRESSION_FORMAT', 'tar.gz'),
                'capture_workers': int(getattr(obj, 'CAPTURE_WORKERS', 4)),
                'log_level': str(getattr(obj, 'LOG_LEVEL', 'INFO')).upper(),
                'debug': bool(getattr(obj, 'DEBUG', False)),
            }
        except AttributeError as e:
            raise ConfigError(f"Missing configuration setting: {e}")
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}")

        values.update(overrides)
        daemon_config = cls(**values)
        daemon_config.validate()
        return daemon_config

    def validate(self):
        """
        Check cross-field constraints.

        Raises:
            ConfigError: If a setting is out of range
        """
        if self.interval_seconds <= 0:
            raise ConfigError(f"Backup interval must be positive: {self.interval_seconds}")
        if self.min_free_space_kb < 0:
            raise ConfigError(f"Free space threshold must not be negative: {self.min_free_space_kb}")
        if self.capture_workers < 1:
            raise ConfigError(f"Capture workers must be at least 1: {self.capture_workers}")
        if self.store_backend not in ('directory', 'container'):
            raise ConfigError(f"Invalid store backend: {self.store_backend}")
        if self.compression_format not in ARCHIVE_EXTENSIONS:
            raise ConfigError(f"Invalid compression format: {self.compression_format}")


def load_config(config_name: str = None, **overrides) -> DaemonConfig:
    """
    Resolve the named configuration profile into a DaemonConfig.

    Args:
        config_name: Key into ``config``; defaults to ``$BACKUPD_ENV`` or production
        **overrides: Field values that replace the resolved ones

    Raises:
        ConfigError: If the profile is unknown or a setting is invalid
    """
    if config_name is None:
        config_name = os.environ.get('BACKUPD_ENV', 'production')

    if config_name not in config:
        raise ConfigError(
            f"Unknown configuration profile: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )

    return DaemonConfig.from_object(config[config_name], **overrides)
