import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class BackupEntry:
    """One persisted backup, named after the cycle timestamp"""
    name: str
    created_at: datetime
    size_bytes: Optional[int] = None

    def __repr__(self):
        return f'<BackupEntry {self.name} created_at={self.created_at.isoformat()}>'


@dataclass(frozen=True)
class RetentionConfig:
    """Tiered retention windows, in minutes"""
    short_window_minutes: int
    max_age_minutes: int

    def __post_init__(self):
        if self.short_window_minutes <= 0:
            raise ValueError(f"Short retention window must be positive: {self.short_window_minutes}")
        if self.max_age_minutes <= self.short_window_minutes:
            raise ValueError(
                f"Maximum age ({self.max_age_minutes}) must exceed the short window "
                f"({self.short_window_minutes})"
            )

    @property
    def bucket_width(self) -> int:
        return self.short_window_minutes

    @property
    def bucket_count(self) -> int:
        return self.max_age_minutes // self.short_window_minutes - 1


@dataclass(frozen=True)
class SourceSpec:
    """A source directory tree and its per-file size cap"""
    path: str
    max_file_size_bytes: int
    exclude_patterns: Tuple[str, ...] = ()


@dataclass
class CycleResult:
    """Outcome of one capture -> archive -> retain cycle"""
    timestamp: str
    status: str = 'running'  # running, success, skipped, failed
    entry_name: Optional[str] = None
    archive_size_bytes: Optional[int] = None
    failed_sources: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    def __repr__(self):
        return f'<CycleResult {self.timestamp} status={self.status}>'


class DaemonState(enum.Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    SHUTTING_DOWN = 'shutting_down'


@dataclass(frozen=True)
class DaemonHandle:
    """Identifies a running backup loop"""
    pid: int
    destination: str
    lock_path: str
