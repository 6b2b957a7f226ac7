"""
Backup cycle executor - runs one capture -> archive -> retain pass.

Workflow:
1. Log the cycle timestamp
2. Ensure the destination exists
3. Check free space (skip the rest of the cycle if insufficient)
4. Capture sources into a staging directory
5. Create the archive and add it to the store
6. Cleanup the staging directory
7. Enforce the retention policy on the store
"""

import logging
import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from backupd.models import CycleResult
from .compression import create_archive, cycle_timestamp, get_archive_size, CompressionError
from .retention import RetentionPolicy
from .sources import SnapshotCapture
from .space import SpaceGuard
from .storage import ArchiveStore, StorageError

logger = logging.getLogger(__name__)

# Leftovers of an interrupted cycle: staging dirs and staged archives
_STAGING_DIR_RE = re.compile(r'^\d{8}_\d{6}$')
_STAGED_ARCHIVE_RE = re.compile(r'^\.\d{8}_\d{6}\.')


def remove_stale_staging(destination: str) -> list:
    """
    Delete staging directories and staged archives left by a crashed cycle.

    Only call this while holding the instance lock, when no cycle can be
    running against the destination.

    Returns:
        Names that were removed
    """
    removed = []
    if not os.path.isdir(destination):
        return removed

    for entry in sorted(os.scandir(destination), key=lambda e: e.name):
        try:
            if _STAGING_DIR_RE.match(entry.name) and entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            elif _STAGED_ARCHIVE_RE.match(entry.name) and entry.is_file(follow_symlinks=False):
                os.remove(entry.path)
            else:
                continue
        except OSError as e:
            logger.warning(f"Failed to remove stale staging {entry.name}: {e}")
            continue

        logger.info(f"Removed stale staging {entry.name}")
        removed.append(entry.name)

    return removed


class BackupCycle:
    """
    Orchestrates one backup cycle against an archive store.

    Every failure is contained: the cycle is marked skipped or failed and
    the outcome is logged, so the daemon loop keeps running.
    """

    def __init__(
        self,
        config,
        store: ArchiveStore,
        space_guard: Optional[SpaceGuard] = None,
        capture: Optional[SnapshotCapture] = None,
        retention: Optional[RetentionPolicy] = None
    ):
        """
        Initialize backup cycle.

        Args:
            config: DaemonConfig with sources, destination and thresholds
            store: ArchiveStore receiving the archive
            space_guard: Free space check (default SpaceGuard())
            capture: Source capture (default SnapshotCapture(config.capture_workers))
            retention: Retention policy (default built from config.retention)
        """
        self.config = config
        self.store = store
        self.space_guard = space_guard or SpaceGuard()
        self.capture = capture or SnapshotCapture(max_workers=config.capture_workers)
        self.retention = retention or RetentionPolicy(config.retention)
        self.result = None
        self.staging_dir = None
        self.archive_path = None

    def run(self, now: Optional[datetime] = None) -> CycleResult:
        """
        Execute the cycle.

        Args:
            now: Cycle time, defaults to the current time

        Returns:
            CycleResult with the outcome and the cycle's log lines
        """
        now = now or datetime.now()
        timestamp = cycle_timestamp(now)
        self.result = CycleResult(timestamp=timestamp)
        self.staging_dir = None
        self.archive_path = None

        self._log(f"Backup cycle {now.strftime('%Y-%m-%d %H:%M:%S')}")

        try:
            os.makedirs(self.config.destination, exist_ok=True)
        except OSError as e:
            self.result.status = 'failed'
            self.result.error_message = str(e)
            self._log(f"Cannot create destination {self.config.destination}: {e}", logging.ERROR)
            return self.result

        if self.space_guard.check(self.config.destination, self.config.min_free_space_kb):
            try:
                self._backup(timestamp)
                self.result.status = 'success'
                self._log(f"Backup stored: {timestamp}")
            except (CompressionError, StorageError) as e:
                self.result.status = 'failed'
                self.result.error_message = str(e)
                self._log(f"Backup failed: {e}", logging.ERROR)
            finally:
                self._cleanup()

            self._enforce_retention(now)
        else:
            self.result.status = 'skipped'
            self._log("Insufficient free space. Skipping this backup.", logging.WARNING)

        return self.result

    def _backup(self, timestamp: str):
        """
        Capture sources and store the resulting archive.

        Raises:
            CompressionError: If the archive cannot be built
            StorageError: If the store rejects the archive
        """
        self.staging_dir = os.path.join(self.config.destination, timestamp)
        self._log(f"Capturing {len(self.config.sources)} sources")

        captured = self.capture.capture(self.config.sources, self.staging_dir)
        self.result.failed_sources = sorted(captured.failed)
        for path, error in sorted(captured.failed.items()):
            self._log(f"Source {path} not fully copied: {error}", logging.WARNING)

        if not captured.copied:
            raise CompressionError("No sources captured")

        archive_base = os.path.join(self.config.destination, f".{timestamp}")
        self.archive_path = create_archive(captured.copied, archive_base, self.store.archive_format)
        self.result.archive_size_bytes = get_archive_size(self.archive_path)
        self._log(
            f"Archive created: {os.path.basename(self.archive_path)} "
            f"({self.result.archive_size_bytes / 1024 / 1024:.2f} MB)"
        )

        self.store.add(self.archive_path, timestamp)
        self.result.entry_name = timestamp

    def _enforce_retention(self, now: datetime):
        try:
            self.result.deleted = self.retention.enforce(self.store, now)
        except StorageError as e:
            self._log(f"Retention failed: {e}", logging.ERROR)
            return

        if self.result.deleted:
            self._log(f"Retention removed {len(self.result.deleted)} backups: {', '.join(self.result.deleted)}")

    def _cleanup(self):
        """Remove the staging directory and any archive the store did not take."""
        if self.staging_dir and os.path.exists(self.staging_dir):
            try:
                shutil.rmtree(self.staging_dir)
            except OSError as e:
                self._log(f"Warning: Failed to cleanup staging directory: {e}", logging.WARNING)

        if self.archive_path and os.path.exists(self.archive_path):
            try:
                Path(self.archive_path).unlink()
            except OSError as e:
                self._log(f"Warning: Failed to cleanup staged archive: {e}", logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Log a message and keep a timestamped copy on the cycle result.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.result.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
