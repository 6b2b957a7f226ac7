"""
Archive stores for backup entries.

Supports:
- DirectoryStore: one archive file per cycle in the destination directory
- ContainerStore: one zip container holding a named tar entry per cycle
"""

import logging
import os
import re
import shutil
import zipfile
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Set

from backupd.models import BackupEntry
from .compression import ARCHIVE_EXTENSIONS, KNOWN_EXTENSIONS, generate_archive_filename

logger = logging.getLogger(__name__)

CONTAINER_FILENAME = 'backups.zip'
CONTAINER_ENTRY_SUFFIX = '.tar'

# Largest entry zipfile writes without ZIP64 extensions
_ZIP64_THRESHOLD = (1 << 31) - 1


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class EntryTimestampError(ValueError):
    """Raised when a container entry carries a timestamp that cannot be read."""
    pass


def entry_timestamp(date_time) -> datetime:
    """
    Normalize a zip entry's date_time metadata into a datetime.

    Zip stores entry times as DOS date/time fields, exposed by zipfile as
    ``(year, month, day, hour, minute, second)`` in local time with a
    two-second resolution; ``unzip -l`` prints the same fields in its compact
    listing form. Years before 1980 cannot be encoded.

    Args:
        date_time: 6-tuple of integers from ZipInfo.date_time

    Returns:
        Naive local datetime

    Raises:
        EntryTimestampError: If the value is not a valid 6-tuple date
    """
    if not isinstance(date_time, (tuple, list)) or len(date_time) != 6:
        raise EntryTimestampError(f"Expected a 6-field date_time, got {date_time!r}")

    if not all(isinstance(part, int) and not isinstance(part, bool) for part in date_time):
        raise EntryTimestampError(f"Non-integer field in date_time {date_time!r}")

    if date_time[0] < 1980:
        raise EntryTimestampError(f"Year before 1980 in date_time {date_time!r}")

    try:
        return datetime(*date_time)
    except ValueError as e:
        raise EntryTimestampError(f"Invalid date_time {date_time!r}: {e}")


class ArchiveStore(ABC):
    """
    Persistent set of backup entries.

    Entries are addressed by name (the cycle timestamp). list() rescans the
    backend on every call.
    """

    #: Compression format the cycle should build before add()
    archive_format = 'tar.gz'

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

    @abstractmethod
    def list(self) -> List[BackupEntry]:
        """Return every entry, oldest first."""

    @abstractmethod
    def add(self, archive_path: str, name: str):
        """Insert or replace the entry called name with the given archive."""

    @abstractmethod
    def remove(self, names: Iterable[str]) -> List[str]:
        """Delete the named entries, ignoring missing ones."""

    def _ensure_base(self):
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create storage directory: {e}")


class DirectoryStore(ArchiveStore):
    """
    One independent archive file per cycle.

    Layout: {base_path}/{YYYYMMDD_HHMMSS}.{ext}. The entry's creation time is
    the file's modification time. Files that don't follow the naming pattern
    are never listed or removed.
    """

    _NAME_RE = re.compile(
        r'^(\d{8}_\d{6})\.(' + '|'.join(re.escape(ext) for ext in KNOWN_EXTENSIONS) + r')$'
    )

    def __init__(self, base_path: str, compression_format: str = 'tar.gz'):
        """
        Initialize directory store.

        Args:
            base_path: Destination directory
            compression_format: Format of archives written by the cycle
        """
        super().__init__(base_path)

        if compression_format not in ARCHIVE_EXTENSIONS:
            raise ValueError(f"Invalid compression format: {compression_format}")
        self.archive_format = compression_format

    def _files_by_name(self) -> dict:
        files = {}
        if not self.base_path.exists():
            return files

        for file_path in self.base_path.iterdir():
            match = self._NAME_RE.match(file_path.name)
            if match and file_path.is_file():
                files.setdefault(match.group(1), []).append(file_path)
        return files

    def list(self) -> List[BackupEntry]:
        """
        List all backup archives.

        Returns:
            BackupEntry per timestamp name, oldest first

        Raises:
            StorageError: If listing fails
        """
        try:
            entries = []
            for name, paths in self._files_by_name().items():
                stats = [path.stat() for path in paths]
                entries.append(BackupEntry(
                    name=name,
                    created_at=datetime.fromtimestamp(min(stat.st_mtime for stat in stats)),
                    size_bytes=sum(stat.st_size for stat in stats)
                ))
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

        return sorted(entries, key=lambda entry: (entry.created_at, entry.name))

    def add(self, archive_path: str, name: str):
        """
        Move an archive into the store as {name}.{ext}.

        Replaces any archive already stored under the same name.

        Raises:
            StorageError: If the archive cannot be stored
        """
        if not os.path.exists(archive_path):
            raise StorageError(f"Source file not found: {archive_path}")

        self._ensure_base()
        dest_path = self.base_path / generate_archive_filename(name, self.archive_format)

        try:
            for existing in self._files_by_name().get(name, []):
                if existing != dest_path:
                    existing.unlink()
            os.replace(archive_path, dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store archive: {e}")

    def remove(self, names: Iterable[str]) -> List[str]:
        """
        Delete the archives for the given names.

        Returns:
            Names that were present and deleted

        Raises:
            StorageError: If a deletion fails
        """
        wanted = set(names)
        removed = []

        for name, paths in self._files_by_name().items():
            if name not in wanted:
                continue
            try:
                for path in paths:
                    path.unlink(missing_ok=True)
            except PermissionError as e:
                raise StorageError(f"Permission denied deleting {name}: {e}")
            except OSError as e:
                raise StorageError(f"Failed to delete {name}: {e}")
            removed.append(name)

        return sorted(removed)


class ContainerStore(ArchiveStore):
    """
    A single zip container with one tar entry per cycle.

    Layout: {base_path}/backups.zip holding {YYYYMMDD_HHMMSS}.tar entries.
    Entry creation times come from the zip's own per-entry metadata. Entries
    whose metadata cannot be read are logged and left alone.
    """

    archive_format = 'none'

    def __init__(self, base_path: str):
        super().__init__(base_path)
        self.container_path = self.base_path / CONTAINER_FILENAME

    @staticmethod
    def _entry_name(filename: str):
        if filename.endswith(CONTAINER_ENTRY_SUFFIX) and '/' not in filename:
            return filename[:-len(CONTAINER_ENTRY_SUFFIX)]
        return None

    def list(self) -> List[BackupEntry]:
        """
        List entries in the container.

        Returns:
            BackupEntry per tar entry, oldest first

        Raises:
            StorageError: If the container cannot be read
        """
        if not self.container_path.exists():
            return []

        entries = {}
        try:
            with zipfile.ZipFile(self.container_path, 'r') as zipf:
                for info in zipf.infolist():
                    name = self._entry_name(info.filename)
                    if name is None:
                        logger.debug(f"Ignoring container member: {info.filename}")
                        continue

                    try:
                        created_at = entry_timestamp(info.date_time)
                    except EntryTimestampError as e:
                        logger.warning(f"Skipping container entry {info.filename}: {e}")
                        continue

                    # Duplicate members: the last one written wins, as on extraction
                    entries[name] = BackupEntry(name=name, created_at=created_at, size_bytes=info.file_size)
        except zipfile.BadZipFile as e:
            raise StorageError(f"Corrupt backup container {self.container_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read backup container: {e}")

        return sorted(entries.values(), key=lambda entry: (entry.created_at, entry.name))

    def add(self, archive_path: str, name: str):
        """
        Append an archive to the container as {name}.tar.

        Creates the container on first use. An existing entry with the same
        name is replaced.

        Raises:
            StorageError: If the container cannot be written
        """
        if not os.path.exists(archive_path):
            raise StorageError(f"Source file not found: {archive_path}")

        self._ensure_base()
        arcname = f"{name}{CONTAINER_ENTRY_SUFFIX}"

        try:
            if self.container_path.exists():
                self._rewrite_without({arcname})
            with zipfile.ZipFile(self.container_path, 'a', zipfile.ZIP_DEFLATED) as zipf:
                zipf.write(archive_path, arcname)
        except zipfile.BadZipFile as e:
            raise StorageError(f"Corrupt backup container {self.container_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to add {arcname} to container: {e}")

    def remove(self, names: Iterable[str]) -> List[str]:
        """
        Delete the named entries in a single rewrite of the container.

        Returns:
            Names that were present and deleted

        Raises:
            StorageError: If the container cannot be rewritten
        """
        if not self.container_path.exists():
            return []

        arcnames = {f"{name}{CONTAINER_ENTRY_SUFFIX}" for name in names}
        if not arcnames:
            return []

        try:
            removed = self._rewrite_without(arcnames)
        except zipfile.BadZipFile as e:
            raise StorageError(f"Corrupt backup container {self.container_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to remove entries from container: {e}")

        return sorted(self._entry_name(arcname) for arcname in removed)

    def _rewrite_without(self, arcnames: Set[str]) -> Set[str]:
        """
        Replace the container with a copy lacking the given members.

        Zip has no in-place delete, so the remaining members are streamed
        into a temporary container that then replaces the existing one.

        Returns:
            Member names that were dropped
        """
        with zipfile.ZipFile(self.container_path, 'r') as zin:
            present = {info.filename for info in zin.infolist()} & arcnames
            if not present:
                return set()

            temp_path = self.container_path.with_name(self.container_path.name + '.tmp')
            try:
                with zipfile.ZipFile(temp_path, 'w') as zout:
                    for info in zin.infolist():
                        if info.filename in arcnames:
                            continue
                        # Fresh ZipInfo keeps date_time without sharing state with zin
                        copied = zipfile.ZipInfo(info.filename, date_time=info.date_time)
                        copied.compress_type = info.compress_type
                        copied.external_attr = info.external_attr
                        copied.file_size = info.file_size
                        with zin.open(info) as src, \
                                zout.open(copied, 'w', force_zip64=info.file_size > _ZIP64_THRESHOLD) as dst:
                            shutil.copyfileobj(src, dst)
            except BaseException:
                temp_path.unlink(missing_ok=True)
                raise

        os.replace(temp_path, self.container_path)
        return present


def create_store(backend: str, base_path: str, compression_format: str = 'tar.gz') -> ArchiveStore:
    """
    Factory function to create the configured archive store.

    Args:
        backend: 'directory' or 'container'
        base_path: Destination directory
        compression_format: Archive format for the directory backend

    Returns:
        DirectoryStore or ContainerStore instance

    Raises:
        ValueError: If backend is invalid
    """
    if backend == 'directory':
        return DirectoryStore(base_path, compression_format)
    elif backend == 'container':
        return ContainerStore(base_path)
    else:
        raise ValueError(f"Invalid store backend: {backend}")
