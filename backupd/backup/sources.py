"""
Source capture for backup cycles.

Copies each configured source tree into a per-cycle staging directory,
skipping files over the per-source size cap.
"""

import logging
import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from backupd.models import SourceSpec

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when a source cannot be copied, fully or partially."""
    pass


def _should_exclude(path: Path, exclude_patterns: Sequence[str]) -> bool:
    """
    Check if a path should be excluded based on exclude patterns.

    Args:
        path: Path to check
        exclude_patterns: Glob patterns matched against the full path or the name

    Returns:
        True if path matches any exclude pattern, False otherwise
    """
    if not exclude_patterns:
        return False

    path_str = str(path)
    path_name = path.name

    for pattern in exclude_patterns:
        if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
            return True
        if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
            return True

    return False


def copy_tree(source: str, dest: str, max_file_size_bytes: int, exclude_patterns: Sequence[str] = ()) -> str:
    """
    Recursively copy a directory, skipping files larger than the size cap.

    Files whose size is strictly greater than max_file_size_bytes are left
    out, as are paths matching exclude_patterns. Symlinks are copied as links.

    Args:
        source: Source directory
        dest: Destination directory (must not exist yet)
        max_file_size_bytes: Largest file size to copy
        exclude_patterns: Glob patterns to leave out

    Returns:
        The destination path

    Raises:
        SourceError: If the source is missing or any entry fails to copy.
            Entries that copied successfully stay in place.
    """
    source_path = Path(source).expanduser()

    if not source_path.exists():
        raise SourceError(f"Path does not exist: {source}")
    if not source_path.is_dir():
        raise SourceError(f"Not a directory: {source}")

    def ignore_entries(directory, names):
        ignored = []
        for name in names:
            entry = Path(directory) / name
            if _should_exclude(entry, exclude_patterns):
                ignored.append(name)
                continue
            try:
                if entry.is_file() and not entry.is_symlink() and entry.stat().st_size > max_file_size_bytes:
                    ignored.append(name)
            except OSError:
                # Let copytree report the unreadable entry
                pass
        return ignored

    try:
        shutil.copytree(source_path, dest, symlinks=True, ignore=ignore_entries, copy_function=shutil.copy2)
    except shutil.Error as e:
        failures = e.args[0] if e.args else []
        raise SourceError(f"Partially copied {source}: {len(failures)} entries failed")
    except PermissionError as e:
        raise SourceError(f"Permission denied accessing {source}: {e}")
    except OSError as e:
        raise SourceError(f"Failed to copy {source}: {e}")

    return dest


def staging_names(sources: Iterable[SourceSpec]) -> List[str]:
    """
    Pick a distinct staging subdirectory name for each source.

    Uses the source basename, adding a numeric suffix when two sources
    share one.
    """
    names = []
    seen = set()

    for source in sources:
        base = os.path.basename(os.path.normpath(os.path.expanduser(source.path))) or 'root'
        name = base
        counter = 2
        while name in seen:
            name = f"{base}_{counter}"
            counter += 1
        seen.add(name)
        names.append(name)

    return names


@dataclass
class CaptureResult:
    """Paths captured into staging, and per-source failures"""
    copied: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class SnapshotCapture:
    """
    Copies every configured source into a fresh staging directory.

    Copying is best-effort: a source that fails, fully or partially, is
    logged and recorded but never aborts the capture. Sources are copied in
    parallel and capture returns only once every copy has finished.
    """

    def __init__(self, max_workers: int = 4):
        """
        Initialize snapshot capture.

        Args:
            max_workers: Number of sources copied concurrently
        """
        self.max_workers = max_workers

    def capture(self, sources: Sequence[SourceSpec], dest_dir: str) -> CaptureResult:
        """
        Copy sources into dest_dir.

        Args:
            sources: Sources to copy
            dest_dir: Staging directory, created if missing

        Returns:
            CaptureResult listing staged paths (including partial copies)
            and the error for each failed source
        """
        result = CaptureResult()
        if not sources:
            return result

        Path(dest_dir).mkdir(parents=True, exist_ok=True)
        targets = [
            (source, os.path.join(dest_dir, name))
            for source, name in zip(sources, staging_names(sources))
        ]

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [
                (source, target, pool.submit(
                    copy_tree,
                    source.path,
                    target,
                    source.max_file_size_bytes,
                    source.exclude_patterns
                ))
                for source, target in targets
            ]

        for source, target, future in futures:
            try:
                future.result()
                logger.info(f"Copied {source.path}")
            except SourceError as e:
                logger.warning(f"Source {source.path}: {e}")
                result.failed[source.path] = str(e)

            if os.path.exists(target):
                result.copied.append(target)

        return result
