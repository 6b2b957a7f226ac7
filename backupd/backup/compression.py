"""
Compression handlers for backup archives.

Supports multiple formats:
- zip: Standard zip compression
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
"""

import os
import tarfile
import zipfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'

# Format -> file extension
ARCHIVE_EXTENSIONS = {
    'zip': 'zip',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'none': 'tar'
}

# Extensions recognised when reading existing archives, longest first
KNOWN_EXTENSIONS = ('tar.gz', 'tar.bz2', 'tar.xz', 'tgz', 'tar', 'zip')


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def create_archive(
    source_paths: List[str],
    output_path: str,
    compression_format: str = 'tar.gz'
) -> str:
    """
    Create a compressed archive from source paths.

    Args:
        source_paths: List of file/directory paths to include in archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('zip', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    if not source_paths:
        raise CompressionError("No source paths provided")

    format_map = {
        'zip': _create_zip,
        'tar.gz': _create_tar,
        'tar.bz2': _create_tar,
        'tar.xz': _create_tar,
        'none': _create_tar
    }

    if compression_format not in format_map:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(format_map.keys())}"
        )

    handler = format_map[compression_format]
    archive_path = f"{output_path}.{ARCHIVE_EXTENSIONS[compression_format]}"

    try:
        handler(source_paths, archive_path, compression_format)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def _create_zip(source_paths: List[str], archive_path: str, compression_format: str):
    """
    Create a ZIP archive.

    Args:
        source_paths: List of paths to include
        archive_path: Output archive path
        compression_format: Not used for zip, kept for interface consistency
    """
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for source_path in source_paths:
            source = Path(source_path)

            if source.is_file():
                zipf.write(source, source.name)
            elif source.is_dir():
                _add_directory_to_zip(zipf, source)
            else:
                raise CompressionError(f"Invalid path type: {source_path}")


def _add_directory_to_zip(zipf: zipfile.ZipFile, directory: Path):
    """
    Recursively add directory to zip archive, rooted at its basename.

    Args:
        zipf: ZipFile object
        directory: Directory to add
    """
    for item in sorted(directory.rglob('*')):
        if item.is_file():
            zipf.write(item, item.relative_to(directory.parent))


def _create_tar(source_paths: List[str], archive_path: str, compression_format: str):
    """
    Create a TAR archive with optional compression.

    Args:
        source_paths: List of paths to include
        archive_path: Output archive path
        compression_format: Compression format ('tar.gz', 'tar.bz2', 'tar.xz', 'none')
    """
    mode_map = {
        'tar.gz': 'w:gz',
        'tar.bz2': 'w:bz2',
        'tar.xz': 'w:xz',
        'none': 'w'
    }

    mode = mode_map.get(compression_format, 'w:gz')

    with tarfile.open(archive_path, mode) as tar:
        for source_path in source_paths:
            source = Path(source_path)

            if not source.exists():
                raise CompressionError(f"Path does not exist: {source_path}")

            # Keep each source under its staging name only
            tar.add(source, arcname=source.name, recursive=True)


def cycle_timestamp(now: Optional[datetime] = None) -> str:
    """
    Format the cycle timestamp used to name backup entries.

    Format: YYYYMMDD_HHMMSS (local time)
    """
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def generate_archive_filename(timestamp: str, compression_format: str) -> str:
    """
    Generate a standardized archive filename.

    Format: {YYYYMMDD_HHMMSS}.{ext}

    Args:
        timestamp: Cycle timestamp from cycle_timestamp()
        compression_format: Compression format

    Returns:
        Filename (without path)
    """
    extension = ARCHIVE_EXTENSIONS.get(compression_format, 'tar.gz')
    return f"{timestamp}.{extension}"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
