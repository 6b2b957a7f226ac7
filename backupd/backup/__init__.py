"""
Backup module for backupd.

This module handles the core backup functionality including:
- Free space checks
- Source capture
- Compression
- Archive stores (directory and container)
- Retention policy enforcement
- Cycle orchestration
"""

from .executor import BackupCycle
from .space import SpaceGuard
from .sources import SnapshotCapture, copy_tree
from .compression import create_archive
from .storage import ArchiveStore, DirectoryStore, ContainerStore, create_store
from .retention import RetentionPolicy, select_for_deletion

__all__ = [
    'BackupCycle',
    'SpaceGuard',
    'SnapshotCapture',
    'copy_tree',
    'create_archive',
    'ArchiveStore',
    'DirectoryStore',
    'ContainerStore',
    'create_store',
    'RetentionPolicy',
    'select_for_deletion'
]
