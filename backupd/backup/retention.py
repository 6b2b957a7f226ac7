"""
Tiered retention policy for backup entries.

Entries are sorted into tiers by age, in minutes, with W the short window
and M the maximum age:

- fresh:    age < W                 always kept
- expired:  age > M                 always deleted
- bucketed: age in (b*W, (b+1)*W]   for b = 1 .. M // W - 1; only the oldest
                                    entry of each bucket is kept

Ages that fall in no tier (exactly W, or above (M // W) * W when M is not a
multiple of W) are left alone. Applying the policy to its own survivors
deletes nothing more, so a pass that was interrupted is completed by the
next one.
"""

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, Optional, Set

from backupd.models import BackupEntry, RetentionConfig

logger = logging.getLogger(__name__)


def age_minutes(now: datetime, created_at: datetime) -> int:
    """
    Age of an entry in whole minutes, rounded half up.
    """
    return math.floor((now - created_at).total_seconds() / 60 + 0.5)


def bucket_index(age: int, config: RetentionConfig) -> Optional[int]:
    """
    Bucket b holding an age in (b*W, (b+1)*W], or None outside the bucketed tier.
    """
    width = config.bucket_width
    if age <= width:
        return None

    index = math.ceil(age / width) - 1
    if index > config.bucket_count:
        return None
    return index


def select_for_deletion(now: datetime, entries: Iterable[BackupEntry], config: RetentionConfig) -> Set[str]:
    """
    Pick the entries the retention policy removes.

    Args:
        now: Reference time for entry ages
        entries: Current entries of the store
        config: Retention windows

    Returns:
        Names of entries to delete
    """
    to_delete = set()
    buckets: Dict[int, list] = {}

    for entry in entries:
        age = age_minutes(now, entry.created_at)

        if age < config.short_window_minutes:
            continue

        if age > config.max_age_minutes:
            to_delete.add(entry.name)
            continue

        index = bucket_index(age, config)
        if index is not None:
            buckets.setdefault(index, []).append((age, entry))

    for index, members in buckets.items():
        # Oldest survives: largest age, then earliest creation, then name
        members.sort(key=lambda item: (-item[0], item[1].created_at, item[1].name))
        for _, entry in members[1:]:
            to_delete.add(entry.name)

    return to_delete


class RetentionPolicy:
    """
    Applies the tiered retention windows to a store's entry list.
    """

    def __init__(self, config: RetentionConfig):
        """
        Initialize retention policy.

        Args:
            config: Retention windows
        """
        self.config = config

    def apply(self, now: datetime, entries: Iterable[BackupEntry]) -> Set[str]:
        """
        Compute the names to delete for the given entries.

        Returns:
            Names of entries to delete
        """
        entries = list(entries)
        to_delete = select_for_deletion(now, entries, self.config)

        logger.debug(
            f"Retention evaluated {len(entries)} entries: "
            f"{len(to_delete)} scheduled for deletion"
        )
        return to_delete

    def enforce(self, store, now: Optional[datetime] = None) -> list:
        """
        List the store, apply the policy and remove what it selects.

        Args:
            store: ArchiveStore to prune
            now: Reference time, defaults to the current time

        Returns:
            Names removed from the store

        Raises:
            StorageError: If the store cannot be listed or pruned
        """
        now = now or datetime.now()
        to_delete = self.apply(now, store.list())

        if not to_delete:
            return []

        removed = store.remove(to_delete)
        for name in removed:
            logger.info(f"Deleted backup: {name}")
        return removed
