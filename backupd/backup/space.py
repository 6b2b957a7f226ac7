"""
Free space guard for the backup destination.
"""

import logging
import shutil

logger = logging.getLogger(__name__)


def free_space_kb(path: str) -> int:
    """
    Get the free space, in KB, of the filesystem containing path.

    Raises:
        OSError: If the filesystem cannot be queried
    """
    return shutil.disk_usage(path).free // 1024


class SpaceGuard:
    """
    Checks free space on the backup destination against a threshold.

    Space equal to the threshold counts as sufficient.
    """

    def check(self, path: str, threshold_kb: int) -> bool:
        """
        Check whether the destination filesystem has enough free space.

        Args:
            path: Any path on the destination filesystem
            threshold_kb: Minimum free space in KB

        Returns:
            True if free space is at least threshold_kb, False otherwise
        """
        try:
            available = free_space_kb(path)
        except OSError as e:
            logger.error(f"Could not read free space for {path}: {e}")
            return False

        if available < threshold_kb:
            logger.warning(
                f"Insufficient free space on {path}: {available} KB available, "
                f"{threshold_kb} KB required. Skipping this backup."
            )
            return False

        logger.debug(f"Free space on {path}: {available} KB")
        return True
