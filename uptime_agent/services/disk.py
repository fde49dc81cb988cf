"""Disk space query for the disk usage monitor."""
import logging
import math
from dataclasses import dataclass
from typing import Optional

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiskSpace:
    """Raw disk space figures in bytes."""
    total: int
    used: int
    available: int  # usable by an unprivileged user, excludes reserved blocks

    @property
    def usage(self) -> float:
        """Fraction of the disk that is not available, NaN if total is zero."""
        if not self.total:
            return math.nan
        return 1 - self.available / self.total


def get_disk_space(path: str) -> Optional[DiskSpace]:
    """Query disk space for a mount point (or drive letter on Windows).

    Returns None if the query fails.
    """
    try:
        usage = psutil.disk_usage(path)
    except (OSError, ValueError) as e:
        logger.debug(f"Disk usage query for {path} failed: {e}")
        return None
    # psutil's free is the space available to unprivileged users
    return DiskSpace(total=usage.total, used=usage.used, available=usage.free)
