"""Disk usage monitor - goes down once a filesystem fills past a threshold."""
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..schemas import MonitorConfig
from ..services.disk import DiskSpace, get_disk_space
from .base import EvaluationResult, Monitor, MonitorStatus, require

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiskUsageMonitor(Monitor):
    """Reports the used percentage of a filesystem as the ping value.

    Status thresholds:
    - used < down_threshold = up
    - used >= down_threshold = down
    """

    kind = "disk_usage"

    file_system: str
    down_threshold: int
    query: Callable[[str], Optional[DiskSpace]] = field(
        default=get_disk_space, repr=False, compare=False
    )

    def evaluate(self) -> EvaluationResult:
        logger.debug(
            f"Getting disk usage for {self.name}: "
            f"file_system={self.file_system}, down_threshold={self.down_threshold}"
        )

        space = self.query(self.file_system)
        if space is None or math.isnan(space.usage):
            logger.error(f"Error getting disk usage for {self.name}: {space}")
            # Still pushed so the uptime host alerts on it
            return EvaluationResult(status=MonitorStatus.DOWN, message="Error getting disk usage", ping=0)

        # Usage is never negative, so adding 0.5 and truncating rounds half up
        percentage = int(100 - (space.available / space.total * 100) + 0.5)

        if percentage < self.down_threshold:
            status = MonitorStatus.UP
            message = "OK"
        else:
            status = MonitorStatus.DOWN
            message = f"Exceeds threshold of {self.down_threshold}%"

        logger.debug(f"Got disk usage for {self.name}: {percentage}% ({status.value}, {message})")
        return EvaluationResult(status=status, message=message, ping=percentage)

    @classmethod
    def from_config(cls, host_url: str, entry: MonitorConfig) -> "DiskUsageMonitor":
        return cls(
            name=entry.name,
            host_url=host_url,
            key=entry.key,
            interval=entry.interval,
            file_system=require(entry, "file_system"),
            down_threshold=require(entry, "down_threshold"),
        )
