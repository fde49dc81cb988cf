"""Monitor contract shared by all monitor kinds."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from ..exceptions import ConfigError
from ..schemas import MonitorConfig

logger = logging.getLogger(__name__)


class MonitorStatus(str, Enum):
    """Status reported to the uptime host."""
    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class EvaluationResult:
    """Result of a single monitor evaluation."""
    status: MonitorStatus
    message: str
    ping: int = 0  # milliseconds, seconds or percent depending on the kind


@dataclass(frozen=True)
class MonitorIdentity:
    """Stable identity of a monitor, fixed at construction."""
    name: str
    type: str
    host_url: str
    key: str
    interval: int


@dataclass(frozen=True)
class Monitor(ABC):
    """A configured health check.

    Instances are immutable. `evaluate` is blocking and may be called
    from worker threads, possibly while a previous call is still running.
    """

    kind: ClassVar[str] = "base"

    name: str
    host_url: str
    key: str
    interval: int

    def identity(self) -> MonitorIdentity:
        return MonitorIdentity(
            name=self.name,
            type=self.kind,
            host_url=self.host_url,
            key=self.key,
            interval=self.interval,
        )

    @abstractmethod
    def evaluate(self) -> EvaluationResult:
        """Run the check once.

        Returns the result to push, or raises EvaluationError when the
        check itself could not be carried out.
        """

    @classmethod
    @abstractmethod
    def from_config(cls, host_url: str, entry: MonitorConfig) -> "Monitor":
        """Build a monitor from its config entry, validating parameters."""


def require(entry: MonitorConfig, parameter: str):
    """Return a required parameter, raising ConfigError if it is empty or zero."""
    value = getattr(entry, parameter)
    if not value:
        raise ConfigError(
            f"Missing parameter for monitor '{entry.name}' ({entry.type}): {parameter}",
            monitor=entry.name,
            parameter=parameter,
        )
    return value


def optional(entry: MonitorConfig, parameter: str):
    """Return an optional parameter, logging when it is empty."""
    value = getattr(entry, parameter)
    if not value:
        logger.debug(f"Empty parameter for monitor '{entry.name}' ({entry.type}): {parameter}")
    return value
