"""Alive monitor - reports that the agent process is running."""
from dataclasses import dataclass

from ..schemas import MonitorConfig
from .base import EvaluationResult, Monitor, MonitorStatus


@dataclass(frozen=True)
class AliveMonitor(Monitor):
    """Always up. Only tells the uptime host that the agent is alive."""

    kind = "alive"

    def evaluate(self) -> EvaluationResult:
        return EvaluationResult(status=MonitorStatus.UP, message="OK", ping=0)

    @classmethod
    def from_config(cls, host_url: str, entry: MonitorConfig) -> "AliveMonitor":
        return cls(name=entry.name, host_url=host_url, key=entry.key, interval=entry.interval)
