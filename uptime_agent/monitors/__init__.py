"""Monitor kinds evaluated by the agent."""
from .base import EvaluationResult, Monitor, MonitorIdentity, MonitorStatus
from .alive import AliveMonitor
from .disk_usage import DiskUsageMonitor
from .email_ping import EmailPingMonitor

__all__ = [
    "EvaluationResult",
    "Monitor",
    "MonitorIdentity",
    "MonitorStatus",
    "AliveMonitor",
    "DiskUsageMonitor",
    "EmailPingMonitor",
]
