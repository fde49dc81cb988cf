"""Pydantic schemas for the agent configuration file."""
from .config import (
    AgentConfig,
    HostConfig,
    MonitorConfig,
)

__all__ = [
    "AgentConfig",
    "HostConfig",
    "MonitorConfig",
]
