"""Exceptions raised while setting up and evaluating monitors."""
from typing import Optional


class ConfigError(Exception):
    """Invalid configuration. Raised before any monitor starts running."""

    def __init__(
        self,
        message: str,
        monitor: Optional[str] = None,
        parameter: Optional[str] = None,
    ):
        super().__init__(message)
        self.monitor = monitor
        self.parameter = parameter


class EvaluationError(Exception):
    """A protocol step failed while evaluating a monitor.

    The scheduler logs these and skips the push for that tick.
    """
