"""Uptime agent - push based uptime monitoring for local health checks."""

__version__ = "1.0.0"
