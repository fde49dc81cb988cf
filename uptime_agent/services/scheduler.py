"""Scheduler service - sets up monitors and runs each on its own interval.

Scheduling design:
- One APScheduler interval job per monitor; monitors never wait on each other
- A job only spawns the evaluation as a detached task and returns, so the
  interval is anchored to the tick start, not to the end of the evaluation
- An evaluation that outlasts its interval overlaps with the next one
  (e.g. an email ping waiting on its IMAP timeout); this is intentional
- SMTP, IMAP and disk queries are blocking, so evaluations run in a thread
  pool of their own monitor; a backlog of one monitor never takes threads
  from another
"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..exceptions import ConfigError, EvaluationError
from ..monitors import AliveMonitor, DiskUsageMonitor, EmailPingMonitor
from ..monitors.base import EvaluationResult, Monitor, require
from ..schemas import AgentConfig, HostConfig, MonitorConfig
from .pusher import StatusPusher, normalize_host_url

logger = logging.getLogger(__name__)

# Evaluations of one monitor that may run at the same time; further ticks
# of that monitor queue in its own pool
MAX_CONCURRENT_EVALUATIONS = 10


class SchedulerService:
    """Service for setting up monitors and running them periodically."""

    def __init__(self, pusher: StatusPusher):
        self.pusher = pusher
        self.monitors: List[Monitor] = []
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._stopped: Optional[asyncio.Event] = None
        self._tasks: Set[asyncio.Task] = set()
        self._executors: Dict[str, ThreadPoolExecutor] = {}

    def setup(self, config: AgentConfig) -> List[Monitor]:
        """Build one monitor per config entry, in declared order.

        Raises ConfigError for the first invalid entry; nothing is scheduled
        in that case.
        """
        if not config.monitors:
            raise ConfigError("No monitors defined")

        logger.info(f"Setting up {len(config.monitors)} monitors")

        keys: Dict[str, str] = {}
        monitors = []
        for entry in config.monitors:
            logger.info(f"Setting up monitor: {entry.name} ({entry.type})")

            # Two monitors sharing a key would overwrite each other's status
            key = require(entry, "key")
            if key in keys:
                raise ConfigError(
                    f"Monitor '{entry.name}' uses the same key as monitor '{keys[key]}'",
                    monitor=entry.name,
                    parameter="key",
                )
            keys[key] = entry.name

            if entry.interval <= 0:
                raise ConfigError(
                    f"Invalid interval for monitor '{entry.name}': {entry.interval}",
                    monitor=entry.name,
                    parameter="interval",
                )

            host_url = self._resolve_host(entry, config.hosts)
            monitors.append(self._build_monitor(host_url, entry))

        self.monitors = monitors
        return monitors

    def _resolve_host(self, entry: MonitorConfig, hosts: List[HostConfig]) -> str:
        """Find the URL of the monitor's host, normalized to end with '/'."""
        matches = [host for host in hosts if host.name == entry.host]
        if not matches:
            raise ConfigError(
                f"Could not find host '{entry.host}' for monitor '{entry.name}'",
                monitor=entry.name,
                parameter="host",
            )
        if len(matches) > 1:
            raise ConfigError(
                f"Host '{entry.host}' for monitor '{entry.name}' is defined {len(matches)} times",
                monitor=entry.name,
                parameter="host",
            )
        return normalize_host_url(matches[0].url)

    def _build_monitor(self, host_url: str, entry: MonitorConfig) -> Monitor:
        """Construct the monitor for the entry's type."""
        if entry.type == "alive":
            return AliveMonitor.from_config(host_url, entry)
        elif entry.type == "disk_usage":
            return DiskUsageMonitor.from_config(host_url, entry)
        elif entry.type == "email_ping":
            return EmailPingMonitor.from_config(host_url, entry)
        else:
            raise ConfigError(
                f"Unknown monitor type for monitor '{entry.name}': {entry.type}",
                monitor=entry.name,
                parameter="type",
            )

    def start(self):
        """Start one interval job per monitor. Requires a running event loop."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self._stopped = asyncio.Event()

        logger.info("Starting monitors...")
        now = datetime.now(timezone.utc)
        for index, monitor in enumerate(self.monitors):
            self.scheduler.add_job(
                self._tick,
                trigger=IntervalTrigger(seconds=monitor.interval),
                args=[monitor],
                id=f"monitor-{index}",
                name=monitor.name,
                next_run_time=now,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=monitor.interval,
            )

        self.scheduler.start()
        self._running = True
        logger.info("All monitors started")

    def stop(self):
        """Stop scheduling new ticks.

        Queued evaluations are dropped. Running ones are not interrupted, and
        the process exits once they return.
        """
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            for executor in self._executors.values():
                executor.shutdown(wait=False, cancel_futures=True)
            self._executors.clear()
            if self._tasks:
                logger.info(f"Waiting for {len(self._tasks)} in-flight evaluation(s) to finish before exit")
            if self._stopped:
                self._stopped.set()
            logger.info("Scheduler stopped")

    async def serve(self):
        """Start the monitors and run until stop() is called."""
        self.start()
        await self._stopped.wait()

    async def _tick(self, monitor: Monitor) -> asyncio.Task:
        """Launch an evaluation without waiting for it to finish."""
        task = asyncio.create_task(self.run_monitor(monitor), name=f"evaluate-{monitor.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_monitor(self, monitor: Monitor) -> Optional[EvaluationResult]:
        """Evaluate a monitor once and push the result.

        Returns the pushed result, or None if the evaluation failed and
        nothing was pushed.
        """
        identity = monitor.identity()
        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(self._executor_for(monitor), monitor.evaluate)
        except EvaluationError as e:
            logger.error(f"Monitor {identity.name} ({identity.type}) failed: {e}")
            return None
        except Exception as e:
            logger.exception(f"Unexpected error evaluating monitor {identity.name}: {e}")
            return None

        logger.debug(f"Monitor {identity.name}: {result.status.value} ({result.message}, ping={result.ping})")
        await self.pusher.push(identity, result)
        return result

    def _executor_for(self, monitor: Monitor) -> ThreadPoolExecutor:
        """Get the monitor's own thread pool, creating it on first use."""
        executor = self._executors.get(monitor.key)
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=MAX_CONCURRENT_EVALUATIONS,
                thread_name_prefix=f"monitor-{monitor.name}",
            )
            self._executors[monitor.key] = executor
        return executor
