"""Command line entry point - loads the config and runs the monitors."""
import argparse
import asyncio
import logging
import signal
from typing import List, Optional

from . import __version__
from .config import load_config, settings
from .exceptions import ConfigError
from .services.pusher import StatusPusher
from .services.scheduler import SchedulerService

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="uptime-agent",
        description="Push based uptime monitoring for various services",
    )
    parser.add_argument(
        "-c", "--config",
        default=settings.config_path,
        help=f"Path to the YAML config (default: {settings.config_path})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=settings.verbose,
        help="Enable debug output (might include sensitive data!)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if not verbose:
        # Per-request and per-job lines are only useful when debugging
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("apscheduler").setLevel(logging.WARNING)


async def run(scheduler: SchedulerService):
    """Run the monitors until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on Windows event loops; Ctrl-C still interrupts
            pass
    await scheduler.serve()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    logger.info(f"Starting uptime-agent {__version__}")

    pusher = StatusPusher(timeout=settings.push_timeout_seconds)
    scheduler = SchedulerService(pusher)
    try:
        config = load_config(args.config)
        logger.info(f"Got assigned node name: {config.node_name or 'not set'}")
        scheduler.setup(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        asyncio.run(run(scheduler))
    except KeyboardInterrupt:
        scheduler.stop()

    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
