"""Status pusher - reports monitor results to an uptime host."""
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from ..monitors.base import EvaluationResult, MonitorIdentity

logger = logging.getLogger(__name__)


def normalize_host_url(url: str) -> str:
    """Ensure a host URL ends with exactly one trailing '/'."""
    return url.rstrip("/") + "/"


def build_push_url(host_url: str, key: str, result: EvaluationResult) -> str:
    """Build the push URL for a result.

    `host_url` must already be normalized by normalize_host_url.
    """
    message = quote(result.message, safe="")
    return f"{host_url}{key}?status={result.status.value}&msg={message}&ping={result.ping}"


class StatusPusher:
    """Pushes monitor results to uptime hosts via HTTP GET.

    Failures are only logged. The monitor's next tick is the retry.
    """

    def __init__(self, timeout: int = 30, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def push(self, identity: MonitorIdentity, result: EvaluationResult) -> bool:
        """Push a result. Returns True if the host accepted it."""
        url = build_push_url(identity.host_url, identity.key, result)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to push status for monitor {identity.name}: {e}")
            return False

        if not response.is_success:
            logger.warning(
                f"Push for monitor {identity.name} rejected: "
                f"{response.status_code} - {response.text[:200]}"
            )
            return False

        logger.debug(f"Pushed status for monitor {identity.name}: {result.status.value} ({result.message})")
        return True
