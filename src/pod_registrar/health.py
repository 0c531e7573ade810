"""
Pod health probing.

A single HTTP GET against the pod's health endpoint with a short fixed
timeout. Transport errors and unexpected status codes count as unhealthy.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

import aiohttp

from .config import HealthProbeConfig
from .core import PodSnapshot

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Result of a health probe."""

    healthy: bool
    response_time: float = 0.0
    status_code: int | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        """True when the probe did not get an HTTP response at all."""
        return self.error is not None


class HealthProbe:
    """HTTP health prober for pods."""

    def __init__(self, config: HealthProbeConfig | None = None):
        self.config = config or HealthProbeConfig()
        self._session: aiohttp.ClientSession | None = None

    def url_for(self, snapshot: PodSnapshot) -> str:
        return f"{self.config.scheme}://{snapshot.pod_ip}:{self.config.port}{self.config.path}"

    def is_healthy_status(self, status_code: int) -> bool:
        """Interpret a response status according to the configured polarity."""
        matches = status_code == self.config.success_status
        if self.config.legacy_polarity:
            return not matches
        return matches

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def check(self, snapshot: PodSnapshot) -> ProbeResult:
        """Probe one pod."""
        url = self.url_for(snapshot)
        start_time = time.monotonic()

        if not snapshot.pod_ip:
            return ProbeResult(healthy=False, error="pod has no IP address")

        session = await self._get_session()
        try:
            async with session.get(url) as response:
                status = response.status
        except asyncio.TimeoutError:
            logger.debug("Health probe timed out for %s (%s)", snapshot.key, url)
            return ProbeResult(
                healthy=False,
                response_time=time.monotonic() - start_time,
                error=f"timeout after {self.config.timeout}s",
            )
        except aiohttp.ClientError as e:
            logger.debug("Health probe failed for %s (%s): %s", snapshot.key, url, e)
            return ProbeResult(
                healthy=False,
                response_time=time.monotonic() - start_time,
                error=str(e) or type(e).__name__,
            )

        healthy = self.is_healthy_status(status)
        logger.debug(
            "Health probe for %s returned %s (healthy=%s)", snapshot.key, status, healthy
        )
        return ProbeResult(
            healthy=healthy,
            response_time=time.monotonic() - start_time,
            status_code=status,
        )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
