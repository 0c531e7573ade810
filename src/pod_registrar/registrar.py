"""
Discovery client manager.

The registrar owns one discovery client handle per pod key and performs the
register, cancel and health-check-or-cancel operations against the registry.
Handle lookup and creation happen as a single step under one lock, so two
concurrent calls for an absent key always converge on the same handle.
"""

import asyncio
import builtins
import logging
from collections.abc import Awaitable
from dataclasses import dataclass

from opentelemetry import trace

from .clients import ClientFactory, DiscoveryClient
from .config import DiscoveryConfig
from .core import PodSnapshot
from .descriptor import build_descriptor
from .errors import HandleCreationError, RegistrationError
from .health import HealthProbe, ProbeResult
from .metrics import RegistrarMetrics, get_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class RegistryCallResult:
    """Explicit outcome of one registry call."""

    operation: str
    key: str
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Registrar:
    """Per-pod discovery client manager."""

    def __init__(
        self,
        config: DiscoveryConfig,
        client_factory: ClientFactory,
        probe: HealthProbe | None = None,
        metrics: RegistrarMetrics | None = None,
    ):
        self.config = config
        self._client_factory = client_factory
        self._probe = probe if probe is not None else HealthProbe()
        self._metrics = metrics or get_metrics()
        self._clients: builtins.dict[str, DiscoveryClient] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, key: str) -> bool:
        return key in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    def get(self, key: str) -> DiscoveryClient | None:
        return self._clients.get(key)

    def keys(self) -> builtins.list[str]:
        return list(self._clients)

    async def _get_or_create(self, key: str) -> DiscoveryClient:
        async with self._lock:
            client = self._clients.get(key)
            if client is not None:
                return client

            try:
                client = self._client_factory(self.config)
            except Exception as e:
                logger.error("Unable to create discovery client for %s: %s", key, e)
                raise HandleCreationError(key, e) from e

            self._clients[key] = client
            self._metrics.handles.set(len(self._clients))
            logger.debug("Created discovery client for %s", key)
            return client

    async def _evict(self, key: str, client: DiscoveryClient | None = None) -> None:
        """Drop and close the key's handle.

        With ``client`` given, the cached entry is only removed while it is
        still that handle, so a late evict never drops a newer one.
        """
        async with self._lock:
            if client is None:
                client = self._clients.pop(key, None)
            elif self._clients.get(key) is client:
                del self._clients[key]
            self._metrics.handles.set(len(self._clients))

        if client is None:
            return

        try:
            await client.close()
        except Exception as e:
            logger.warning("Error closing discovery client for %s: %s", key, e)
        logger.debug("Evicted discovery client for %s", key)

    async def _call(self, operation: str, key: str, call: Awaitable[None]) -> RegistryCallResult:
        with tracer.start_as_current_span(f"registry.{operation}") as span:
            span.set_attribute("pod.key", key)
            try:
                await call
            except Exception as e:
                span.record_exception(e)
                result = RegistryCallResult(operation, key, e)
            else:
                result = RegistryCallResult(operation, key)

        self._metrics.record_operation(operation, result.ok)
        return result

    async def _check(self, snapshot: PodSnapshot) -> ProbeResult:
        try:
            return await self._probe.check(snapshot)
        except Exception as e:
            logger.warning("Health probe for %s raised, treating as unhealthy: %s", snapshot.key, e)
            return ProbeResult(healthy=False, error=str(e) or type(e).__name__)

    async def register(self, snapshot: PodSnapshot) -> None:
        """Register a pod, probing its health endpoint first.

        Raises:
            HandleCreationError: No handle could be created for the pod
            RegistrationError: The registry call failed; worth retrying
        """
        key = snapshot.key
        client = await self._get_or_create(key)

        health = await self._check(snapshot)
        descriptor = build_descriptor(snapshot, health)

        result = await self._call("register", key, client.register(descriptor))
        if not result.ok:
            logger.warning("Register failed for %s: %s", key, result.error)
            raise RegistrationError(key, result.error)

        logger.info(
            "Registered %s as %s (%s, status=%s)",
            key,
            descriptor.app_id,
            descriptor.addrs[0],
            descriptor.status.name,
        )

    async def cancel(self, snapshot: PodSnapshot) -> None:
        """Cancel a pod and evict its handle.

        A failed cancel call is logged and counted but not raised: the pod is
        considered cancelled once the call has been attempted. Only handle
        creation failures propagate.
        """
        key = snapshot.key
        client = await self._get_or_create(key)
        try:
            await self._cancel_with(client, snapshot)
        finally:
            await self._evict(key, client)

    async def health_check_or_cancel(self, snapshot: PodSnapshot) -> ProbeResult:
        """Probe a pod, cancel it when unhealthy, and evict its handle."""
        key = snapshot.key
        client = await self._get_or_create(key)
        try:
            health = await self._check(snapshot)
            if not health.healthy:
                logger.info(
                    "Health probe for %s failed (status=%s, error=%s), cancelling",
                    key,
                    health.status_code,
                    health.error,
                )
                await self._cancel_with(client, snapshot)
            return health
        finally:
            await self._evict(key, client)

    async def _cancel_with(self, client: DiscoveryClient, snapshot: PodSnapshot) -> None:
        descriptor = build_descriptor(snapshot, departing=True)
        result = await self._call("cancel", snapshot.key, client.cancel(descriptor.app_id))
        if result.ok:
            logger.info("Cancelled %s (app %s)", snapshot.key, descriptor.app_id)
        else:
            logger.warning(
                "Cancel failed for %s (app %s), treating as cancelled: %s",
                snapshot.key,
                descriptor.app_id,
                result.error,
            )

    async def close(self) -> None:
        """Close every handle and the probe session."""
        for key in self.keys():
            await self._evict(key)
        await self._probe.close()
