"""
Discovery client handles.

The registry's own SDK sits behind ``DiscoveryClient``. A handle is created
per pod key from the shared ``DiscoveryConfig`` by a ``ClientFactory``; the
in-memory backend serves development and tests.
"""

import builtins
import importlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from .config import DiscoveryConfig
from .core import InstanceDescriptor
from .errors import ConfigurationError, RegistryClientError

logger = logging.getLogger(__name__)


class DiscoveryClient(ABC):
    """Abstract discovery client handle."""

    @abstractmethod
    async def register(self, descriptor: InstanceDescriptor) -> None:
        """Register (or refresh) an instance."""

    @abstractmethod
    async def cancel(self, app_id: str) -> None:
        """Cancel the instances this handle registered for an app id."""

    @abstractmethod
    async def close(self) -> None:
        """Release the handle's resources."""


ClientFactory = Callable[[DiscoveryConfig], DiscoveryClient]


class InMemoryRegistry:
    """Process-local registry store shared by in-memory handles."""

    def __init__(self) -> None:
        # app_id -> {hostname -> descriptor}
        self._apps: builtins.dict[str, builtins.dict[str, InstanceDescriptor]] = {}
        self._stats = {
            "total_registrations": 0,
            "total_cancellations": 0,
        }

    def put(self, descriptor: InstanceDescriptor) -> None:
        self._apps.setdefault(descriptor.app_id, {})[descriptor.hostname] = descriptor
        self._stats["total_registrations"] += 1

    def remove(self, app_id: str, hostname: str) -> bool:
        instances = self._apps.get(app_id)
        if not instances or hostname not in instances:
            return False

        del instances[hostname]
        if not instances:
            del self._apps[app_id]
        self._stats["total_cancellations"] += 1
        return True

    def instances(self, app_id: str) -> builtins.list[InstanceDescriptor]:
        return list(self._apps.get(app_id, {}).values())

    def app_ids(self) -> builtins.list[str]:
        return list(self._apps)

    def get_stats(self) -> builtins.dict[str, int]:
        return {
            **self._stats,
            "current_apps": len(self._apps),
            "current_instances": sum(len(i) for i in self._apps.values()),
        }


class InMemoryDiscoveryClient(DiscoveryClient):
    """In-memory discovery handle for development and testing."""

    def __init__(self, config: DiscoveryConfig, registry: InMemoryRegistry):
        self.config = config
        self.registry = registry
        self._registered: builtins.dict[str, builtins.set[str]] = {}
        self.closed = False

    def _ensure_open(self) -> None:
        if self.closed:
            raise RegistryClientError("discovery client is closed")

    async def register(self, descriptor: InstanceDescriptor) -> None:
        self._ensure_open()
        self.registry.put(descriptor)
        self._registered.setdefault(descriptor.app_id, set()).add(descriptor.hostname)
        logger.debug(
            "Registered %s for app %s in zone %s",
            descriptor.hostname,
            descriptor.app_id,
            self.config.zone,
        )

    async def cancel(self, app_id: str) -> None:
        self._ensure_open()
        hostnames = self._registered.pop(app_id, set())
        if not hostnames:
            logger.debug("Nothing registered for app %s through this handle", app_id)
            return

        for hostname in hostnames:
            self.registry.remove(app_id, hostname)

    async def close(self) -> None:
        self.closed = True


def in_memory_factory(registry: InMemoryRegistry | None = None) -> ClientFactory:
    """Create a factory whose handles share one in-memory registry."""
    store = registry if registry is not None else InMemoryRegistry()

    def factory(config: DiscoveryConfig) -> DiscoveryClient:
        return InMemoryDiscoveryClient(config, store)

    return factory


def resolve_client_factory(
    backend: str, registry: InMemoryRegistry | None = None
) -> ClientFactory:
    """Resolve a backend name or ``module:callable`` path to a client factory."""
    if backend == "memory":
        return in_memory_factory(registry)

    module_name, sep, attribute = backend.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(
            f"Unknown discovery backend {backend!r}, expected 'memory' or 'module:callable'"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import discovery backend {backend!r}: {e}") from e

    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise ConfigurationError(f"Discovery backend {backend!r} is not callable")
    return factory
