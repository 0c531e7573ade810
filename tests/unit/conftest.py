"""
Unit test fixtures for the pod registrar.

Provides pod snapshot builders and recording test doubles for the discovery
client, the client factory and the health probe, so the sync engine can be
exercised without a cluster or a registry.
"""

import builtins
from typing import Any

import pytest

from pod_registrar.clients import DiscoveryClient
from pod_registrar.config import DiscoveryConfig, RetryQueueConfig
from pod_registrar.core import (
    ContainerSpec,
    EnvVar,
    InstanceDescriptor,
    PodPhase,
    PodSnapshot,
)
from pod_registrar.dispatcher import EventDispatcher
from pod_registrar.health import ProbeResult
from pod_registrar.queue import RetryQueue
from pod_registrar.registrar import Registrar


def build_pod(
    name: str = "web-1",
    namespace: str = "default",
    phase: PodPhase = PodPhase.RUNNING,
    resource_version: str = "1",
    pod_ip: str = "10.0.0.5",
    ready: builtins.tuple[bool, ...] = (True,),
    env: builtins.list[builtins.dict[str, str]] | None = None,
) -> PodSnapshot:
    """Build a pod snapshot; ``env`` holds one name->value mapping per container."""
    if env is None:
        env = [{"IDG_UNIQUEID": "svc1"}]

    containers = tuple(
        ContainerSpec(
            name=f"c{i}",
            env=tuple(EnvVar(key, value) for key, value in variables.items()),
        )
        for i, variables in enumerate(env)
    )
    return PodSnapshot(
        name=name,
        namespace=namespace,
        resource_version=resource_version,
        phase=phase,
        pod_ip=pod_ip,
        container_ready=ready,
        containers=containers,
    )


class RecordingClient(DiscoveryClient):
    """Discovery client double that records every call."""

    def __init__(self, config: DiscoveryConfig, fail_register: bool = False, fail_cancel: bool = False):
        self.config = config
        self.fail_register = fail_register
        self.fail_cancel = fail_cancel
        self.registered: builtins.list[InstanceDescriptor] = []
        self.cancelled: builtins.list[str] = []
        self.closed = False

    async def register(self, descriptor: InstanceDescriptor) -> None:
        self.registered.append(descriptor)
        if self.fail_register:
            raise ConnectionError("registry unavailable")

    async def cancel(self, app_id: str) -> None:
        self.cancelled.append(app_id)
        if self.fail_cancel:
            raise ConnectionError("registry unavailable")

    async def close(self) -> None:
        self.closed = True


class RecordingFactory:
    """Client factory double that keeps every handle it created."""

    def __init__(self) -> None:
        self.clients: builtins.list[RecordingClient] = []
        self.fail_create = False
        self.fail_register = False
        self.fail_cancel = False

    def __call__(self, config: DiscoveryConfig) -> RecordingClient:
        if self.fail_create:
            raise OSError("cannot reach discovery nodes")
        client = RecordingClient(config, self.fail_register, self.fail_cancel)
        self.clients.append(client)
        return client

    @property
    def registered(self) -> builtins.list[InstanceDescriptor]:
        return [d for client in self.clients for d in client.registered]

    @property
    def cancelled(self) -> builtins.list[str]:
        return [app_id for client in self.clients for app_id in client.cancelled]


class StubProbe:
    """Health probe double returning a fixed result."""

    def __init__(self, result: ProbeResult | None = None):
        self.result = result or ProbeResult(healthy=True, status_code=200)
        self.checked: builtins.list[PodSnapshot] = []
        self.closed = False

    async def check(self, snapshot: PodSnapshot) -> ProbeResult:
        self.checked.append(snapshot)
        return self.result

    async def close(self) -> None:
        self.closed = True


class RecordingQueue(RetryQueue):
    """Retry queue that records rate-limited adds instead of scheduling them."""

    def __init__(self) -> None:
        super().__init__(RetryQueueConfig())
        self.retried: builtins.list[Any] = []

    def add_rate_limited(self, item) -> bool:
        self.retried.append(item)
        return True


@pytest.fixture
def make_pod():
    """Provide the pod snapshot builder."""
    return build_pod


@pytest.fixture
def discovery_config() -> DiscoveryConfig:
    return DiscoveryConfig(nodes=["discovery.test:7171"], zone="sh001", env="test", region="sh")


@pytest.fixture
def factory() -> RecordingFactory:
    return RecordingFactory()


@pytest.fixture
def probe() -> StubProbe:
    return StubProbe()


@pytest.fixture
def registrar(discovery_config, factory, probe) -> Registrar:
    return Registrar(discovery_config, factory, probe)


@pytest.fixture
def retry_queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def dispatcher(registrar, retry_queue) -> EventDispatcher:
    return EventDispatcher(registrar, retry_queue)
