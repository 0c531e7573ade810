import asyncio
from unittest.mock import AsyncMock

import pytest

from pod_registrar.clients import DiscoveryClient
from pod_registrar.core import InstanceStatus
from pod_registrar.errors import HandleCreationError, RegistrationError
from pod_registrar.health import ProbeResult
from pod_registrar.registrar import Registrar


@pytest.mark.asyncio
async def test_register_creates_one_handle_and_registers(registrar, factory, make_pod) -> None:
    pod = make_pod()

    await registrar.register(pod)

    assert pod.key in registrar
    assert len(factory.clients) == 1
    assert factory.clients[0].config is registrar.config
    [descriptor] = factory.registered
    assert descriptor.app_id == "svc1"
    assert descriptor.status is InstanceStatus.RECEIVING


@pytest.mark.asyncio
async def test_register_reuses_existing_handle(registrar, factory, make_pod) -> None:
    await registrar.register(make_pod(resource_version="1"))
    await registrar.register(make_pod(resource_version="2"))

    assert len(factory.clients) == 1
    assert len(factory.registered) == 2


@pytest.mark.asyncio
async def test_concurrent_registers_converge_on_one_handle(registrar, factory, make_pod) -> None:
    pod = make_pod()

    await asyncio.gather(*(registrar.register(pod) for _ in range(5)))

    assert len(factory.clients) == 1
    assert len(registrar) == 1
    assert len(factory.registered) == 5


@pytest.mark.asyncio
async def test_register_uses_probe_result_for_status(registrar, factory, probe, make_pod) -> None:
    probe.result = ProbeResult(healthy=False, error="connection refused")

    await registrar.register(make_pod(ready=(True,)))

    assert probe.checked
    assert factory.registered[0].status is InstanceStatus.NOT_RECEIVING


@pytest.mark.asyncio
async def test_register_failure_raises_and_keeps_handle(registrar, factory, make_pod) -> None:
    factory.fail_register = True
    pod = make_pod()

    with pytest.raises(RegistrationError) as excinfo:
        await registrar.register(pod)

    assert excinfo.value.key == pod.key
    assert pod.key in registrar


@pytest.mark.asyncio
async def test_handle_creation_failure_is_not_cached(registrar, factory, make_pod) -> None:
    factory.fail_create = True
    pod = make_pod()

    with pytest.raises(HandleCreationError):
        await registrar.register(pod)
    assert pod.key not in registrar

    factory.fail_create = False
    await registrar.register(pod)
    assert pod.key in registrar


@pytest.mark.asyncio
async def test_cancel_calls_registry_and_evicts(registrar, factory, make_pod) -> None:
    pod = make_pod()
    await registrar.register(pod)
    client = registrar.get(pod.key)

    await registrar.cancel(pod)

    assert client.cancelled == ["svc1"]
    assert client.closed
    assert pod.key not in registrar


@pytest.mark.asyncio
async def test_cancel_failure_is_logged_not_raised(registrar, factory, make_pod) -> None:
    factory.fail_cancel = True
    pod = make_pod()

    await registrar.cancel(pod)

    [client] = factory.clients
    assert client.cancelled == ["svc1"]
    assert client.closed
    assert len(registrar) == 0


@pytest.mark.asyncio
async def test_cancel_of_unknown_pod_creates_then_evicts_handle(registrar, factory, make_pod) -> None:
    await registrar.cancel(make_pod(name="never-registered"))

    assert len(factory.clients) == 1
    assert factory.cancelled == ["svc1"]
    assert len(registrar) == 0


@pytest.mark.asyncio
async def test_cancel_handle_creation_failure_propagates(registrar, factory, make_pod) -> None:
    factory.fail_create = True

    with pytest.raises(HandleCreationError):
        await registrar.cancel(make_pod())


@pytest.mark.asyncio
async def test_health_check_or_cancel_healthy_pod(registrar, factory, make_pod) -> None:
    pod = make_pod()
    await registrar.register(pod)

    result = await registrar.health_check_or_cancel(pod)

    assert result.healthy
    assert factory.cancelled == []
    assert pod.key not in registrar


@pytest.mark.asyncio
async def test_health_check_or_cancel_unhealthy_pod(registrar, factory, probe, make_pod) -> None:
    pod = make_pod()
    await registrar.register(pod)
    probe.result = ProbeResult(healthy=False, status_code=503)

    result = await registrar.health_check_or_cancel(pod)

    assert not result.healthy
    assert factory.cancelled == ["svc1"]
    assert pod.key not in registrar


@pytest.mark.asyncio
async def test_evict_tolerates_close_errors(discovery_config, probe, make_pod) -> None:
    client = AsyncMock(spec=DiscoveryClient)
    client.close.side_effect = RuntimeError("socket already closed")
    registrar = Registrar(discovery_config, lambda config: client, probe)
    pod = make_pod()

    await registrar.cancel(pod)

    client.cancel.assert_awaited_once_with("svc1")
    client.close.assert_awaited_once()
    assert pod.key not in registrar


@pytest.mark.asyncio
async def test_close_releases_handles_and_probe(registrar, factory, probe, make_pod) -> None:
    await registrar.register(make_pod(name="a"))
    await registrar.register(make_pod(name="b"))

    await registrar.close()

    assert len(registrar) == 0
    assert all(client.closed for client in factory.clients)
    assert probe.closed


@pytest.mark.asyncio
async def test_cancel_after_concurrent_registers_reaches_the_shared_handle(
    registrar, factory, make_pod
) -> None:
    pod = make_pod()
    await asyncio.gather(*(registrar.register(pod) for _ in range(5)))

    await registrar.cancel(pod)

    [client] = factory.clients
    assert client.cancelled == ["svc1"]
    assert client.closed
    assert len(registrar) == 0


class RaisingHealthCheck:
    async def check(self, snapshot):
        raise RuntimeError("session broken")

    async def close(self) -> None:
        pass


@pytest.mark.asyncio
async def test_health_check_crash_registers_as_not_receiving(discovery_config, factory, make_pod) -> None:
    registrar = Registrar(discovery_config, factory, RaisingHealthCheck())

    await registrar.register(make_pod(ready=(True,)))

    [descriptor] = factory.registered
    assert descriptor.status is InstanceStatus.NOT_RECEIVING


@pytest.mark.asyncio
async def test_health_check_crash_cancels_pod(discovery_config, factory, make_pod) -> None:
    registrar = Registrar(discovery_config, factory, RaisingHealthCheck())

    result = await registrar.health_check_or_cancel(make_pod())

    assert not result.healthy
    assert result.error == "session broken"
    assert factory.cancelled == ["svc1"]


@pytest.mark.asyncio
async def test_late_cancel_keeps_newer_handle(discovery_config, probe, make_pod) -> None:
    gate = asyncio.Event()
    clients = []

    async def wait_for_gate(app_id):
        await gate.wait()

    def factory(config):
        client = AsyncMock(spec=DiscoveryClient)
        if not clients:
            client.cancel.side_effect = wait_for_gate
        clients.append(client)
        return client

    registrar = Registrar(discovery_config, factory, probe)
    pod = make_pod()
    await registrar.register(pod)

    slow_cancel = asyncio.create_task(registrar.cancel(pod))
    for _ in range(3):
        await asyncio.sleep(0)
    # Another path evicts the first handle and a register creates a second one.
    await registrar.health_check_or_cancel(pod)
    await registrar.register(pod)
    newer = registrar.get(pod.key)

    gate.set()
    await slow_cancel

    assert newer is clients[1]
    assert registrar.get(pod.key) is newer
    newer.close.assert_not_awaited()
