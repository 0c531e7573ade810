import asyncio

import pytest
from aiohttp import test_utils, web

from pod_registrar.config import HealthProbeConfig
from pod_registrar.health import HealthProbe


def _health_app(status: int = 200, delay: float = 0.0) -> web.Application:
    async def healthcheck(request: web.Request) -> web.Response:
        if delay:
            await asyncio.sleep(delay)
        return web.Response(status=status, text="ok")

    app = web.Application()
    app.router.add_get("/healthcheck", healthcheck)
    return app


async def _probe_against(app: web.Application, **overrides):
    server = test_utils.TestServer(app, host="127.0.0.1")
    await server.start_server()
    probe = HealthProbe(HealthProbeConfig(port=server.port, **overrides))
    return server, probe


def test_url_uses_pod_ip_port_and_path(make_pod) -> None:
    probe = HealthProbe(HealthProbeConfig(port=8081, path="/ready"))

    assert probe.url_for(make_pod(pod_ip="10.0.0.9")) == "http://10.0.0.9:8081/ready"


def test_status_polarity() -> None:
    corrected = HealthProbe(HealthProbeConfig())
    legacy = HealthProbe(HealthProbeConfig(legacy_polarity=True))

    assert corrected.is_healthy_status(200)
    assert not corrected.is_healthy_status(503)
    assert not legacy.is_healthy_status(200)
    assert legacy.is_healthy_status(503)


@pytest.mark.asyncio
async def test_success_status_is_healthy(make_pod) -> None:
    server, probe = await _probe_against(_health_app(200))
    try:
        result = await probe.check(make_pod(pod_ip="127.0.0.1"))
    finally:
        await probe.close()
        await server.close()

    assert result.healthy
    assert result.status_code == 200
    assert not result.failed


@pytest.mark.asyncio
async def test_error_status_is_unhealthy(make_pod) -> None:
    server, probe = await _probe_against(_health_app(503))
    try:
        result = await probe.check(make_pod(pod_ip="127.0.0.1"))
    finally:
        await probe.close()
        await server.close()

    assert not result.healthy
    assert result.status_code == 503


@pytest.mark.asyncio
async def test_legacy_polarity_inverts_success(make_pod) -> None:
    server, probe = await _probe_against(_health_app(200), legacy_polarity=True)
    try:
        result = await probe.check(make_pod(pod_ip="127.0.0.1"))
    finally:
        await probe.close()
        await server.close()

    assert not result.healthy
    assert result.status_code == 200


@pytest.mark.asyncio
async def test_timeout_is_unhealthy(make_pod) -> None:
    server, probe = await _probe_against(_health_app(200, delay=1.0), timeout=0.05)
    try:
        result = await probe.check(make_pod(pod_ip="127.0.0.1"))
    finally:
        await probe.close()
        await server.close()

    assert not result.healthy
    assert result.failed
    assert "timeout" in result.error


@pytest.mark.asyncio
async def test_connection_refused_is_unhealthy(make_pod) -> None:
    server = test_utils.TestServer(_health_app(), host="127.0.0.1")
    await server.start_server()
    port = server.port
    await server.close()

    probe = HealthProbe(HealthProbeConfig(port=port))
    try:
        result = await probe.check(make_pod(pod_ip="127.0.0.1"))
    finally:
        await probe.close()

    assert not result.healthy
    assert result.failed
    assert result.status_code is None


@pytest.mark.asyncio
async def test_pod_without_ip_is_unhealthy(make_pod) -> None:
    probe = HealthProbe()

    result = await probe.check(make_pod(pod_ip=""))

    assert not result.healthy
    assert result.error == "pod has no IP address"


@pytest.mark.asyncio
async def test_redirect_is_followed(make_pod) -> None:
    async def moved(request: web.Request) -> web.Response:
        raise web.HTTPFound("/ok")

    async def ok(request: web.Request) -> web.Response:
        return web.Response(text="ok")

    app = web.Application()
    app.router.add_get("/healthcheck", moved)
    app.router.add_get("/ok", ok)

    server, probe = await _probe_against(app)
    try:
        result = await probe.check(make_pod(pod_ip="127.0.0.1"))
    finally:
        await probe.close()
        await server.close()

    assert result.healthy
    assert result.status_code == 200
