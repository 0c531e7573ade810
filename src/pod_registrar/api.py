"""
Read-only status API.

Lists the pods currently visible to the controller with their readiness,
plus liveness and Prometheus endpoints.
"""

import builtins

from fastapi import FastAPI
from prometheus_client import REGISTRY, CollectorRegistry, make_asgi_app
from pydantic import BaseModel

from .watcher import PodStore


class PodInfo(BaseModel):
    """Pod name, IP and readiness."""

    name: str
    ip: str
    ready: bool


def pod_infos(store: PodStore) -> builtins.list[PodInfo]:
    return [PodInfo(name=pod.name, ip=pod.pod_ip, ready=pod.ready) for pod in store.list()]


def create_status_app(store: PodStore, registry: CollectorRegistry = REGISTRY) -> FastAPI:
    """Create the status application over a pod store."""
    app = FastAPI(title="pod-registrar status", docs_url=None, redoc_url=None)

    @app.get("/api/topology/pods", response_model=list[PodInfo])
    async def current_pods() -> builtins.list[PodInfo]:
        return pod_infos(store)

    @app.get("/api/status/nodes", response_model=list[PodInfo])
    async def mesh_nodes() -> builtins.list[PodInfo]:
        return pod_infos(store)

    @app.get("/healthz")
    async def healthz() -> builtins.dict[str, str]:
        return {"status": "ok"}

    app.mount("/metrics", make_asgi_app(registry=registry))
    return app
