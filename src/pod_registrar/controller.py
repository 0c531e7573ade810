"""
Controller wiring.

Builds the registrar, retry queue, dispatcher, retry workers, pod watcher and
status server from one ``ControllerConfig`` and runs them together.
"""

import asyncio
import builtins
import logging

import uvicorn
from kubernetes import client

from .api import create_status_app
from .clients import ClientFactory, resolve_client_factory
from .config import ControllerConfig
from .dispatcher import EventDispatcher
from .health import HealthProbe
from .kube import load_core_api
from .queue import RetryQueue, RetryWorker
from .registrar import Registrar
from .watcher import PodEventRouter, PodStore, PodWatcher

logger = logging.getLogger(__name__)


class RegistrarController:
    """Keeps the service registry in sync with the cluster's pods."""

    def __init__(
        self,
        config: ControllerConfig,
        core_api: client.CoreV1Api | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.config = config
        self._core_api = core_api
        self.running = False

        factory = client_factory or resolve_client_factory(config.discovery.backend)
        self.registrar = Registrar(config.discovery, factory, HealthProbe(config.health_probe))
        self.queue = RetryQueue(config.retry)
        self.store = PodStore()
        self.dispatcher = EventDispatcher(self.registrar, self.queue, lister=self.store)
        self.router = PodEventRouter(self.dispatcher, self.store)
        self.workers = [
            RetryWorker(self.queue, self.dispatcher, name=f"retry-worker-{i}")
            for i in range(config.retry.workers)
        ]

        self.watcher: PodWatcher | None = None
        self._server: uvicorn.Server | None = None
        self._tasks: builtins.list[asyncio.Task] = []
        self._watch_task: asyncio.Task | None = None
        self._stopped = asyncio.Event()

    def _build_server(self) -> uvicorn.Server:
        app = create_status_app(self.store)
        server_config = uvicorn.Config(
            app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_config=None,
            access_log=False,
        )
        server = uvicorn.Server(server_config)
        # The controller owns signal handling.
        server.install_signal_handlers = lambda: None  # type: ignore[method-assign]
        return server

    async def start(self) -> None:
        """Start workers, the pod watcher and the status server."""
        if self.running:
            return

        self.running = True
        self._stopped.clear()
        logger.info(
            "Starting pod registrar (namespace=%s, nodes=%s, workers=%d)",
            self.config.kubernetes.namespace or "*",
            ",".join(self.config.discovery.nodes),
            len(self.workers),
        )

        for worker in self.workers:
            self._tasks.append(asyncio.create_task(worker.run(), name=worker.name))

        core_api = self._core_api or load_core_api(self.config.kubernetes)
        self.watcher = PodWatcher(
            core_api,
            self.router,
            namespace=self.config.kubernetes.namespace,
            timeout_seconds=self.config.kubernetes.watch_timeout,
        )
        self._watch_task = asyncio.create_task(self.watcher.run(), name="pod-watcher")

        if self.config.api.enabled:
            self._server = self._build_server()
            self._tasks.append(asyncio.create_task(self._server.serve(), name="status-api"))

    async def run(self) -> None:
        """Start and block until ``stop()`` is called."""
        await self.start()
        await self._stopped.wait()

    async def stop(self) -> None:
        """Stop everything and release every handle."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping pod registrar")

        if self.watcher is not None:
            self.watcher.stop()
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None
        if self._server is not None:
            self._server.should_exit = True

        self.queue.shutdown()
        await self.router.drain()

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error("%s exited with error: %s", task.get_name(), result)
        self._tasks.clear()

        await self.registrar.close()
        self._stopped.set()
        logger.info("Pod registrar stopped")
