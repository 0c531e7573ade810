"""
Pod list/watch plumbing.

``PodWatcher`` runs the blocking ``kubernetes`` watch stream in a worker
thread and hands every result to the event loop. ``PodEventRouter`` keeps the
pod store (the lister behind the status API) and turns raw list/watch
results into ``PodEvent`` notifications, each dispatched as its own task.
"""

import asyncio
import builtins
import logging
import threading
from collections.abc import Callable
from typing import Any

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .core import PodEvent, PodSnapshot
from .dispatcher import EventDispatcher
from .kube import as_snapshot

logger = logging.getLogger(__name__)

WATCH_RETRY_DELAY = 5.0


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class PodStore:
    """Current snapshot of every known pod, keyed by ``namespace/name``."""

    def __init__(self) -> None:
        self._pods: builtins.dict[str, PodSnapshot] = {}

    def __len__(self) -> int:
        return len(self._pods)

    def __contains__(self, key: str) -> bool:
        return key in self._pods

    def get(self, key: str) -> PodSnapshot | None:
        return self._pods.get(key)

    def list(self) -> builtins.list[PodSnapshot]:
        return sorted(self._pods.values(), key=lambda pod: pod.key)

    def put(self, snapshot: PodSnapshot) -> PodSnapshot | None:
        previous = self._pods.get(snapshot.key)
        self._pods[snapshot.key] = snapshot
        return previous

    def pop(self, key: str) -> PodSnapshot | None:
        return self._pods.pop(key, None)

    def keys(self) -> builtins.set[str]:
        return set(self._pods)


class PodEventRouter:
    """Translates list/watch results into dispatcher notifications."""

    def __init__(self, dispatcher: EventDispatcher, store: PodStore | None = None):
        self.dispatcher = dispatcher
        self.store = store if store is not None else PodStore()
        self._tasks: builtins.set[asyncio.Task] = set()

    def _emit(self, event: PodEvent) -> None:
        task = asyncio.create_task(self.dispatcher.dispatch(event))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Dispatch failed: %s", task.exception(), exc_info=task.exception())

    def _upsert(self, snapshot: PodSnapshot) -> None:
        previous = self.store.put(snapshot)
        if previous is None:
            self._emit(PodEvent.added(snapshot))
        else:
            self._emit(PodEvent.updated(previous, snapshot))

    def sync(self, pods: builtins.list[Any]) -> None:
        """Reconcile the store against a full pod listing."""
        seen: builtins.set[str] = set()
        for obj in pods:
            snapshot = as_snapshot(obj)
            if snapshot is None:
                logger.debug("Ignoring non-pod list entry of type %s", type(obj).__name__)
                continue
            seen.add(snapshot.key)
            self._upsert(snapshot)

        for key in self.store.keys() - seen:
            gone = self.store.pop(key)
            if gone is not None:
                self._emit(PodEvent.deleted(gone))

    def handle(self, event_type: str, obj: Any) -> None:
        """Route one watch event (ADDED, MODIFIED or DELETED)."""
        snapshot = as_snapshot(obj)
        if snapshot is None:
            logger.debug("Ignoring non-pod %s watch event of type %s", event_type, type(obj).__name__)
            return

        if event_type in ("ADDED", "MODIFIED"):
            self._upsert(snapshot)
        elif event_type == "DELETED":
            self.store.pop(snapshot.key)
            self._emit(PodEvent.deleted(snapshot))
        else:
            logger.debug("Ignoring %s watch event for %s", event_type, snapshot.key)

    async def drain(self) -> None:
        """Wait for every in-flight dispatch."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class PodWatcher:
    """Lists and watches pods in a background thread."""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        router: PodEventRouter,
        namespace: str = "",
        timeout_seconds: int = 300,
    ):
        self.core_api = core_api
        self.router = router
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds
        self._stop = threading.Event()
        self._watch: watch.Watch | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _list_call(self) -> builtins.tuple[Callable[..., Any], builtins.tuple[Any, ...]]:
        # Watch.stream reads the return type from the bound API method, so
        # pass it unwrapped with its positional arguments.
        if self.namespace:
            return self.core_api.list_namespaced_pod, (self.namespace,)
        return self.core_api.list_pod_for_all_namespaces, ()

    def _call_soon(self, callback: Callable[..., None], *args: Any) -> None:
        assert self._loop is not None
        self._loop.call_soon_threadsafe(callback, *args)

    def _list_and_watch(self) -> None:
        list_pods, args = self._list_call()
        pod_list = list_pods(*args)
        resource_version = pod_list.metadata.resource_version
        self._call_soon(self.router.sync, list(pod_list.items))
        logger.info(
            "Listed %d pods in %s at version %s",
            len(pod_list.items),
            self.namespace or "all namespaces",
            resource_version,
        )

        while not self._stop.is_set():
            self._watch = watch.Watch()
            for event in self._watch.stream(
                list_pods,
                *args,
                resource_version=resource_version,
                timeout_seconds=self.timeout_seconds,
            ):
                if self._stop.is_set():
                    break

                event_type = event["type"]
                if event_type == "ERROR":
                    raw = event.get("raw_object") or {}
                    if raw.get("code") == 410:
                        logger.info("Watch expired, relisting pods")
                        return
                    logger.warning("Watch error event: %s", raw)
                    continue

                obj = event["object"]
                if obj.metadata is not None and obj.metadata.resource_version:
                    resource_version = obj.metadata.resource_version
                self._call_soon(self.router.handle, event_type, obj)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._list_and_watch()
            except ApiException as e:
                if e.status == 410:
                    logger.info("Resource version expired, relisting pods")
                    continue
                logger.error(f"Pod watch API error: {e.status} {e.reason}")
                self._stop.wait(WATCH_RETRY_DELAY)
            except Exception as e:
                logger.error(f"Pod watch error: {e}")
                self._stop.wait(WATCH_RETRY_DELAY)

    async def run(self) -> None:
        """Run the list/watch loop until ``stop()`` is called.

        The watch blocks in a daemon thread for up to ``timeout_seconds``
        between events, so cancelling this coroutine does not wait for it.
        """
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._stop.clear()
        finished: asyncio.Future[None] = loop.create_future()

        def target() -> None:
            try:
                self._run()
            finally:
                try:
                    loop.call_soon_threadsafe(_resolve, finished)
                except RuntimeError:
                    # Event loop already closed
                    pass

        logger.info("Starting pod watcher for %s", self.namespace or "all namespaces")
        threading.Thread(target=target, name="pod-watcher", daemon=True).start()
        await finished
        logger.info("Pod watcher stopped")

    def stop(self) -> None:
        self._stop.set()
        if self._watch is not None:
            self._watch.stop()
