"""
Pod event dispatcher.

Turns add, update and delete notifications into register, cancel or no-op
decisions based on phase transitions. Failed registrar calls are handed to
the retry queue exactly once per event.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from .core import EventKind, PodEvent, PodSnapshot, WorkAction, WorkItem
from .errors import RegistrarError
from .kube import as_snapshot
from .metrics import RegistrarMetrics, get_metrics
from .queue import RetryQueue
from .registrar import Registrar

if TYPE_CHECKING:
    from .watcher import PodStore

logger = logging.getLogger(__name__)


class DispatchOutcome(Enum):
    """What the dispatcher decided for one notification."""

    REGISTERED = "registered"
    CANCELED = "canceled"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    REQUEUED = "requeued"

    @property
    def succeeded(self) -> bool:
        """False only when the work was handed to the retry queue."""
        return self is not DispatchOutcome.REQUEUED


class EventDispatcher:
    """Pod lifecycle state machine."""

    def __init__(
        self,
        registrar: Registrar,
        queue: RetryQueue,
        metrics: RegistrarMetrics | None = None,
        lister: "PodStore | None" = None,
    ):
        self.registrar = registrar
        self.queue = queue
        self.lister = lister
        self._metrics = metrics or get_metrics()

    def _narrow(self, obj: Any, kind: EventKind) -> PodSnapshot | None:
        snapshot = as_snapshot(obj)
        if snapshot is None:
            logger.debug("Rejecting non-pod %s payload of type %s", kind.value, type(obj).__name__)
        return snapshot

    def _record(self, kind: EventKind, outcome: DispatchOutcome) -> DispatchOutcome:
        self._metrics.record_event(kind.value, outcome.value)
        return outcome

    def _enqueue(self, action: WorkAction, snapshot: PodSnapshot) -> DispatchOutcome:
        self.queue.add_rate_limited(WorkItem(action, snapshot))
        return DispatchOutcome.REQUEUED

    async def _register(self, snapshot: PodSnapshot) -> DispatchOutcome:
        try:
            await self.registrar.register(snapshot)
        except RegistrarError as e:
            logger.warning("Register of %s failed, queued for retry: %s", snapshot.key, e)
            return self._enqueue(WorkAction.REGISTER, snapshot)
        return DispatchOutcome.REGISTERED

    async def _cancel(self, snapshot: PodSnapshot) -> DispatchOutcome:
        try:
            await self.registrar.cancel(snapshot)
        except RegistrarError as e:
            logger.warning("Cancel of %s failed, queued for retry: %s", snapshot.key, e)
            return self._enqueue(WorkAction.CANCEL, snapshot)
        return DispatchOutcome.CANCELED

    async def on_add(self, obj: Any) -> DispatchOutcome:
        """Register a pod that is added in the Running phase.

        An added pod may still be Pending; it is registered later, by the
        update that moves it to Running.
        """
        snapshot = self._narrow(obj, EventKind.ADDED)
        if snapshot is None:
            return self._record(EventKind.ADDED, DispatchOutcome.REJECTED)

        if not snapshot.is_running:
            return self._record(EventKind.ADDED, DispatchOutcome.SKIPPED)

        return self._record(EventKind.ADDED, await self._register(snapshot))

    async def on_update(self, old_obj: Any, new_obj: Any) -> DispatchOutcome:
        """Register or cancel on a transition into or out of Running."""
        old = self._narrow(old_obj, EventKind.UPDATED)
        new = self._narrow(new_obj, EventKind.UPDATED)
        if old is None or new is None:
            return self._record(EventKind.UPDATED, DispatchOutcome.REJECTED)

        # Same resource version means a resync, not a change.
        if old.resource_version == new.resource_version or old.phase is new.phase:
            return self._record(EventKind.UPDATED, DispatchOutcome.SKIPPED)

        if old.is_running:
            logger.info("%s left Running (%s), cancelling", new.key, new.phase.value)
            return self._record(EventKind.UPDATED, await self._cancel(new))

        if new.is_running:
            logger.info("%s entered Running, registering", new.key)
            return self._record(EventKind.UPDATED, await self._register(new))

        return self._record(EventKind.UPDATED, DispatchOutcome.SKIPPED)

    async def on_delete(self, obj: Any) -> DispatchOutcome:
        """Cancel a deleted pod, whatever its phase."""
        snapshot = self._narrow(obj, EventKind.DELETED)
        if snapshot is None:
            return self._record(EventKind.DELETED, DispatchOutcome.REJECTED)

        return self._record(EventKind.DELETED, await self._cancel(snapshot))

    async def dispatch(self, event: PodEvent) -> DispatchOutcome:
        if event.kind is EventKind.ADDED:
            return await self.on_add(event.new)
        if event.kind is EventKind.UPDATED:
            return await self.on_update(event.old, event.new)
        return await self.on_delete(event.new)

    async def replay(self, action: Any, snapshot: PodSnapshot) -> DispatchOutcome:
        """Re-run the add or delete path for a retried work item.

        With a lister attached, a REGISTER retry uses the pod's current
        snapshot and is skipped once the pod is gone or no longer Running.
        CANCEL retries always replay.
        """
        if action is WorkAction.REGISTER:
            if self.lister is not None:
                current = self.lister.get(snapshot.key)
                if current is None or not current.is_running:
                    logger.info("Dropping register retry for %s, pod is gone or not Running", snapshot.key)
                    return DispatchOutcome.SKIPPED
                snapshot = current
            return await self.on_add(snapshot)
        if action is WorkAction.CANCEL:
            return await self.on_delete(snapshot)

        logger.warning("Ignoring retry with unknown action %r for %s", action, snapshot.key)
        return DispatchOutcome.SKIPPED
