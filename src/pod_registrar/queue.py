"""
Rate-limited, deduplicating retry queue.

Work items are identified by their ``(action, key)`` token. While an item is
pending, adding the same token again only refreshes its snapshot. An item
added while a worker is processing it is queued again once the worker calls
``done()``. Delays come from the larger of a per-item exponential backoff and
an overall token bucket.
"""

import asyncio
import builtins
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Hashable
from typing import TYPE_CHECKING

from .config import RetryQueueConfig
from .core import WorkAction, WorkItem
from .metrics import RegistrarMetrics, get_metrics

if TYPE_CHECKING:
    from .dispatcher import EventDispatcher

logger = logging.getLogger(__name__)

Token = builtins.tuple[WorkAction, str]


class RateLimiter(ABC):
    """Decides how long an item waits before it is re-queued."""

    @abstractmethod
    def when(self, token: Hashable) -> float:
        """Delay in seconds for the next retry of ``token``."""

    def forget(self, token: Hashable) -> None:
        """Stop tracking ``token``."""

    def retries(self, token: Hashable) -> int:
        return 0


class ItemExponentialRateLimiter(RateLimiter):
    """Exponential backoff tracked per item."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0, multiplier: float = 2.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self._failures: builtins.dict[Hashable, int] = {}

    def when(self, token: Hashable) -> float:
        attempt = self._failures.get(token, 0)
        self._failures[token] = attempt + 1
        return min(self.base_delay * (self.multiplier**attempt), self.max_delay)

    def forget(self, token: Hashable) -> None:
        self._failures.pop(token, None)

    def retries(self, token: Hashable) -> int:
        return self._failures.get(token, 0)


class BucketRateLimiter(RateLimiter):
    """Overall token bucket shared by every item."""

    def __init__(self, qps: float = 10.0, burst: int = 100, clock=time.monotonic):
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._updated = clock()

    def when(self, token: Hashable) -> float:
        now = self._clock()
        self._tokens = min(self.burst, self._tokens + (now - self._updated) * self.qps)
        self._updated = now
        self._tokens -= 1
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self.qps


class MaxOfRateLimiter(RateLimiter):
    """Use the longest delay of several limiters."""

    def __init__(self, *limiters: RateLimiter):
        self.limiters = limiters

    def when(self, token: Hashable) -> float:
        return max(limiter.when(token) for limiter in self.limiters)

    def forget(self, token: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(token)

    def retries(self, token: Hashable) -> int:
        return max(limiter.retries(token) for limiter in self.limiters)


def default_rate_limiter(config: RetryQueueConfig) -> RateLimiter:
    return MaxOfRateLimiter(
        ItemExponentialRateLimiter(config.base_delay, config.max_delay),
        BucketRateLimiter(config.qps, config.burst),
    )


class QueueShutDown(Exception):
    """Raised by ``get()`` once the queue has been shut down."""


class RetryQueue:
    """Deduplicating FIFO of work items with delayed and rate-limited adds."""

    def __init__(
        self,
        config: RetryQueueConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        metrics: RegistrarMetrics | None = None,
    ):
        self.config = config or RetryQueueConfig()
        self._rate_limiter = rate_limiter or default_rate_limiter(self.config)
        self._metrics = metrics or get_metrics()

        self._ready: asyncio.Queue[Token | None] = asyncio.Queue()
        self._items: builtins.dict[Token, WorkItem] = {}
        self._dirty: builtins.set[Token] = set()
        self._processing: builtins.set[Token] = set()
        self._timers: builtins.set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def __len__(self) -> int:
        """Number of distinct items waiting to be handed out."""
        return len(self._dirty)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, item: WorkItem) -> None:
        """Queue an item now, collapsing it onto a pending identical one."""
        if self._shutting_down:
            return

        token = item.token
        self._items[token] = item
        if token in self._dirty:
            return

        self._dirty.add(token)
        self._metrics.queue_depth.set(len(self._dirty))
        if token in self._processing:
            return

        self._ready.put_nowait(token)

    def add_after(self, item: WorkItem, delay: float) -> None:
        """Queue an item once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            self._timers.discard(handle)
            self.add(item)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, item: WorkItem) -> bool:
        """Queue an item after its backoff delay.

        Returns False when the item has exhausted ``max_retries`` and was
        dropped instead.
        """
        token = item.token
        max_retries = self.config.max_retries
        if max_retries and self._rate_limiter.retries(token) >= max_retries:
            logger.error(
                "Dropping %s for %s after %d retries", item.action.value, item.key, max_retries
            )
            self._metrics.retry_drops.labels(action=item.action.value).inc()
            self.forget(item)
            return False

        delay = self._rate_limiter.when(token)
        self._metrics.retries.labels(action=item.action.value).inc()
        logger.debug("Retrying %s for %s in %.3fs", item.action.value, item.key, delay)
        self.add_after(item, delay)
        return True

    def forget(self, item: WorkItem) -> None:
        """Reset the backoff for an item."""
        self._rate_limiter.forget(item.token)

    def num_requeues(self, item: WorkItem) -> int:
        return self._rate_limiter.retries(item.token)

    async def get(self) -> WorkItem:
        """Wait for the next item and mark it as being processed."""
        token = await self._ready.get()
        if token is None:
            # Wake the next waiter as well.
            self._ready.put_nowait(None)
            raise QueueShutDown()

        self._dirty.discard(token)
        self._processing.add(token)
        self._metrics.queue_depth.set(len(self._dirty))
        return self._items.pop(token)

    def done(self, item: WorkItem) -> None:
        """Mark an item as processed, re-queueing it if it was added meanwhile."""
        token = item.token
        self._processing.discard(token)
        if token in self._dirty and not self._shutting_down:
            self._ready.put_nowait(token)

    def shutdown(self) -> None:
        """Drop pending timers and wake every waiting consumer."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._ready.put_nowait(None)


class RetryWorker:
    """Drains the retry queue by replaying the dispatcher."""

    def __init__(self, queue: RetryQueue, dispatcher: "EventDispatcher", name: str = "retry-worker"):
        self.queue = queue
        self.dispatcher = dispatcher
        self.name = name

    async def process_next(self) -> bool:
        """Replay one item. Returns False once the queue is shut down."""
        try:
            item = await self.queue.get()
        except QueueShutDown:
            return False

        try:
            outcome = await self.dispatcher.replay(item.action, item.snapshot)
            if outcome.succeeded:
                self.queue.forget(item)
        except Exception:
            logger.exception("%s: replay of %s for %s crashed", self.name, item.action.value, item.key)
        finally:
            self.queue.done(item)
        return True

    async def run(self) -> None:
        logger.info("%s started", self.name)
        while await self.process_next():
            pass
        logger.info("%s stopped", self.name)
