"""
The de-duplicating, rate-limited work queue of object keys.

The queue does not contain the objects or their events, only the keys
(namespace & name) of the objects which need a reconciliation. The actual
state is read by the reconciler at the time of processing, not at the time
of queueing, so multiple notifications for the same key are coalesced
into one reconciliation pass.

Every key is in one of these states (or in two at once):

* *dirty*: the key needs to be processed (again); it is either in the FIFO,
  or is being processed and will be returned to the FIFO when done.
* *processing*: the key is taken by a worker and is not done yet.
* *waiting*: the key is scheduled to be added after a delay (a backoff).

The per-key exclusivity is guaranteed by the queue alone: a key which is being
processed is never given to another worker until it is marked as done,
even if it is added again meanwhile -- it is only redelivered afterwards.

The rate limiters decide on the delays of the failed keys' re-additions:
the per-key exponential backoff and the overall token bucket, whichever is
longer. The failure counts are kept until the key is explicitly forgotten,
which normally happens after its first successful reconciliation.
"""
import asyncio
import collections
import logging
import time
from collections.abc import Hashable
from typing import Protocol

from kexpose._cogs.configs import configuration
from kexpose._cogs.structs import references

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def when(self, key: Hashable) -> float: ...
    def forget(self, key: Hashable) -> None: ...
    def num_requeues(self, key: Hashable) -> int: ...


class ExponentialFailureRateLimiter:
    """
    A per-key backoff: doubled on every failure of the key, up to the maximum.
    """

    def __init__(self, base_delay: float, max_delay: float) -> None:
        super().__init__()
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[Hashable, int] = {}

    def when(self, key: Hashable) -> float:
        exp = self._failures.get(key, 0)
        self._failures[key] = exp + 1

        # The float multiplication overflows at some point; the cap is reached long before that.
        if exp >= 64:
            return self._max_delay
        return min(self._base_delay * 2 ** exp, self._max_delay)

    def forget(self, key: Hashable) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)


class BucketRateLimiter:
    """
    An overall token bucket for all keys at once: for the API's sake, not the keys'.

    Every call reserves a token (even in the future), and returns the time
    until the reserved token becomes available. The bucket is filled with
    ``qps`` tokens per second, up to ``burst`` tokens.
    """

    def __init__(self, qps: float, burst: int) -> None:
        super().__init__()
        self._qps = qps
        self._burst = burst
        self._tokens: float = burst
        self._last: float = time.monotonic()

    def when(self, key: Hashable) -> float:
        now = time.monotonic()
        self._tokens = min(float(self._burst), self._tokens + (now - self._last) * self._qps)
        self._last = now
        self._tokens -= 1
        return 0.0 if self._tokens >= 0 else -self._tokens / self._qps

    def forget(self, key: Hashable) -> None:
        pass

    def num_requeues(self, key: Hashable) -> int:
        return 0


class MaxOfRateLimiter:
    """
    The longest of the delays of all the combined rate limiters.
    """

    def __init__(self, *limiters: RateLimiter) -> None:
        super().__init__()
        self._limiters = limiters

    def when(self, key: Hashable) -> float:
        # All of them must be called: e.g. to count the failures or to reserve the tokens.
        delays = [limiter.when(key) for limiter in self._limiters]
        return max(delays, default=0.0)

    def forget(self, key: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(key)

    def num_requeues(self, key: Hashable) -> int:
        return max((limiter.num_requeues(key) for limiter in self._limiters), default=0)


def default_rate_limiter(settings: configuration.OperatorSettings) -> RateLimiter:
    return MaxOfRateLimiter(
        ExponentialFailureRateLimiter(
            base_delay=settings.queueing.base_delay,
            max_delay=settings.queueing.max_delay,
        ),
        BucketRateLimiter(
            qps=settings.queueing.qps,
            burst=settings.queueing.burst,
        ),
    )


class WorkQueue:
    """
    A queue of object keys, each delivered to at most one worker at a time.

    All the operations except :meth:`get` are synchronous and never block,
    so they can be used from the watch-stream's notification callbacks.
    The delayed operations require a running event loop.
    """

    def __init__(
            self,
            *,
            rate_limiter: RateLimiter | None = None,
            name: str | None = None,
    ) -> None:
        super().__init__()
        self._name = name
        self._rate_limiter = rate_limiter if rate_limiter is not None else MaxOfRateLimiter()
        self._fifo: collections.deque[references.ObjectRef] = collections.deque()
        self._dirty: set[references.ObjectRef] = set()
        self._processing: set[references.ObjectRef] = set()
        self._waiting: dict[references.ObjectRef, asyncio.TimerHandle] = {}
        self._changed = asyncio.Event()
        self._shutting_down = False

    def __repr__(self) -> str:
        clsname = self.__class__.__name__
        name = f' {self._name}' if self._name else ''
        return (f'<{clsname}{name}: {len(self._fifo)} queued, '
                f'{len(self._processing)} processing, {len(self._waiting)} waiting>')

    def __len__(self) -> int:
        return len(self._fifo)

    def add(self, key: references.ObjectRef) -> None:
        """
        Queue the key for processing, unless it is already queued.

        If the key is being processed now, it is marked for redelivery
        once its current processing is done -- but not delivered in parallel.
        """
        if self._shutting_down:
            return
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._fifo.append(key)
        self._changed.set()

    async def get(self) -> references.ObjectRef | None:
        """
        Take the next key for processing, or wait until there is one.

        Returns ``None`` when the queue is shut down (also for the waiters).
        The taken key must be marked as done by the caller when processed.
        """
        while not self._fifo and not self._shutting_down:
            self._changed.clear()
            await self._changed.wait()
        if self._shutting_down:
            return None
        key = self._fifo.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: references.ObjectRef) -> None:
        """
        Mark the key as processed, and redeliver it if it was re-added meanwhile.
        """
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._fifo.append(key)
            self._changed.set()

    def add_after(self, key: references.ObjectRef, delay: float) -> None:
        """
        Add the key after a delay. The sooner of the repeated schedules wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._waiting.get(key)
        if existing is not None and existing.when() <= when:
            return
        if existing is not None:
            existing.cancel()
        self._waiting[key] = loop.call_at(when, self._add_waited, key)

    def add_rate_limited(self, key: references.ObjectRef) -> None:
        """
        Add the key after a backoff, as decided by the rate limiter(s).
        """
        self.add_after(key, self._rate_limiter.when(key))

    def forget(self, key: references.ObjectRef) -> None:
        """
        Reset the backoff for the key: e.g. when it is processed successfully.
        """
        self._rate_limiter.forget(key)

    def num_requeues(self, key: references.ObjectRef) -> int:
        return self._rate_limiter.num_requeues(key)

    def shutdown(self) -> None:
        """
        Stop accepting new keys and wake up all the waiters with the shutdown indicator.
        """
        if not self._shutting_down:
            logger.debug(f"Shutting down the work queue{' ' + self._name if self._name else ''}.")
        self._shutting_down = True
        for handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        self._changed.set()

    def shutting_down(self) -> bool:
        return self._shutting_down

    def _add_waited(self, key: references.ObjectRef) -> None:
        self._waiting.pop(key, None)
        self.add(key)
