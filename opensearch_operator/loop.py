"""Level-triggered control loop.

``WorkQueue`` guarantees that a cluster key is processed by at most one
worker at a time. Events for a key that is already queued are dropped, and
events for a key that is being processed mark it dirty so that exactly one
follow-up pass runs after the current one. Independent keys are handed to
different workers and proceed in parallel.
"""

import heapq
import threading
import time
from collections import deque
from collections.abc import Callable

from opensearch_operator.controller import ClusterController, PassResult
from opensearch_operator.exceptions import OperatorError, TransientInfraError
from opensearch_operator.logging_config import get_logger

logger = get_logger(__name__)


class WorkQueue:
    """Coalescing queue of keys with delayed re-adds and per-key backoff."""

    def __init__(
        self,
        backoff_base: float = 1.0,
        backoff_max: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._delayed: list[tuple[float, str]] = []
        # Earliest pending deadline per key; later requests for the same key are dropped
        self._scheduled: dict[str, float] = {}
        self._failures: dict[str, int] = {}
        self._shutdown = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: str) -> None:
        """Request a pass for ``key``."""
        with self._cond:
            if self._shutdown or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                # Re-queued by done()
                return
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        with self._cond:
            if self._shutdown:
                return
            when = self._clock() + delay
            if self._scheduled.get(key, float("inf")) <= when:
                return
            self._scheduled[key] = when
            heapq.heappush(self._delayed, (when, key))
            self._cond.notify()

    def add_rate_limited(self, key: str) -> float:
        """Re-add ``key`` after an exponential backoff.

        Returns:
            The delay used
        """
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(self.backoff_base * 2**failures, self.backoff_max)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff of ``key`` after a successful pass."""
        with self._cond:
            self._failures.pop(key, None)

    def _promote_due(self) -> float | None:
        """Move due delayed keys into the queue; return seconds until the next one."""
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            when, key = heapq.heappop(self._delayed)
            if self._scheduled.get(key) != when:
                continue
            del self._scheduled[key]
            if key not in self._dirty:
                self._dirty.add(key)
                if key not in self._processing:
                    self._queue.append(key)
        if self._delayed:
            return max(0.0, self._delayed[0][0] - now)
        return None

    def get(self, timeout: float | None = None) -> str | None:
        """Block until a key is ready, the queue shuts down, or ``timeout`` passes."""
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                wait = self._promote_due()
                if self._queue:
                    key = self._queue.popleft()
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key
                if self._shutdown:
                    return None
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: str) -> None:
        """Mark the pass for ``key`` finished; re-queue it if events arrived meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()


def split_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.partition("/")
    return namespace, name


class ControlLoop:
    """Worker threads feeding cluster keys from a ``WorkQueue`` to a controller."""

    def __init__(
        self,
        controller: ClusterController,
        queue: WorkQueue | None = None,
        workers: int = 2,
        resync_seconds: float = 300.0,
    ):
        self.controller = controller
        self.queue = queue or WorkQueue()
        self.workers = workers
        self.resync_seconds = resync_seconds
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def enqueue(self, key: str) -> None:
        self.queue.add(key)

    def process(self, key: str) -> PassResult | None:
        """Run one pass for ``key`` and schedule whatever follow-up it needs."""
        namespace, name = split_key(key)
        try:
            result = self.controller.reconcile_key(namespace, name)
        except TransientInfraError as e:
            delay = self.queue.add_rate_limited(key)
            logger.warning(f"Transient error reconciling {key}, retrying in {delay:.1f}s: {e.message}")
            return None
        except OperatorError as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(f"Error reconciling {key}, retrying in {delay:.1f}s: {e}")
            return None

        if result.requeue and result.requeue_after is None:
            self.queue.add_rate_limited(key)
        else:
            self.queue.forget(key)
            if result.requeue:
                self.queue.add_after(key, result.requeue_after)
            else:
                self.queue.add_after(key, self.resync_seconds)
        return result

    def _worker(self) -> None:
        while not self._stop.is_set():
            key = self.queue.get(timeout=1.0)
            if key is None:
                continue
            try:
                self.process(key)
            except Exception:
                logger.exception(f"Unexpected error reconciling {key}")
                self.queue.add_rate_limited(key)
            finally:
                self.queue.done(key)

    def start(self) -> None:
        for i in range(self.workers):
            thread = threading.Thread(target=self._worker, name=f"reconcile-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Control loop started with {self.workers} workers")

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        self.queue.shutdown()
        for thread in self._threads:
            thread.join(timeout)
        self._threads.clear()
        logger.info("Control loop stopped")
