"""Keyed work queue that serialises reconciliation per object.

Keys are ``namespace/name`` strings. A key is queued at most once, and a key
that is being processed is never handed to a second worker: adding it marks
it dirty and it is queued again when the running worker calls :meth:`done`.
"""

import asyncio
import logging
from collections import deque

logger = logging.getLogger(__name__)


def object_key(namespace, name):
    return f"{namespace}/{name}"


def split_key(key):
    namespace, _, name = key.rpartition("/")
    return namespace, name


class WorkQueue:
    """Deduplicating asyncio work queue with per-key exponential backoff."""

    def __init__(self, base_delay=5.0, max_delay=300.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue = deque()
        self._queued = set()
        self._processing = set()
        self._dirty = set()
        self._failures = {}
        self._timers = {}
        # created on first get() so it binds to the loop that waits on it
        self._wakeup = None
        self._shutting_down = False

    def __len__(self):
        return len(self._queue)

    @property
    def shutting_down(self):
        return self._shutting_down

    def add(self, key):
        if self._shutting_down:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.append(key)
        self._notify()

    def add_after(self, key, delay):
        """Add ``key`` once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _notify(self):
        if self._wakeup is not None:
            self._wakeup.set()

    def _fire(self, key):
        self._timers.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key):
        """Requeue ``key`` with a delay that doubles on each consecutive failure."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        self.add_after(key, self.backoff(failures))

    def backoff(self, failures):
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def forget(self, key):
        """Reset the backoff of ``key`` after a successful pass."""
        self._failures.pop(key, None)

    def num_requeues(self, key):
        return self._failures.get(key, 0)

    async def get(self):
        """Wait for the next key; returns None once the queue shuts down."""
        while not self._queue:
            if self._shutting_down:
                return None
            if self._wakeup is None:
                self._wakeup = asyncio.Event()
            self._wakeup.clear()
            await self._wakeup.wait()
        key = self._queue.popleft()
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key):
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def shutdown(self):
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._notify()


class Controller:
    """Runs worker tasks that feed queued keys to a synchronous reconcile function."""

    def __init__(self, reconcile, queue, workers=5, name="controller"):
        self.reconcile = reconcile
        self.queue = queue
        self.workers = workers
        self.name = name
        self._tasks = []

    async def start(self):
        logger.info(f"Starting {self.workers} workers for {self.name}")
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}")
            for i in range(self.workers)
        ]

    async def stop(self):
        logger.info(f"Stopping workers for {self.name}")
        self.queue.shutdown()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _worker(self, index):
        while True:
            key = await self.queue.get()
            if key is None:
                return
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key):
        try:
            result = await asyncio.to_thread(self.reconcile, key)
        except Exception as e:
            logger.exception(f"Unhandled error reconciling {key}: {e}")
            self.queue.add_rate_limited(key)
            return

        if result.requeue_after:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self.queue.add_rate_limited(key)
            logger.debug(
                f"Requeued {key} (attempt {self.queue.num_requeues(key)})"
            )
        else:
            self.queue.forget(key)
