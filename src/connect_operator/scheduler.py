"""Work scheduling for reconcile cycles.

A fixed pool of asyncio workers consumes a de-duplicating queue of resource
keys. Guarantees:

- a key is processed by at most one worker at a time
- a key enqueued while it is being processed runs again right after,
  so cycle N+1 always sees what cycle N wrote
- delayed requeues (backoff, resync) are timers that enqueue the key later
- a periodic resync reloads the store and enqueues every key that is not
  already queued, running or waiting on a timer

There is no ordering between keys and no global rate limiting; each key's
own backoff is the only admission control.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from .reconciler import Backoff, ReconcileResult
from .store import ResourceStore

logger = logging.getLogger(__name__)


class Reconciles(Protocol):
    """What the scheduler needs from a reconciler."""

    async def reconcile(self, key: str) -> ReconcileResult: ...

    @property
    def backoff(self) -> Backoff: ...


class Scheduler:
    """Bounded worker pool with per-key mutual exclusion.

    Args:
        reconciler: Object running one cycle per call (ConnectorReconciler).
        store: Resource store, refreshed on every resync.
        workers: Number of concurrent reconciles.
        resync_interval_seconds: Seconds between full resyncs.
    """

    def __init__(
        self,
        reconciler: Reconciles,
        store: ResourceStore,
        *,
        workers: int,
        resync_interval_seconds: float,
    ) -> None:
        self._reconciler = reconciler
        self._store = store
        self._workers = workers
        self._resync_interval_seconds = resync_interval_seconds

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._queued: set[str] = set()
        self._processing: set[str] = set()
        self._dirty: set[str] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}

        self._shutdown_event = asyncio.Event()

    @property
    def pending(self) -> int:
        """Keys waiting in the queue."""
        return len(self._queued)

    def enqueue(self, key: str) -> None:
        """Schedule a key for reconciliation as soon as a worker is free."""
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def enqueue_after(self, key: str, delay_seconds: float) -> None:
        """Schedule a key after a delay, replacing any earlier timer for it."""
        if self._shutdown_event.is_set():
            return

        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay_seconds, self._fire_timer, key)

    def _fire_timer(self, key: str) -> None:
        self._timers.pop(key, None)
        self.enqueue(key)

    def resync(self) -> int:
        """Reload the store and enqueue keys that have nothing scheduled."""
        self._store.refresh()
        added = 0
        for key in self._store.list_keys():
            if key in self._timers or key in self._queued or key in self._processing:
                continue
            self.enqueue(key)
            added += 1
        logger.debug("Resync", extra={"enqueued": added, "pending": self.pending})
        return added

    async def run(self) -> None:
        """Run workers and the resync loop until shutdown."""
        logger.info(
            "Starting scheduler",
            extra={
                "workers": self._workers,
                "resync_interval_seconds": self._resync_interval_seconds,
            },
        )

        workers = [
            asyncio.create_task(self._worker(i), name=f"reconcile-worker-{i}")
            for i in range(self._workers)
        ]
        try:
            while not self._shutdown_event.is_set():
                self.resync()
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self._resync_interval_seconds,
                    )
                except TimeoutError:
                    # Normal timeout, continue to next resync
                    pass
        finally:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()

            # Cancelling a worker cancels its in-flight REST call
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        logger.info("Scheduler shutdown complete")

    def shutdown(self) -> None:
        """Signal the scheduler to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def _worker(self, index: int) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._processing.add(key)

            requeue_after: float | None = None
            try:
                result = await self._reconciler.reconcile(key)
                requeue_after = result.requeue_after
            except asyncio.CancelledError:
                raise
            except Exception:
                # Never let one resource take a worker down
                logger.exception(
                    "Unexpected error during reconciliation",
                    extra={"resource": key, "worker": index},
                )
                requeue_after = self._reconciler.backoff.failure(key)
            finally:
                self._processing.discard(key)
                self._queue.task_done()

            if key in self._dirty:
                self._dirty.discard(key)
                self.enqueue(key)
            elif requeue_after is not None:
                self.enqueue_after(key, requeue_after)
