"""Coalescing work queue multiplexing workloads over a bounded worker pool.

Guarantees per WorkloadRef:

    * at most one pending entry -- repeated events before a worker picks the
      ref up collapse into a single attempt
    * at most one in-flight attempt -- an event for an in-flight ref bumps its
      generation; the running attempt sees ``is_current() == False`` before it
      writes, aborts, and the ref is processed once more afterwards

Different workloads never block each other.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from kubesum.models.workloads import WorkloadRef
from kubesum.observability.logging import get_logger
from kubesum.observability.metrics import queue_depth

ProcessFn = Callable[[WorkloadRef, Callable[[], bool]], Awaitable[None]]

_log = get_logger("controller.queue")


class WorkQueue:
    """Deduplicating, generation-tracking queue of WorkloadRefs."""

    def __init__(self, process_fn: ProcessFn, workers: int = 4) -> None:
        self._process_fn = process_fn
        self._worker_count = max(1, workers)
        self._queue: asyncio.Queue[WorkloadRef] = asyncio.Queue()
        self._pending: set[WorkloadRef] = set()
        self._in_flight: set[WorkloadRef] = set()
        self._dirty: set[WorkloadRef] = set()
        self._generation: dict[WorkloadRef, int] = {}
        self._timers: dict[WorkloadRef, asyncio.TimerHandle] = {}
        self._workers: list[asyncio.Task[None]] = []

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def enqueue(self, ref: WorkloadRef) -> None:
        """Request a reconcile of *ref*; supersedes any running attempt."""
        self._generation[ref] = self._generation.get(ref, 0) + 1
        timer = self._timers.pop(ref, None)
        if timer is not None:
            timer.cancel()
        if ref in self._in_flight:
            self._dirty.add(ref)
            return
        self._put(ref)

    def enqueue_after(self, ref: WorkloadRef, delay: float) -> None:
        """Schedule a retry of *ref* after *delay* seconds."""
        existing = self._timers.pop(ref, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        self._timers[ref] = loop.call_later(delay, self._fire_timer, ref)

    def discard(self, ref: WorkloadRef) -> None:
        """Drop scheduled retries and generation bookkeeping for a deleted workload."""
        timer = self._timers.pop(ref, None)
        if timer is not None:
            timer.cancel()
        if ref not in self._in_flight and ref not in self._pending:
            self._generation.pop(ref, None)

    def _fire_timer(self, ref: WorkloadRef) -> None:
        self._timers.pop(ref, None)
        if ref in self._in_flight:
            self._dirty.add(ref)
            return
        self._put(ref)

    def _put(self, ref: WorkloadRef) -> None:
        if ref in self._pending:
            return
        self._pending.add(ref)
        self._queue.put_nowait(ref)
        queue_depth.set(self._queue.qsize())

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    def is_pending(self, ref: WorkloadRef) -> bool:
        return ref in self._pending

    def is_in_flight(self, ref: WorkloadRef) -> bool:
        return ref in self._in_flight

    def has_retry(self, ref: WorkloadRef) -> bool:
        return ref in self._timers

    async def join(self) -> None:
        """Wait until nothing is pending or in flight (scheduled retries excluded)."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"reconcile-worker-{i}") for i in range(self._worker_count)
        ]

    async def stop(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def _worker(self) -> None:
        while True:
            ref = await self._queue.get()
            self._pending.discard(ref)
            self._in_flight.add(ref)
            queue_depth.set(self._queue.qsize())
            generation = self._generation.get(ref, 0)
            try:
                await self._process_fn(ref, lambda: self._generation.get(ref, 0) == generation)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _log.error("reconcile_worker_error", workload=str(ref), error=str(exc))
            finally:
                self._in_flight.discard(ref)
                if ref in self._dirty:
                    self._dirty.discard(ref)
                    self._put(ref)
                self._queue.task_done()
