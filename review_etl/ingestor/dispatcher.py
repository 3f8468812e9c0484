"""
Worker Pool Dispatcher

A fixed set of worker threads draining one bounded queue. Submitting blocks
while the queue is full, so a fast source is throttled to the speed of the
database instead of buffering without limit or dropping records.

Workers share nothing but the handler they call. Each keeps its own outcome
counter; counters are merged only after the join barrier.
"""

import logging
import queue
import threading
import time
from collections import Counter
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

FAILED = 'failed'
_STOP = object()


class PoolClosedError(Exception):
    """Raised when work is submitted after close() or cancel()."""
    pass


class WorkerPool(Generic[T]):
    """
    Bounded-queue thread pool with a join barrier and cancellation.

    Usage:
        pool = WorkerPool(ingestor.process, workers=8, queue_size=1000)
        pool.start()
        for record in records:
            pool.submit(record)
        pool.close()
        pool.join()
        print(pool.outcomes())

    submit() and close() are meant to be called from a single producer
    thread. The handler's return value is counted per outcome; an exception
    raised by the handler is logged and counted as 'failed', and the worker
    keeps running.
    """

    def __init__(
        self,
        handler: Callable[[T], Any],
        workers: int = 8,
        queue_size: int = 1000,
        name: str = 'ingest-worker',
    ):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be >= 1, got {queue_size}")

        self.handler = handler
        self.workers = workers
        self.queue_size = queue_size
        self.name = name

        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._threads: list[threading.Thread] = []
        self._counters: list[Counter] = [Counter() for _ in range(workers)]
        self._closing = threading.Event()
        self._cancelled = threading.Event()
        self._discarded = 0

    def __enter__(self) -> 'WorkerPool[T]':
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.cancel()
        else:
            self.close()
        self.join()
        return False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def discarded(self) -> int:
        """Number of queued items dropped by cancel() before a worker started them."""
        return self._discarded

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("WorkerPool already started")

        for index in range(self.workers):
            thread = threading.Thread(
                target=self._run_worker,
                args=(index,),
                name=f"{self.name}-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        logger.info(
            "Worker pool started",
            extra={'workers': self.workers, 'queue_size': self.queue_size}
        )

    def submit(self, item: T, timeout: Optional[float] = None) -> None:
        """
        Enqueue one item, blocking while the queue is full.

        Args:
            item: Work item passed to the handler
            timeout: Maximum seconds to wait for space; None waits forever

        Raises:
            PoolClosedError: If the pool is closing or gets cancelled while waiting
            queue.Full: If timeout elapses before space frees up
        """
        if not self._threads:
            raise RuntimeError("WorkerPool not started")

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._closing.is_set():
                raise PoolClosedError("WorkerPool is not accepting new work")

            wait = 0.1
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise queue.Full
                wait = min(wait, remaining)

            try:
                self._queue.put(item, timeout=wait)
                return
            except queue.Full:
                continue

    def close(self) -> None:
        """Stop accepting work; queued items are still processed."""
        if self._closing.is_set():
            return
        self._closing.set()
        for _ in self._threads:
            self._queue.put(_STOP)

    def cancel(self) -> None:
        """
        Stop accepting work and discard items no worker has started yet.

        Items already being processed run to completion.
        """
        already_closing = self._closing.is_set()
        self._cancelled.set()
        self._closing.set()

        removed_stops = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                removed_stops += 1
            else:
                self._discarded += 1
            self._queue.task_done()

        if self._discarded:
            logger.warning(
                "Worker pool cancelled, discarded queued items",
                extra={'discarded': self._discarded}
            )

        # Every worker still needs exactly one sentinel to exit.
        stops = removed_stops if already_closing else len(self._threads)
        for _ in range(stops):
            self._queue.put(_STOP)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for every worker to finish.

        Args:
            timeout: Upper bound in seconds for the whole drain; None waits forever

        Returns:
            True if all workers exited, False if the timeout elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)

        alive = [thread.name for thread in self._threads if thread.is_alive()]
        if alive:
            logger.warning(
                "Worker pool drain timed out",
                extra={'alive_workers': alive, 'timeout_seconds': timeout}
            )
            return False
        return True

    def outcomes(self) -> Counter:
        """Merge the per-worker outcome counters. Call after join()."""
        merged: Counter = Counter()
        for counter in self._counters:
            merged.update(counter)
        return merged

    def _run_worker(self, index: int) -> None:
        counter = self._counters[index]
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                outcome = self.handler(item)
                counter[getattr(outcome, 'value', outcome)] += 1
            except Exception as e:
                counter[FAILED] += 1
                logger.error(
                    "Unhandled error processing item",
                    extra={
                        'worker': index,
                        'error': str(e),
                        'error_type': type(e).__name__,
                    },
                    exc_info=True
                )
            finally:
                self._queue.task_done()
