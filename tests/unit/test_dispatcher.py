"""Tests for the bounded worker pool."""

import queue
import threading
import time

import pytest

from review_etl.ingestor.dispatcher import FAILED, PoolClosedError, WorkerPool


class TestWorkerPool:
    """Tests for submit/close/join semantics."""

    def test_processes_every_item_before_join_returns(self):
        seen = []

        def handler(item):
            time.sleep(0.001)
            seen.append(item)
            return "ok"

        pool = WorkerPool(handler, workers=4, queue_size=5)
        pool.start()
        for i in range(100):
            pool.submit(i)
        pool.close()

        assert pool.join(timeout=10) is True
        assert sorted(seen) == list(range(100))
        assert pool.outcomes()["ok"] == 100

    def test_enum_outcomes_are_counted_by_value(self):
        from review_etl.ingestor.models import RecordOutcome

        pool = WorkerPool(lambda item: RecordOutcome.DUPLICATE, workers=2, queue_size=2)
        pool.start()
        for i in range(5):
            pool.submit(i)
        pool.close()
        pool.join()

        assert pool.outcomes()["duplicate"] == 5

    def test_handler_exception_does_not_kill_worker(self):
        def handler(item):
            if item % 2:
                raise RuntimeError(f"boom {item}")
            return "ok"

        pool = WorkerPool(handler, workers=1, queue_size=2)
        pool.start()
        for i in range(10):
            pool.submit(i)
        pool.close()

        assert pool.join(timeout=5) is True
        outcomes = pool.outcomes()
        assert outcomes["ok"] == 5
        assert outcomes[FAILED] == 5

    def test_submit_blocks_when_queue_full(self):
        release = threading.Event()

        def handler(item):
            release.wait(5)
            return "ok"

        pool = WorkerPool(handler, workers=1, queue_size=1)
        pool.start()
        pool.submit(1)  # taken by the worker, which then blocks
        time.sleep(0.05)
        pool.submit(2)  # fills the queue

        with pytest.raises(queue.Full):
            pool.submit(3, timeout=0.2)

        release.set()
        pool.submit(3, timeout=5)
        pool.close()
        assert pool.join(timeout=5) is True
        assert pool.outcomes()["ok"] == 3

    def test_submit_after_close_raises(self):
        pool = WorkerPool(lambda item: "ok", workers=1, queue_size=1)
        pool.start()
        pool.close()

        with pytest.raises(PoolClosedError):
            pool.submit(1)
        pool.join()

    def test_submit_before_start_raises(self):
        pool = WorkerPool(lambda item: "ok")
        with pytest.raises(RuntimeError):
            pool.submit(1)

    def test_cancel_discards_queued_items(self):
        release = threading.Event()
        started = threading.Event()

        def handler(item):
            started.set()
            release.wait(5)
            return "ok"

        pool = WorkerPool(handler, workers=1, queue_size=10)
        pool.start()
        for i in range(6):
            pool.submit(i)
        started.wait(5)

        pool.cancel()
        release.set()

        assert pool.join(timeout=5) is True
        assert pool.cancelled is True
        assert pool.discarded == 5
        assert pool.outcomes()["ok"] == 1

    def test_cancel_after_close_still_stops_workers(self):
        pool = WorkerPool(lambda item: "ok", workers=3, queue_size=2)
        pool.start()
        pool.close()
        pool.cancel()
        assert pool.join(timeout=5) is True

    def test_join_timeout_reports_unfinished_drain(self):
        release = threading.Event()
        pool = WorkerPool(lambda item: release.wait(5), workers=1, queue_size=1)
        pool.start()
        pool.submit(1)
        pool.close()

        assert pool.join(timeout=0.1) is False

        release.set()
        assert pool.join(timeout=5) is True

    def test_context_manager_joins(self):
        seen = []
        with WorkerPool(seen.append, workers=2, queue_size=2) as pool:
            for i in range(10):
                pool.submit(i)

        assert sorted(seen) == list(range(10))

    @pytest.mark.parametrize("workers,queue_size", [(0, 10), (1, 0)])
    def test_invalid_sizes(self, workers, queue_size):
        with pytest.raises(ValueError):
            WorkerPool(lambda item: None, workers=workers, queue_size=queue_size)
