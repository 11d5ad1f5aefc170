import threading
import unittest

from errors import ConcurrencyLimitError
from runbooks.dispatcher import ExecutionDispatcher


class TestExecutionDispatcher(unittest.TestCase):
    """Tests for the execution worker pool."""

    def setUp(self):
        self.dispatcher = ExecutionDispatcher(max_workers=2, max_per_runbook=2)

    def tearDown(self):
        self.dispatcher.shutdown(wait=True)

    def test_runs_submitted_work(self):
        results = []
        self.dispatcher.acquire("rb-1")

        future = self.dispatcher.submit("rb-1", "ex-1", results.append, "done")

        self.assertTrue(self.dispatcher.wait("ex-1", timeout=5))
        future.result(timeout=5)
        self.assertEqual(results, ["done"])
        self.assertEqual(self.dispatcher.active_count("rb-1"), 0)

    def test_per_runbook_limit(self):
        self.dispatcher.acquire("rb-1")
        self.dispatcher.acquire("rb-1")

        with self.assertRaises(ConcurrencyLimitError):
            self.dispatcher.acquire("rb-1")

        # Other runbooks are unaffected
        self.dispatcher.acquire("rb-2")

        self.dispatcher.release("rb-1")
        self.dispatcher.acquire("rb-1")
        self.assertEqual(self.dispatcher.active_count("rb-1"), 2)

    def test_unlimited_when_zero(self):
        dispatcher = ExecutionDispatcher(max_workers=1, max_per_runbook=0)
        try:
            for _ in range(10):
                dispatcher.acquire("rb-1")
            self.assertEqual(dispatcher.active_count("rb-1"), 10)
        finally:
            dispatcher.shutdown()

    def test_slot_released_when_work_raises(self):
        def boom():
            raise RuntimeError("boom")

        self.dispatcher.acquire("rb-1")
        future = self.dispatcher.submit("rb-1", "ex-1", boom)

        with self.assertRaises(RuntimeError):
            future.result(timeout=5)
        self.assertEqual(self.dispatcher.active_count("rb-1"), 0)

    def test_work_beyond_pool_size_queues(self):
        gate = threading.Event()
        finished = []

        def blocked(name):
            gate.wait(5)
            finished.append(name)

        for i in range(3):
            self.dispatcher.acquire(f"rb-{i}")
            self.dispatcher.submit(f"rb-{i}", f"ex-{i}", blocked, f"ex-{i}")

        self.assertFalse(self.dispatcher.wait("ex-2", timeout=0.1))
        gate.set()
        for i in range(3):
            self.assertTrue(self.dispatcher.wait(f"ex-{i}", timeout=5))
        self.assertEqual(sorted(finished), ["ex-0", "ex-1", "ex-2"])

    def test_wait_for_unknown_execution(self):
        self.assertTrue(self.dispatcher.wait("never-submitted", timeout=0))

    def test_submit_after_shutdown_releases_slot(self):
        self.dispatcher.shutdown()
        self.dispatcher.acquire("rb-1")

        with self.assertRaises(RuntimeError):
            self.dispatcher.submit("rb-1", "ex-1", print)

        self.assertEqual(self.dispatcher.active_count("rb-1"), 0)


if __name__ == "__main__":
    unittest.main()
