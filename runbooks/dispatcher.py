"""
Background dispatch of runbook executions onto a worker pool.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import Any, Callable, Dict, Optional

from errors import ConcurrencyLimitError, ErrorCode

# Configure logger
logger = logging.getLogger(__name__)


class ExecutionDispatcher:
    """
    Runs execution step loops on a bounded thread pool.

    The pool size caps how many executions run at once across the
    deployment; further submissions queue. A separate per-runbook cap
    rejects new executions outright while a runbook has too many active.
    """

    def __init__(self, max_workers: Optional[int] = None, max_per_runbook: Optional[int] = None):
        """
        Initialize the dispatcher.

        Args:
            max_workers: Worker threads (default: runbook.max_concurrent_executions)
            max_per_runbook: Active executions allowed per runbook, 0 for
                unlimited (default: runbook.max_concurrent_per_runbook)
        """
        # Import config when needed (avoids circular imports)
        from config import config

        self.max_workers = max_workers or config.runbook.max_concurrent_executions
        self.max_per_runbook = (max_per_runbook if max_per_runbook is not None
                                else config.runbook.max_concurrent_per_runbook)

        self.executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="runbook")
        self.active_runbooks: Dict[str, int] = {}  # runbook_id -> reserved or running executions
        self.futures: Dict[str, Future] = {}  # execution_id -> future
        self.lock = threading.Lock()

        logger.info(f"Execution dispatcher started with {self.max_workers} workers")

    def acquire(self, runbook_id: str) -> None:
        """
        Reserve a slot for a new execution of a runbook.

        Raises:
            ConcurrencyLimitError: If the runbook is at its limit
        """
        with self.lock:
            count = self.active_runbooks.get(runbook_id, 0)
            if self.max_per_runbook and count >= self.max_per_runbook:
                raise ConcurrencyLimitError(
                    f"Runbook already has {count} active executions (limit {self.max_per_runbook})",
                    ErrorCode.CONCURRENCY_LIMIT_REACHED,
                    {"runbook_id": runbook_id}
                )
            self.active_runbooks[runbook_id] = count + 1

    def release(self, runbook_id: str) -> None:
        with self.lock:
            count = self.active_runbooks.get(runbook_id, 0) - 1
            if count > 0:
                self.active_runbooks[runbook_id] = count
            else:
                self.active_runbooks.pop(runbook_id, None)

    def active_count(self, runbook_id: str) -> int:
        with self.lock:
            return self.active_runbooks.get(runbook_id, 0)

    def submit(self, runbook_id: str, execution_id: str, fn: Callable[..., Any], *args: Any) -> Future:
        """
        Run ``fn(*args)`` on the pool for a slot taken with ``acquire``.

        The slot is released when ``fn`` returns or raises.

        Returns:
            Future of the call
        """
        def run() -> Any:
            try:
                return fn(*args)
            except Exception as e:
                logger.error(f"Execution {execution_id} crashed: {e}", exc_info=True)
                raise
            finally:
                self.release(runbook_id)

        try:
            future = self.executor.submit(run)
        except RuntimeError:
            # Pool already shut down
            self.release(runbook_id)
            raise

        with self.lock:
            self.futures[execution_id] = future
        future.add_done_callback(lambda _: self._forget(execution_id))

        logger.debug(f"Execution {execution_id} submitted")
        return future

    def _forget(self, execution_id: str) -> None:
        with self.lock:
            self.futures.pop(execution_id, None)

    def wait(self, execution_id: str, timeout: Optional[float] = None) -> bool:
        """
        Block until an execution's step loop has finished.

        Returns:
            True if it finished (or was never submitted), False on timeout
        """
        with self.lock:
            future = self.futures.get(execution_id)
        if future is None:
            return True
        done, _ = wait_futures([future], timeout=timeout)
        return bool(done)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for running executions."""
        logger.info("Shutting down execution dispatcher")
        self.executor.shutdown(wait=wait)
