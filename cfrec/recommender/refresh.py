"""Background similarity refresh.

``update_recommendations`` must not block on the O(active users + active
products) similarity sweep it triggers. Jobs are pushed onto a bounded queue
drained by a small pool of daemon worker threads. When the queue is full the
job is dropped and logged; identical jobs already waiting are coalesced.
Handler errors are logged and never propagated or retried.
"""

import logging
import queue
import threading
import time
from typing import Callable, List, NamedTuple, Optional, Set, Tuple

from cfrec.recommender.metrics import MetricsService
from cfrec.recommender.models import BehaviorType

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_WORKERS = 1


class RefreshJob(NamedTuple):
    user_id: int
    product_id: Optional[int]
    behavior_type: BehaviorType


RefreshHandler = Callable[[RefreshJob], None]

_STOP = object()


class SimilarityRefresher:
    """Bounded worker queue running similarity refresh jobs."""

    def __init__(
        self,
        handler: RefreshHandler,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        workers: int = DEFAULT_WORKERS,
        metrics: Optional[MetricsService] = None,
    ):
        self._handler = handler
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._num_workers = workers
        self._metrics = metrics
        self._threads: List[threading.Thread] = []
        self._pending: Set[Tuple[int, Optional[int]]] = set()
        self._active = 0
        self._cond = threading.Condition()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for i in range(self._num_workers):
            thread = threading.Thread(
                target=self._work,
                name=f"cfrec-refresh-{i}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        logger.info("Similarity refresher started", extra={"workers": self._num_workers})

    def submit(self, job: RefreshJob) -> bool:
        """Queue a refresh job without blocking.

        Returns:
            True if the job was queued or coalesced with a waiting one,
            False if it was dropped.
        """
        if not self._running:
            logger.warning("Refresher not running, dropping job", extra={"user_id": job.user_id})
            self._record("dropped")
            return False

        key = (job.user_id, job.product_id)
        with self._cond:
            if key in self._pending:
                logger.debug("Coalesced refresh job", extra={"user_id": job.user_id})
                return True
            try:
                self._queue.put_nowait(job)
            except queue.Full:
                logger.warning(
                    "Refresh queue full, dropping job",
                    extra={
                        "user_id": job.user_id,
                        "product_id": job.product_id,
                        "queue_size": self._queue.maxsize,
                    },
                )
                self._record("dropped")
                return False
            self._pending.add(key)

        self._record("enqueued")
        return True

    def queue_depth(self) -> int:
        return self._queue.qsize()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no job is queued or running. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._pending or self._active:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the workers after the jobs already queued have run.

        Waits at most ``timeout`` seconds overall. Workers that cannot be
        signalled or joined in time are left behind as daemon threads.
        """
        if not self._running:
            return
        self._running = False
        deadline = time.monotonic() + timeout
        for _ in self._threads:
            try:
                self._queue.put(_STOP, timeout=max(deadline - time.monotonic(), 0))
            except queue.Full:
                logger.warning(
                    "Refresh queue full at shutdown, abandoning workers",
                    extra={"queue_size": self._queue.maxsize, "workers": len(self._threads)},
                )
                break
        for thread in self._threads:
            thread.join(max(deadline - time.monotonic(), 0))
            if thread.is_alive():
                logger.warning("Refresh worker still busy at shutdown", extra={"thread": thread.name})
        self._threads = []
        logger.info("Similarity refresher stopped")

    def _work(self) -> None:
        while True:
            job = self._queue.get()
            if job is _STOP:
                self._queue.task_done()
                return

            with self._cond:
                self._pending.discard((job.user_id, job.product_id))
                self._active += 1

            start_time = time.time()
            try:
                self._handler(job)
                self._record("completed")
                logger.debug(
                    "Refresh job completed",
                    extra={
                        "user_id": job.user_id,
                        "product_id": job.product_id,
                        "duration_ms": round((time.time() - start_time) * 1000, 2),
                    },
                )
            except Exception as e:
                self._record("failed")
                logger.error(
                    "Similarity refresh failed",
                    extra={
                        "user_id": job.user_id,
                        "product_id": job.product_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
            finally:
                with self._cond:
                    self._active -= 1
                    self._cond.notify_all()
                self._queue.task_done()

    def _record(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_refresh(outcome)
