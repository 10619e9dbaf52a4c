"""
Dispatch Queue
Bounded worker pool that runs processing requests in arrival order.

- enqueue() returns immediately; work happens on worker threads
- At most `concurrency` requests run at once, the rest wait FIFO
- Re-enqueueing a job id that is still waiting or active is ignored
- Owns the job-state table (waiting/active/completed/failed) for the
  requests it has accepted; only the most recent `history_limit` finished
  jobs are remembered, the store keeps the full history
"""

import logging
import queue
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from .models import JobStatus, ProcessingRequest

logger = logging.getLogger(__name__)

_STOP = object()

DEFAULT_HISTORY_LIMIT = 1000

RequestHandler = Callable[[ProcessingRequest], Any]


class DispatchQueue:
    """
    Fixed-size pool of worker threads pulling from a FIFO queue.

    Constructed once at start-up and passed to whatever accepts requests.
    """

    def __init__(self, handler: RequestHandler, concurrency: int = 2,
                 name: str = "dispatch", history_limit: int = DEFAULT_HISTORY_LIMIT):
        """
        Args:
            handler: Called with each request on a worker thread. Its return
                value may carry a `status` (JobStatus) used as the final state.
            concurrency: Number of worker threads
            name: Thread name prefix
            history_limit: Finished jobs kept in the state table
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self.handler = handler
        self.concurrency = concurrency
        self.name = name
        self.history_limit = max(0, history_limit)

        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._states: Dict[str, JobStatus] = {}
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._outstanding = 0
        self._workers: List[threading.Thread] = []
        self._started = False
        self._shutdown = False

    # ===== Lifecycle =====

    def start(self) -> None:
        """Spawn the worker threads"""
        with self._lock:
            if self._started:
                logger.warning("Dispatch queue already started")
                return
            if self._shutdown:
                raise RuntimeError("Dispatch queue has been shut down")
            self._started = True

            for i in range(self.concurrency):
                worker = threading.Thread(
                    target=self._worker_loop,
                    args=(f"{self.name}-{i + 1}",),
                    name=f"{self.name}-worker-{i + 1}",
                    daemon=True
                )
                self._workers.append(worker)
                worker.start()

        logger.info(f"Dispatch queue started with {self.concurrency} workers")

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop accepting requests and stop workers once the backlog drains.

        Args:
            wait: Block until worker threads exit
            timeout: Per-thread join timeout
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
            workers = list(self._workers)

        for _ in workers:
            self._queue.put(_STOP)

        if wait:
            for worker in workers:
                worker.join(timeout)

        logger.info("Dispatch queue stopped")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)
        return False

    # ===== Requests =====

    def enqueue(self, request: ProcessingRequest) -> bool:
        """
        Accept a request for asynchronous processing.

        Returns:
            True if accepted, False if the same job id is already waiting
            or active

        Raises:
            RuntimeError: If the queue has been shut down
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Dispatch queue has been shut down")

            state = self._states.get(request.job_id)
            if state in (JobStatus.WAITING, JobStatus.ACTIVE):
                logger.info(f"Job {request.job_id} already {state.value}, ignoring duplicate enqueue")
                return False

            self._states[request.job_id] = JobStatus.WAITING
            self._finished.pop(request.job_id, None)
            self._outstanding += 1
            self._queue.put(request)

        logger.info(f"Enqueued job {request.job_id} for document {request.document_id[:8]}...")
        return True

    def get_state(self, job_id: str) -> Optional[JobStatus]:
        with self._lock:
            return self._states.get(job_id)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every accepted request has finished.

        Returns:
            True if the queue went idle, False on timeout
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            counts = {status.value: 0 for status in JobStatus}
            for state in self._states.values():
                counts[state.value] += 1
            return {
                "workers": self.concurrency,
                "running": self._started and not self._shutdown,
                "outstanding": self._outstanding,
                "jobs": counts,
            }

    # ===== Worker =====

    def _worker_loop(self, worker_id: str) -> None:
        logger.debug(f"Worker {worker_id} started")

        while True:
            request = self._queue.get()
            try:
                if request is _STOP:
                    break
                self._run(worker_id, request)
            finally:
                self._queue.task_done()

        logger.debug(f"Worker {worker_id} stopped")

    def _run(self, worker_id: str, request: ProcessingRequest) -> None:
        with self._lock:
            self._states[request.job_id] = JobStatus.ACTIVE

        logger.info(f"Worker {worker_id} processing job {request.job_id}")
        final_state = JobStatus.COMPLETED

        try:
            result = self.handler(request)
            status = getattr(result, 'status', None)
            if isinstance(status, JobStatus) and status.is_terminal:
                final_state = status
        except Exception as e:
            final_state = JobStatus.FAILED
            logger.error(f"Worker {worker_id} failed job {request.job_id}: {e}", exc_info=True)
        finally:
            with self._idle:
                self._states[request.job_id] = final_state
                self._finished.pop(request.job_id, None)
                self._finished[request.job_id] = None
                self._prune_finished()
                self._outstanding -= 1
                self._idle.notify_all()

        logger.info(f"Worker {worker_id} finished job {request.job_id} ({final_state.value})")

    def _prune_finished(self) -> None:
        # Caller holds self._lock
        while len(self._finished) > self.history_limit:
            job_id, _ = self._finished.popitem(last=False)
            state = self._states.get(job_id)
            if state is not None and state.is_terminal:
                del self._states[job_id]
