"""Bounded pool of long-lived recap worker processes.

The pool owns a fixed number of worker slots, a FIFO job queue and one future
per job. A job is sent to a worker only when a queued job and an idle worker
both exist, so at most ``size`` jobs run at once while the queue itself is
unbounded. Completion order follows worker speed, not submission order.

A worker that dies outside the message protocol fails only the jobs it was
running; the slot is respawned transparently unless the pool is closing.
"""

import multiprocessing
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess

import structlog

from recap_scraper.config import DEFAULT_POOL_SIZE, SHUTDOWN_TIMEOUT
from recap_scraper.exceptions import ParseJobError, PoolShutdownError, WorkerError
from recap_scraper.models import ParsedRecap
from recap_scraper.worker import SHUTDOWN_COMMAND, PageFetcher, run_worker

logger = structlog.get_logger(__name__)

# Grace period for terminated workers before they are killed outright
TERMINATE_GRACE = 0.5
# Wait for killed workers to be reaped
KILL_WAIT = 0.1


@dataclass
class _Job:
    id: str
    url: str
    future: Future = field(default_factory=Future)


@dataclass(eq=False)
class _Worker:
    slot: int
    process: BaseProcess
    conn: Connection
    busy: bool = False
    jobs: set[str] = field(default_factory=set)


class RecapPool:
    """Dispatches recap parse jobs to a fixed set of worker processes.

    Example:
        with RecapPool(size=3) as pool:
            future = pool.enqueue("https://recaps.competitionsuite.com/abc.htm")
            recaps = future.result()
    """

    def __init__(
        self,
        size: int = DEFAULT_POOL_SIZE,
        fetcher: PageFetcher | None = None,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
        start_method: str = "spawn",
    ) -> None:
        """Starts the pool and spawns all workers.

        Args:
            size: Number of worker processes (maximum concurrent jobs).
            fetcher: Page fetcher handed to every worker; pickled, so each
                worker gets its own copy and its own session.
            shutdown_timeout: Seconds workers get to exit on ``close()``
                before they are terminated.
            start_method: multiprocessing start method for the workers.
        """
        if size < 1:
            raise ValueError(f"Pool size must be at least 1, got {size}")
        self.size = size
        self.fetcher = fetcher or PageFetcher()
        self.shutdown_timeout = shutdown_timeout
        self._ctx = multiprocessing.get_context(start_method)

        self._lock = threading.RLock()
        self._workers: dict[int, _Worker] = {}
        self._idle: deque[_Worker] = deque()
        self._queue: deque[_Job] = deque()
        self._inflight: dict[str, _Job] = {}
        self._next_job_id = 1
        self._closing = False
        self._closed = threading.Event()

        with self._lock:
            for slot in range(size):
                self._spawn_worker(slot)

    def __enter__(self) -> "RecapPool":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def pending(self) -> int:
        """Number of queued jobs not yet sent to a worker."""
        with self._lock:
            return len(self._queue)

    @property
    def in_flight(self) -> int:
        """Number of jobs currently running on a worker."""
        with self._lock:
            return len(self._inflight)

    @property
    def alive_workers(self) -> int:
        with self._lock:
            return sum(1 for w in self._workers.values() if w.process.is_alive())

    def enqueue(self, url: str) -> Future:
        """Queues a recap URL for parsing.

        Args:
            url: Recap page URL.

        Returns:
            A future resolving to the list of ParsedRecap for the page, or
            failing with ParseJobError, WorkerError or PoolShutdownError.
        """
        with self._lock:
            job = _Job(id=str(self._next_job_id), url=url)
            self._next_job_id += 1
            if self._closing:
                job.future.set_exception(PoolShutdownError(job_id=job.id))
                return job.future
            self._queue.append(job)
            logger.debug(
                "job_enqueued", job_id=job.id, url=url, queued=len(self._queue)
            )
            self._dispatch()
        return job.future

    def close(self) -> None:
        """Shuts the pool down. Safe to call more than once.

        Fails every queued and in-flight job with PoolShutdownError, asks each
        worker to exit and terminates those still running once the shutdown
        timeout has elapsed. Returns within shutdown_timeout + TERMINATE_GRACE
        + KILL_WAIT however many workers are stuck. No worker is spawned
        afterwards.
        """
        with self._lock:
            if self._closing:
                first_caller = False
            else:
                first_caller = True
                self._closing = True
                abandoned = list(self._queue) + list(self._inflight.values())
                self._queue.clear()
                self._inflight.clear()
                workers = list(self._workers.values())
                for worker in workers:
                    worker.jobs.clear()

        if not first_caller:
            self._closed.wait()
            return

        for job in abandoned:
            if job.future.running() or job.future.set_running_or_notify_cancel():
                job.future.set_exception(PoolShutdownError(job_id=job.id))
        if abandoned:
            logger.info("pool_jobs_abandoned", count=len(abandoned))

        for worker in workers:
            try:
                worker.conn.send({"cmd": SHUTDOWN_COMMAND})
            except (OSError, ValueError):
                pass

        self._join_all(workers, self.shutdown_timeout)

        stragglers = [w for w in workers if w.process.is_alive()]
        for worker in stragglers:
            logger.warning("worker_terminated", slot=worker.slot)
            worker.process.terminate()
        self._join_all(stragglers, TERMINATE_GRACE)

        stragglers = [w for w in stragglers if w.process.is_alive()]
        for worker in stragglers:
            logger.warning("worker_killed", slot=worker.slot)
            worker.process.kill()
        self._join_all(stragglers, KILL_WAIT)

        with self._lock:
            self._workers.clear()
            self._idle.clear()
        self._closed.set()
        logger.info("pool_closed", size=self.size)

    @staticmethod
    def _join_all(workers: list[_Worker], timeout: float) -> None:
        deadline = time.monotonic() + timeout
        for worker in workers:
            worker.process.join(max(0.0, deadline - time.monotonic()))

    def _spawn_worker(self, slot: int) -> None:
        parent_conn, child_conn = self._ctx.Pipe()
        process = self._ctx.Process(
            target=run_worker,
            args=(child_conn, self.fetcher, slot),
            name=f"recap-worker-{slot}",
            daemon=True,
        )
        process.start()
        child_conn.close()

        worker = _Worker(slot=slot, process=process, conn=parent_conn)
        self._workers[slot] = worker
        self._idle.append(worker)
        threading.Thread(
            target=self._watch,
            args=(worker,),
            name=f"recap-worker-{slot}-watch",
            daemon=True,
        ).start()
        logger.debug("worker_spawned", slot=slot, pid=process.pid)

    def _dispatch(self) -> None:
        while self._queue and self._idle:
            job = self._queue.popleft()
            if not job.future.set_running_or_notify_cancel():
                continue  # cancelled while queued

            worker = self._idle.popleft()
            worker.busy = True
            worker.jobs.add(job.id)
            self._inflight[job.id] = job
            logger.debug("job_dispatched", job_id=job.id, slot=worker.slot)
            try:
                worker.conn.send({"id": job.id, "url": job.url})
            except (OSError, ValueError):
                # The watcher thread sees the dead pipe and fails the job
                logger.warning("job_send_failed", job_id=job.id, slot=worker.slot)

    def _watch(self, worker: _Worker) -> None:
        """Reads a worker's replies until its pipe closes, then reaps it."""
        while True:
            try:
                message = worker.conn.recv()
            except (EOFError, OSError):
                break
            self._on_message(worker, message)

        worker.process.join()
        worker.conn.close()
        self._on_exit(worker, worker.process.exitcode)

    def _on_message(self, worker: _Worker, message: dict) -> None:
        job_id = message.get("id") if isinstance(message, dict) else None
        with self._lock:
            job = self._inflight.pop(job_id, None) if job_id is not None else None
            worker.jobs.discard(job_id)
            worker.busy = False
            if self._workers.get(worker.slot) is worker and not self._closing:
                self._idle.append(worker)
                self._dispatch()

        if job is None:
            return
        if "error" in message:
            job.future.set_exception(
                ParseJobError(message["error"], job_id=job.id, url=job.url)
            )
        else:
            recaps = [ParsedRecap.from_dict(r) for r in message.get("recaps", [])]
            job.future.set_result(recaps)

    def _on_exit(self, worker: _Worker, exit_code: int | None) -> None:
        with self._lock:
            failed = [
                self._inflight.pop(jid) for jid in worker.jobs if jid in self._inflight
            ]
            worker.jobs.clear()
            if self._workers.get(worker.slot) is worker:
                del self._workers[worker.slot]
            if worker in self._idle:
                self._idle.remove(worker)
            respawn = not self._closing

            if respawn:
                logger.warning(
                    "worker_exited",
                    slot=worker.slot,
                    exit_code=exit_code,
                    failed_jobs=len(failed),
                )
                self._spawn_worker(worker.slot)
                self._dispatch()

        for job in failed:
            job.future.set_exception(
                WorkerError(
                    f"Worker {worker.slot} exited with code {exit_code}",
                    slot=worker.slot,
                    exit_code=exit_code,
                )
            )
