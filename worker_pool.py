"""
PoWERC20 worker pool - races N search workers for one round

The first message on the outcome queue decides the round: a found nonce or a
worker's error. Everything else is then stopped and drained.
"""

import logging
import multiprocessing
import queue
import secrets
import signal
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

from hash_telemetry import HashRateAggregator
from miner_errors import (
    ConfigurationError, MinerError, RandomnessError, SearchCancelled, WorkerCrashed,
)
from pow_hash import MiningProblem
from search_worker import CRASH, ERROR, FOUND, REPORT_EVERY, search_worker

logger = logging.getLogger(__name__)

BACKENDS = ('process', 'thread')
POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class Found:
    nonce: int
    worker_id: Optional[int] = None

    ok = True


@dataclass(frozen=True)
class Failed:
    error: MinerError
    worker_id: Optional[int] = None

    ok = False


SearchResult = Union[Found, Failed]


def _process_worker(*args):
    # Ctrl-C belongs to the coordinator, which cancels the whole pool
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    # terminate() must still work if the parent installed its own SIGTERM handler
    signal.signal(signal.SIGTERM, signal.SIG_DFL)
    search_worker(*args)


class WorkerPool:
    """
    Fixed pool of search workers for a single round.

    backend='process' runs one multiprocessing.Process per worker,
    backend='thread' one threading.Thread. cancel() may be called from any
    thread to end the round early.
    """

    def __init__(self, worker_count, backend='process', report_interval=1.0, on_report=None,
                 report_every=REPORT_EVERY, entropy=secrets.token_bytes, join_timeout=5.0):
        if isinstance(worker_count, bool) or not isinstance(worker_count, int) or worker_count < 1:
            raise ConfigurationError(f"worker count must be at least 1, got {worker_count!r}")
        if backend not in BACKENDS:
            raise ConfigurationError(f"unknown backend {backend!r}, expected one of {BACKENDS}")
        if report_every < 1:
            raise ConfigurationError(f"report_every must be at least 1, got {report_every}")

        self.worker_count = worker_count
        self.backend = backend
        self.report_every = report_every
        self.entropy = entropy
        self.join_timeout = join_timeout

        if backend == 'process':
            self.stop_event = multiprocessing.Event()
            self.outcome_queue = multiprocessing.Queue()
            self.hash_intake = multiprocessing.Queue()
        else:
            self.stop_event = threading.Event()
            self.outcome_queue = queue.Queue()
            self.hash_intake = queue.Queue()

        self.telemetry = HashRateAggregator(self.hash_intake, interval=report_interval,
                                            on_report=on_report)
        self.workers = []
        self.running = False
        self._started = False

    def cancel(self):
        """Signal every worker to stop, safe to call more than once"""
        self.stop_event.set()

    def _spawn(self, worker_id, problem):
        args = (worker_id, problem, self.stop_event, self.outcome_queue, self.hash_intake,
                self.report_every, self.entropy)
        name = f"search-worker-{worker_id}"
        if self.backend == 'process':
            worker = multiprocessing.Process(target=_process_worker, args=args, name=name, daemon=True)
        else:
            worker = threading.Thread(target=search_worker, args=args, name=name, daemon=True)
        worker.start()
        return worker

    def run(self, problem: MiningProblem) -> SearchResult:
        """Search until the first outcome, then stop and drain all workers"""
        if self._started:
            raise RuntimeError("a WorkerPool runs exactly one round")
        self._started = True
        self.running = True

        self.telemetry.start()
        start_time = time.time()
        try:
            for i in range(self.worker_count):
                self.workers.append(self._spawn(i, problem))
            logger.debug(f"Started {self.worker_count} {self.backend} workers")

            try:
                result = self._await_outcome()
            except KeyboardInterrupt:
                logger.warning("Interrupted, stopping workers...")
                result = Failed(SearchCancelled("interrupted by user"))
        finally:
            self.cancel()
            self._drain()
            self.telemetry.stop()
            self._close_queues()
            self.running = False

        elapsed = time.time() - start_time
        if result.ok:
            logger.debug(f"Worker {result.worker_id} found nonce after {elapsed:.1f}s")
        else:
            logger.debug(f"Round failed after {elapsed:.1f}s: {result.error}")
        return result

    def _await_outcome(self):
        while True:
            try:
                kind, worker_id, value = self.outcome_queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if self.stop_event.is_set():
                    return Failed(SearchCancelled("search cancelled"))
                dead = [w for w in self.workers if not w.is_alive()]
                if dead:
                    # Last look, a worker may have reported right before exiting
                    try:
                        kind, worker_id, value = self.outcome_queue.get(timeout=POLL_INTERVAL)
                    except queue.Empty:
                        return Failed(WorkerCrashed(f"{dead[0].name} exited without a result"))
                else:
                    continue

            if kind == FOUND:
                return Found(nonce=value, worker_id=worker_id)
            if kind == ERROR:
                return Failed(RandomnessError(value), worker_id=worker_id)
            if kind == CRASH:
                return Failed(WorkerCrashed(f"worker {worker_id} crashed: {value}"), worker_id=worker_id)
            logger.warning(f"Ignoring unexpected message from worker {worker_id}: {kind!r}")

    def _drain(self):
        """Wait for workers to exit, discarding any late outcomes"""
        deadline = time.monotonic() + self.join_timeout
        for worker in self.workers:
            while worker.is_alive() and time.monotonic() < deadline:
                worker.join(timeout=POLL_INTERVAL)
                self._discard_outcomes()
            if worker.is_alive():
                if self.backend == 'process':
                    logger.warning(f"{worker.name} did not stop in time, terminating")
                    worker.terminate()
                    worker.join(timeout=1.0)
                else:
                    logger.warning(f"{worker.name} did not stop in time")
        self._discard_outcomes()

    def _discard_outcomes(self):
        while True:
            try:
                kind, worker_id, _ = self.outcome_queue.get_nowait()
            except queue.Empty:
                return
            logger.debug(f"Discarding late {kind} from worker {worker_id}")

    def _close_queues(self):
        if self.backend != 'process':
            return
        for q in (self.outcome_queue, self.hash_intake):
            q.close()
            q.join_thread()


def run_search(worker_count, challenge, claimant, difficulty, **options) -> SearchResult:
    """Build the problem, then race worker_count workers on it"""
    problem = MiningProblem.create(challenge, claimant, difficulty)
    return WorkerPool(worker_count, **options).run(problem)
