"""
Constant-arrival-rate executor.

Starts iterations at a fixed rate regardless of how long earlier iterations
take. Iterations run on a pool of worker threads ("virtual users") that
starts at ``preallocated_workers`` and grows on demand up to
``max_workers``. When the pool is saturated a scheduled iteration is
dropped instead of delaying the schedule.

The k-th iteration (0-based) is due at ``start + k * time_unit / arrival_rate``
and only starts strictly before ``start + duration``, so a full run starts
``floor(arrival_rate * duration / time_unit)`` iterations.

On stop the executor drains: no new iterations are scheduled, in-flight
ones get up to ``graceful_stop`` seconds to finish, and anything still
running after that is reported as interrupted. ``stop()`` and Ctrl-C
during the schedule end it early and drain the same way.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests

from .client import create_session
from .config import LoadConfig

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class IterationContext:
    """Passed to every iteration function call."""
    worker_id: int
    iteration: int
    http: requests.Session


@dataclass
class TimelineEntry:
    """A single point in the executor timeline."""
    elapsed_secs: float
    started: int
    completed: int
    dropped: int
    in_flight: int
    workers: int

    def to_dict(self):
        return {
            "elapsed_secs": self.elapsed_secs,
            "started": self.started,
            "completed": self.completed,
            "dropped": self.dropped,
            "in_flight": self.in_flight,
            "workers": self.workers,
        }


@dataclass
class ExecutorStats:
    """Counters for one executor run."""
    scheduled: int = 0
    started: int = 0
    completed: int = 0
    dropped: int = 0
    errored: int = 0
    interrupted: int = 0
    peak_workers: int = 0
    peak_in_flight: int = 0
    elapsed_secs: float = 0.0
    stopped_early: bool = False
    iteration_durations_ms: List[float] = field(default_factory=list)
    timeline: List[TimelineEntry] = field(default_factory=list)

    def to_dict(self):
        return {
            "scheduled": self.scheduled,
            "started": self.started,
            "completed": self.completed,
            "dropped": self.dropped,
            "errored": self.errored,
            "interrupted": self.interrupted,
            "peak_workers": self.peak_workers,
            "peak_in_flight": self.peak_in_flight,
            "elapsed_secs": self.elapsed_secs,
            "stopped_early": self.stopped_early,
        }


IterationFn = Callable[[IterationContext], None]


class ConstantArrivalRateExecutor:
    """Schedules ``arrival_rate`` iteration starts per ``time_unit``."""

    def __init__(
        self,
        load: LoadConfig,
        session_factory: Callable[[], requests.Session] = create_session,
        on_progress: Optional[Callable[[TimelineEntry], None]] = None,
        report_interval: float = 5.0,
    ):
        self.load = load
        self._session_factory = session_factory
        self._on_progress = on_progress
        self._report_interval = report_interval

        self._fn: Optional[IterationFn] = None
        self._jobs: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._stop_flag = threading.Event()
        self._workers: List[threading.Thread] = []
        self._idle = 0
        self._in_flight = 0
        self._finished = False
        self._start = 0.0
        self._next_report = 0.0
        self.stats = ExecutorStats()

    def run(self, fn: IterationFn) -> ExecutorStats:
        """Run the schedule to completion and return a snapshot of the counters."""
        if self._fn is not None:
            raise RuntimeError("executor instances are single-use")
        self._fn = fn
        self._start = time.monotonic()

        for _ in range(self.load.preallocated_workers):
            self._spawn(None)
        logger.debug("Preallocated %d workers", self.load.preallocated_workers)

        deadline = self._start + self.load.duration
        self._next_report = self._start + self._report_interval

        try:
            for k in range(self.load.expected_iterations):
                due = self._start + k * self.load.interval
                if due >= deadline or not self._wait_until(due):
                    break
                self._dispatch(k + 1)
            self._wait_until(deadline)
        except KeyboardInterrupt:
            logger.warning("Interrupted, draining in-flight iterations")
            self.stop()
        return self._drain()

    def stop(self):
        """Signal the scheduler to stop starting new iterations."""
        self._stop_flag.set()

    def should_stop(self) -> bool:
        return self._stop_flag.is_set()

    def _wait_until(self, due: float) -> bool:
        """Sleep until ``due``, emitting progress on the way. False if stopped."""
        while True:
            now = time.monotonic()
            if now >= self._next_report:
                self._record_timeline_point(now)
                self._next_report += self._report_interval
            if now >= due:
                return not self.should_stop()
            wake = min(due, self._next_report)
            if self._stop_flag.wait(timeout=max(wake - now, 0.0)):
                return False

    def _dispatch(self, iteration: int):
        spawn = False
        with self._lock:
            self.stats.scheduled += 1
            if self._idle > 0:
                self._idle -= 1
                self._in_flight += 1
                self._jobs.put(iteration)
            elif len(self._workers) < self.load.max_workers:
                self._in_flight += 1
                spawn = True
            else:
                self.stats.dropped += 1
                if self.stats.dropped == 1:
                    logger.warning(
                        "Worker pool exhausted at %d workers; dropping iterations",
                        self.load.max_workers,
                    )
                return
            self.stats.peak_in_flight = max(self.stats.peak_in_flight, self._in_flight)

        if spawn:
            self._spawn(iteration)

    def _spawn(self, first_job: Optional[int]):
        with self._lock:
            worker_id = len(self._workers) + 1
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker_id, first_job),
                name=f"shopload-worker-{worker_id}",
                daemon=True,
            )
            self._workers.append(thread)
            if first_job is None:
                self._idle += 1
            self.stats.peak_workers = len(self._workers)
        try:
            thread.start()
        except RuntimeError:
            logger.exception("Could not start worker %d", worker_id)
            with self._lock:
                self._workers.remove(thread)
                if first_job is None:
                    self._idle -= 1
                else:
                    self._in_flight -= 1
                    self.stats.dropped += 1
            return
        if first_job is not None:
            logger.debug("Grew worker pool to %d", worker_id)

    def _worker_loop(self, worker_id: int, first_job: Optional[int]):
        http = self._session_factory()
        job = first_job
        try:
            while True:
                if job is None:
                    job = self._jobs.get()
                    if job is _STOP:
                        return
                self._run_iteration(worker_id, job, http)
                job = None
                with self._lock:
                    self._in_flight -= 1
                    self._idle += 1
        finally:
            http.close()

    def _run_iteration(self, worker_id: int, iteration: int, http: requests.Session):
        ctx = IterationContext(worker_id=worker_id, iteration=iteration, http=http)
        with self._lock:
            if not self._finished:
                self.stats.started += 1

        began = time.perf_counter()
        errored = False
        try:
            self._fn(ctx)
        except Exception:
            errored = True
            logger.exception("Iteration %d on worker %d raised", iteration, worker_id)
        duration_ms = (time.perf_counter() - began) * 1000

        with self._lock:
            if self._finished:
                return
            self.stats.completed += 1
            self.stats.iteration_durations_ms.append(duration_ms)
            if errored:
                self.stats.errored += 1

    def _record_timeline_point(self, now: float):
        with self._lock:
            entry = TimelineEntry(
                elapsed_secs=now - self._start,
                started=self.stats.started,
                completed=self.stats.completed,
                dropped=self.stats.dropped,
                in_flight=self._in_flight,
                workers=len(self._workers),
            )
            self.stats.timeline.append(entry)
        if self._on_progress is not None:
            self._on_progress(entry)

    def _drain(self) -> ExecutorStats:
        with self._lock:
            workers = list(self._workers)
        for _ in workers:
            self._jobs.put(_STOP)

        grace_deadline = time.monotonic() + self.load.graceful_stop
        for t in workers:
            t.join(timeout=max(grace_deadline - time.monotonic(), 0.0))

        with self._lock:
            self._finished = True
            self.stats.interrupted = self._in_flight
            self.stats.elapsed_secs = time.monotonic() - self._start
            snapshot = ExecutorStats(
                scheduled=self.stats.scheduled,
                started=self.stats.started,
                completed=self.stats.completed,
                dropped=self.stats.dropped,
                errored=self.stats.errored,
                interrupted=self.stats.interrupted,
                peak_workers=self.stats.peak_workers,
                peak_in_flight=self.stats.peak_in_flight,
                elapsed_secs=self.stats.elapsed_secs,
                stopped_early=self.should_stop(),
                iteration_durations_ms=list(self.stats.iteration_durations_ms),
                timeline=list(self.stats.timeline),
            )
        if snapshot.interrupted:
            logger.warning(
                "%d iterations still running after %.1fs graceful stop",
                snapshot.interrupted, self.load.graceful_stop,
            )
        return snapshot
