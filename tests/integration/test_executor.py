"""
Integration tests for the constant-arrival-rate executor.

These run real worker threads against short schedules, so timing
assertions leave generous slack.
"""

from __future__ import annotations

import threading
import time

import pytest

from shopload.executor import ConstantArrivalRateExecutor
from tests.fakes import FakeShopSession

pytestmark = pytest.mark.integration


def _executor(load, **kwargs) -> ConstantArrivalRateExecutor:
    kwargs.setdefault("session_factory", FakeShopSession)
    return ConstantArrivalRateExecutor(load, **kwargs)


def test_starts_exactly_rate_times_duration_iterations(short_load):
    """50/s for 1s starts 50 iterations, no more and no fewer."""
    # Arrange
    seen = []
    lock = threading.Lock()

    def fn(ctx):
        with lock:
            seen.append(ctx.iteration)

    executor = _executor(short_load(arrival_rate=50, duration=1, preallocated_workers=5))

    # Act
    stats = executor.run(fn)

    # Assert
    assert stats.scheduled == 50
    assert stats.started == 50
    assert stats.completed == 50
    assert stats.dropped == 0
    assert stats.interrupted == 0
    assert sorted(seen) == list(range(1, 51))
    assert len(stats.iteration_durations_ms) == 50


def test_schedule_does_not_wait_for_slow_iterations(short_load):
    """Starts keep their pace even though each iteration outlasts the interval."""
    executor = _executor(short_load(arrival_rate=20, duration=0.5, max_workers=20))
    began = time.monotonic()

    stats = executor.run(lambda ctx: time.sleep(0.3))

    assert stats.started == 10
    assert stats.dropped == 0
    assert stats.peak_in_flight > 2
    # 0.5s schedule plus one 0.3s iteration, not 10 * 0.3s serialized
    assert time.monotonic() - began < 2.0


def test_saturated_pool_drops_instead_of_blocking(short_load):
    # Arrange
    load = short_load(arrival_rate=40, duration=0.5, preallocated_workers=2, max_workers=2)
    executor = _executor(load)
    active = 0
    peak = 0
    lock = threading.Lock()

    def fn(ctx):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.2)
        with lock:
            active -= 1

    # Act
    stats = executor.run(fn)

    # Assert
    assert peak <= 2
    assert stats.peak_workers == 2
    assert stats.peak_in_flight <= 2
    assert stats.dropped > 0
    assert stats.scheduled == 20
    assert stats.started + stats.dropped == stats.scheduled


def test_pool_grows_on_demand_up_to_max(short_load):
    load = short_load(arrival_rate=40, duration=0.5, preallocated_workers=1, max_workers=6)
    executor = _executor(load)

    stats = executor.run(lambda ctx: time.sleep(0.3))

    assert 1 < stats.peak_workers <= 6
    assert stats.dropped > 0


def test_worker_ids_stay_within_pool(short_load):
    ids = set()
    lock = threading.Lock()

    def fn(ctx):
        with lock:
            ids.add(ctx.worker_id)
        time.sleep(0.05)

    load = short_load(arrival_rate=40, duration=0.5, preallocated_workers=2, max_workers=4)
    stats = _executor(load).run(fn)

    assert ids
    assert ids <= set(range(1, stats.peak_workers + 1))


def test_raising_iteration_is_counted_and_worker_survives(short_load):
    def fn(ctx):
        if ctx.iteration % 2 == 0:
            raise RuntimeError("boom")

    load = short_load(preallocated_workers=1, max_workers=1)
    stats = _executor(load).run(fn)

    assert stats.completed == 10
    assert stats.errored == 5
    assert stats.dropped == 0


def test_each_worker_gets_its_own_session_and_closes_it(short_load):
    sessions = []
    lock = threading.Lock()

    def factory():
        session = FakeShopSession()
        with lock:
            sessions.append(session)
        return session

    load = short_load(preallocated_workers=3, max_workers=3)
    stats = _executor(load, session_factory=factory).run(lambda ctx: None)

    assert len(sessions) == stats.peak_workers == 3
    assert all(s.closed for s in sessions)


def test_graceful_stop_reports_interrupted_iterations(short_load):
    release = threading.Event()

    def fn(ctx):
        release.wait(5)

    load = short_load(arrival_rate=10, duration=0.3, graceful_stop=0.2)
    try:
        stats = _executor(load).run(fn)
    finally:
        release.set()

    assert stats.started == 3
    assert stats.interrupted == 3
    assert stats.completed == 0
    assert stats.elapsed_secs < 2.0


def test_iterations_finishing_within_grace_are_completed(short_load):
    load = short_load(arrival_rate=10, duration=0.3, graceful_stop=2)

    stats = _executor(load).run(lambda ctx: time.sleep(0.4))

    assert stats.completed == 3
    assert stats.interrupted == 0


def test_stop_ends_schedule_early(short_load):
    load = short_load(arrival_rate=20, duration=30)
    executor = _executor(load)
    timer = threading.Timer(0.3, executor.stop)
    timer.start()
    began = time.monotonic()

    stats = executor.run(lambda ctx: None)

    timer.join()
    assert executor.should_stop()
    assert time.monotonic() - began < 5
    assert 0 < stats.started < 600


def test_timeline_records_progress_points(short_load):
    entries = []
    load = short_load(arrival_rate=20, duration=0.5)

    stats = _executor(load, on_progress=entries.append, report_interval=0.1).run(lambda ctx: None)

    assert len(stats.timeline) >= 3
    assert entries == stats.timeline
    elapsed = [e.elapsed_secs for e in stats.timeline]
    assert elapsed == sorted(elapsed)
    assert stats.timeline[-1].started <= 10


def test_executor_is_single_use(short_load):
    executor = _executor(short_load(duration=0.1))
    executor.run(lambda ctx: None)

    with pytest.raises(RuntimeError):
        executor.run(lambda ctx: None)


def test_keyboard_interrupt_drains_and_reports_partial_run(short_load):
    """Ctrl-C during the schedule stops new starts but lets in-flight work finish."""
    # Arrange
    def interrupt(entry):
        raise KeyboardInterrupt

    load = short_load(arrival_rate=20, duration=30)
    executor = _executor(load, on_progress=interrupt, report_interval=0.3)

    # Act
    stats = executor.run(lambda ctx: time.sleep(0.05))

    # Assert
    assert stats.stopped_early
    assert 0 < stats.started < 600
    assert stats.completed == stats.started
    assert stats.interrupted == 0
    assert stats.to_dict()["stopped_early"] is True


def test_full_schedule_is_not_stopped_early(short_load):
    stats = _executor(short_load()).run(lambda ctx: None)

    assert not stats.stopped_early
