"""
Request outcome collection and metric aggregation.

Every HTTP request made by a scenario becomes one ``RequestOutcome`` appended
to the run's ``OutcomeLog``. At the end of the run the log is sealed and
folded into the metric summary that thresholds are evaluated against.
"""

import logging
import statistics
import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestOutcome:
    """Result of a single request and the checks evaluated against it."""
    name: str
    status_code: int
    duration_ms: float
    checks_passed: FrozenSet[str] = frozenset()
    checks_failed: FrozenSet[str] = frozenset()
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return bool(self.checks_failed)


@dataclass
class OutcomeLog:
    """Thread-safe, append-only log of request outcomes for one run."""
    outcomes: List[RequestOutcome] = field(default_factory=list)
    late: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)
    sealed: bool = False

    def append(self, outcome: RequestOutcome) -> bool:
        with self.lock:
            if self.sealed:
                self.late += 1
                return False
            self.outcomes.append(outcome)
            return True

    def seal(self) -> List[RequestOutcome]:
        """Stop accepting outcomes and return a snapshot of the log."""
        with self.lock:
            self.sealed = True
            if self.late:
                logger.debug("Outcome log sealed with %d late appends", self.late)
            return list(self.outcomes)

    def __len__(self) -> int:
        with self.lock:
            return len(self.outcomes)


def percentile(values: List[float], p: float) -> float:
    """Linear-interpolated percentile of ``values`` (0 when empty)."""
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    rank = (len(ordered) - 1) * p / 100
    lo = int(rank)
    hi = min(lo + 1, len(ordered) - 1)
    return ordered[lo] + (ordered[hi] - ordered[lo]) * (rank - lo)


@dataclass
class Trend:
    """Distribution of millisecond samples."""
    values: List[float] = field(default_factory=list)

    def aggregate(self, name: str) -> Optional[float]:
        """
        Return a named aggregation: avg, min, med, max or p(N).

        None when there are no samples.
        """
        if not self.values:
            return None
        if name == "avg":
            return statistics.fmean(self.values)
        if name == "min":
            return min(self.values)
        if name == "max":
            return max(self.values)
        if name == "med":
            return statistics.median(self.values)
        if name.startswith("p(") and name.endswith(")"):
            return percentile(self.values, float(name[2:-1]))
        raise ValueError(f"Unknown trend aggregation: {name}")

    def summary(self) -> Dict[str, float]:
        if not self.values:
            return {"count": 0, "avg": 0.0, "min": 0.0, "med": 0.0, "max": 0.0,
                    "p(90)": 0.0, "p(95)": 0.0, "p(99)": 0.0}
        return {
            "count": len(self.values),
            "avg": statistics.fmean(self.values),
            "min": min(self.values),
            "med": statistics.median(self.values),
            "max": max(self.values),
            "p(90)": percentile(self.values, 90),
            "p(95)": percentile(self.values, 95),
            "p(99)": percentile(self.values, 99),
        }


@dataclass
class CheckCount:
    passes: int = 0
    fails: int = 0


@dataclass
class StepStats:
    """Per-step request breakdown."""
    count: int = 0
    failed: int = 0
    durations: Trend = field(default_factory=Trend)

    def to_dict(self) -> Dict:
        return {
            "count": self.count,
            "failed": self.failed,
            "med_ms": self.durations.aggregate("med") or 0.0,
            "p95_ms": self.durations.aggregate("p(95)") or 0.0,
        }


# Metric types drive which aggregations a threshold may use.
METRIC_TYPES = {
    "http_req_failed": "rate",
    "http_req_duration": "trend",
    "http_reqs": "counter",
    "checks": "rate",
    "iterations": "counter",
    "iteration_duration": "trend",
    "dropped_iterations": "counter",
}


@dataclass
class MetricSummary:
    """Aggregated metrics for a finished run."""
    duration_secs: float
    http_reqs: int = 0
    http_req_failed: int = 0
    http_req_duration: Trend = field(default_factory=Trend)
    checks: Dict[str, CheckCount] = field(default_factory=dict)
    steps: Dict[str, StepStats] = field(default_factory=dict)
    iterations: int = 0
    iteration_duration: Trend = field(default_factory=Trend)
    dropped_iterations: int = 0

    @property
    def http_req_failed_rate(self) -> float:
        return self.http_req_failed / self.http_reqs if self.http_reqs else 0.0

    @property
    def checks_rate(self) -> float:
        passes = sum(c.passes for c in self.checks.values())
        total = passes + sum(c.fails for c in self.checks.values())
        return passes / total if total else 0.0

    def value(self, metric: str, aggregation: str) -> Optional[float]:
        """
        Look up ``aggregation`` of ``metric``.

        Returns None when the metric has no samples to aggregate.
        """
        kind = METRIC_TYPES.get(metric)
        if kind is None:
            raise ValueError(f"Unknown metric: {metric}")

        if kind == "trend":
            return getattr(self, metric).aggregate(aggregation)

        if kind == "rate":
            if aggregation != "rate":
                raise ValueError(f"{metric} only supports 'rate'")
            if metric == "http_req_failed":
                return self.http_req_failed_rate if self.http_reqs else None
            has_checks = any(c.passes or c.fails for c in self.checks.values())
            return self.checks_rate if has_checks else None

        count = getattr(self, metric)
        if aggregation == "count":
            return float(count)
        if aggregation == "rate":
            return count / self.duration_secs if self.duration_secs > 0 else 0.0
        raise ValueError(f"{metric} only supports 'count' and 'rate'")

    def to_dict(self) -> Dict:
        duration = self.duration_secs if self.duration_secs > 0 else 0.0

        def per_sec(n: int) -> float:
            return n / duration if duration else 0.0

        return {
            "http_reqs": {"count": self.http_reqs, "rate": per_sec(self.http_reqs)},
            "http_req_failed": {
                "rate": self.http_req_failed_rate,
                "passes": self.http_req_failed,
                "fails": self.http_reqs - self.http_req_failed,
            },
            "http_req_duration": self.http_req_duration.summary(),
            "checks": {"rate": self.checks_rate},
            "iterations": {"count": self.iterations, "rate": per_sec(self.iterations)},
            "iteration_duration": self.iteration_duration.summary(),
            "dropped_iterations": {
                "count": self.dropped_iterations,
                "rate": per_sec(self.dropped_iterations),
            },
        }


def aggregate(
    outcomes: Iterable[RequestOutcome],
    duration_secs: float,
    iteration_durations_ms: Iterable[float] = (),
    dropped_iterations: int = 0,
) -> MetricSummary:
    """Fold outcomes and executor counters into a MetricSummary."""
    summary = MetricSummary(duration_secs=duration_secs, dropped_iterations=dropped_iterations)

    for outcome in outcomes:
        summary.http_reqs += 1
        summary.http_req_duration.values.append(outcome.duration_ms)
        if outcome.failed:
            summary.http_req_failed += 1

        step = summary.steps.setdefault(outcome.name, StepStats())
        step.count += 1
        step.durations.values.append(outcome.duration_ms)
        if outcome.failed:
            step.failed += 1

        for check in outcome.checks_passed:
            summary.checks.setdefault(check, CheckCount()).passes += 1
        for check in outcome.checks_failed:
            summary.checks.setdefault(check, CheckCount()).fails += 1

    summary.iteration_duration.values.extend(iteration_durations_ms)
    summary.iterations = len(summary.iteration_duration.values)
    return summary
