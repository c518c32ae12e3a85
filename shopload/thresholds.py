"""
Pass/fail thresholds evaluated against aggregated run metrics.

A threshold pairs a metric name with a predicate such as ``rate<0.0001``,
``med<50`` or ``p(95)<200``.
"""

import operator
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .stats import METRIC_TYPES, MetricSummary

_PREDICATE = re.compile(
    r"^\s*(?P<agg>rate|count|avg|min|med|max|p\(\d+(?:\.\d+)?\))\s*"
    r"(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<value>-?\d+(?:\.\d+)?(?:[eE]-?\d+)?)\s*$"
)

_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_AGGREGATIONS = {
    "rate": ("rate",),
    "counter": ("count", "rate"),
    "trend": ("avg", "min", "med", "max"),
}


@dataclass(frozen=True)
class Threshold:
    """A single predicate on an aggregated metric."""
    metric: str
    aggregation: str
    op: str
    limit: float

    @property
    def predicate(self) -> str:
        return f"{self.aggregation}{self.op}{self.limit:g}"

    def __str__(self) -> str:
        return f"{self.metric}: {self.predicate}"


@dataclass
class ThresholdResult:
    threshold: Threshold
    observed: Optional[float]
    passed: bool

    def to_dict(self) -> Dict:
        return {
            "metric": self.threshold.metric,
            "predicate": self.threshold.predicate,
            "observed": self.observed,
            "passed": self.passed,
        }


def parse_threshold(metric: str, predicate: str) -> Threshold:
    """
    Parse one threshold.

    Raises:
        ValueError: unknown metric, malformed predicate, or an aggregation
            the metric type does not support.
    """
    kind = METRIC_TYPES.get(metric)
    if kind is None:
        known = ", ".join(sorted(METRIC_TYPES))
        raise ValueError(f"Unknown threshold metric '{metric}' (known: {known})")

    match = _PREDICATE.match(predicate)
    if not match:
        raise ValueError(f"Malformed threshold predicate for {metric}: '{predicate}'")

    agg = match.group("agg")
    allowed = _AGGREGATIONS[kind]
    if not (agg in allowed or (kind == "trend" and agg.startswith("p("))):
        raise ValueError(
            f"Aggregation '{agg}' is not valid for {kind} metric {metric} "
            f"(use {', '.join(allowed)}{', p(N)' if kind == 'trend' else ''})"
        )

    if agg.startswith("p("):
        p = float(agg[2:-1])
        if not 0 <= p <= 100:
            raise ValueError(f"Percentile out of range in '{predicate}'")

    return Threshold(metric=metric, aggregation=agg, op=match.group("op"),
                     limit=float(match.group("value")))


def parse_thresholds(mapping: Dict[str, Iterable[str]]) -> List[Threshold]:
    """Parse a ``{metric: [predicate, ...]}`` mapping."""
    thresholds = []
    for metric, predicates in mapping.items():
        for predicate in predicates:
            thresholds.append(parse_threshold(metric, predicate))
    return thresholds


def parse_threshold_option(text: str) -> Threshold:
    """Parse the CLI form ``metric=predicate``."""
    metric, sep, predicate = text.partition("=")
    if not sep:
        raise ValueError(f"Threshold must look like METRIC=PREDICATE, got '{text}'")
    return parse_threshold(metric.strip(), predicate.strip())


def evaluate(threshold: Threshold, metrics: MetricSummary) -> ThresholdResult:
    """A threshold on a metric with no samples fails."""
    observed = metrics.value(threshold.metric, threshold.aggregation)
    if observed is None:
        return ThresholdResult(threshold=threshold, observed=None, passed=False)
    passed = _OPERATORS[threshold.op](observed, threshold.limit)
    return ThresholdResult(threshold=threshold, observed=observed, passed=passed)


def evaluate_all(thresholds: Iterable[Threshold], metrics: MetricSummary) -> List[ThresholdResult]:
    return [evaluate(t, metrics) for t in thresholds]
