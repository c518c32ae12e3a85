"""
Unit tests for threshold parsing and evaluation.
"""

from __future__ import annotations

import pytest

from shopload.stats import RequestOutcome, aggregate
from shopload.thresholds import (
    evaluate,
    evaluate_all,
    parse_threshold,
    parse_threshold_option,
    parse_thresholds,
)

pytestmark = pytest.mark.unit


def _outcome(duration_ms: float, failed: bool = False) -> RequestOutcome:
    return RequestOutcome(
        name="info",
        status_code=500 if failed else 200,
        duration_ms=duration_ms,
        checks_passed=frozenset() if failed else frozenset({"info status is 200"}),
        checks_failed=frozenset({"info status is 200"}) if failed else frozenset(),
    )


@pytest.mark.parametrize(
    "metric, predicate, aggregation, op, limit",
    [
        ("http_req_failed", "rate<0.0001", "rate", "<", 0.0001),
        ("http_req_duration", "med<50", "med", "<", 50),
        ("http_req_duration", "p(95) <= 200", "p(95)", "<=", 200),
        ("http_req_duration", "p(99.9)<1000", "p(99.9)", "<", 1000),
        ("http_reqs", "count>=100", "count", ">=", 100),
        ("checks", "rate>0.99", "rate", ">", 0.99),
        ("dropped_iterations", "count==0", "count", "==", 0),
        ("iteration_duration", "avg!=0", "avg", "!=", 0),
        ("http_req_failed", "rate<1e-4", "rate", "<", 0.0001),
    ],
)
def test_parse_threshold(metric, predicate, aggregation, op, limit):
    t = parse_threshold(metric, predicate)

    assert t.metric == metric
    assert t.aggregation == aggregation
    assert t.op == op
    assert t.limit == pytest.approx(limit)


@pytest.mark.parametrize(
    "metric, predicate, message",
    [
        ("http_req_latency", "med<50", "Unknown threshold metric"),
        ("http_req_duration", "median<50", "Malformed"),
        ("http_req_duration", "med<", "Malformed"),
        ("http_req_duration", "med=>50", "Malformed"),
        ("http_req_failed", "med<50", "not valid for rate"),
        ("http_req_duration", "rate<0.1", "not valid for trend"),
        ("http_reqs", "med<5", "not valid for counter"),
        ("http_req_duration", "p(150)<5", "out of range"),
    ],
)
def test_parse_threshold_rejects_invalid(metric, predicate, message):
    with pytest.raises(ValueError, match=message):
        parse_threshold(metric, predicate)


def test_parse_thresholds_flattens_mapping():
    thresholds = parse_thresholds({
        "http_req_failed": ["rate<0.0001"],
        "http_req_duration": ["med<50", "p(95)<200"],
    })

    assert [str(t) for t in thresholds] == [
        "http_req_failed: rate<0.0001",
        "http_req_duration: med<50",
        "http_req_duration: p(95)<200",
    ]


def test_parse_threshold_option():
    t = parse_threshold_option("http_req_duration = p(95)<250")

    assert (t.metric, t.predicate) == ("http_req_duration", "p(95)<250")


def test_parse_threshold_option_requires_equals():
    with pytest.raises(ValueError, match="METRIC=PREDICATE"):
        parse_threshold_option("http_req_duration p(95)<250")


def test_error_rate_threshold_passes_with_no_failures():
    metrics = aggregate([_outcome(10) for _ in range(100)], duration_secs=1)

    result = evaluate(parse_threshold("http_req_failed", "rate<0.0001"), metrics)

    assert result.passed
    assert result.observed == 0.0


def test_error_rate_threshold_fails_on_one_in_a_hundred():
    outcomes = [_outcome(10) for _ in range(99)] + [_outcome(10, failed=True)]
    metrics = aggregate(outcomes, duration_secs=1)

    result = evaluate(parse_threshold("http_req_failed", "rate<0.0001"), metrics)

    assert not result.passed
    assert result.observed == pytest.approx(0.01)


def test_median_latency_threshold():
    metrics = aggregate([_outcome(ms) for ms in (10, 20, 30, 200, 400)], duration_secs=1)

    below, above = evaluate_all(
        [parse_threshold("http_req_duration", "med<50"),
         parse_threshold("http_req_duration", "med<20")],
        metrics,
    )

    assert below.passed and below.observed == 30
    assert not above.passed


def test_threshold_on_empty_trend_fails():
    metrics = aggregate([], duration_secs=1)

    result = evaluate(parse_threshold("http_req_duration", "med<50"), metrics)

    assert result.observed is None
    assert not result.passed


def test_counter_thresholds_use_count_and_rate():
    metrics = aggregate([_outcome(5)] * 30, duration_secs=10, dropped_iterations=3)

    assert evaluate(parse_threshold("http_reqs", "rate==3"), metrics).passed
    assert not evaluate(parse_threshold("dropped_iterations", "count==0"), metrics).passed


def test_result_to_dict():
    metrics = aggregate([_outcome(5)], duration_secs=1)

    data = evaluate(parse_threshold("http_req_duration", "max<=5"), metrics).to_dict()

    assert data == {
        "metric": "http_req_duration",
        "predicate": "max<=5",
        "observed": 5,
        "passed": True,
    }
