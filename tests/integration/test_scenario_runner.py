"""
End-to-end runs of the shop flow through the runner, against an
in-memory shop.
"""

from __future__ import annotations

import time

import pytest
import requests

from shopload.config import FlowConfig
from shopload.runners import RunnerConfig, ScenarioRunner
from shopload.thresholds import parse_thresholds
from tests.fakes import EveryNth, FakeResponse, FakeShopSession

pytestmark = pytest.mark.integration


def _runner(target, load, routes=None, flow=None, thresholds=None) -> ScenarioRunner:
    config = RunnerConfig(target=target, load=load, flow=flow or FlowConfig(), quiet=True)
    if thresholds is not None:
        config.thresholds = parse_thresholds(thresholds)
    return ScenarioRunner(
        "shop-flow", config, session_factory=lambda: FakeShopSession(routes=routes),
    )


def test_healthy_shop_passes_default_thresholds(target, short_load):
    result = _runner(target, short_load()).run()

    assert result.success
    assert result.executor["completed"] == 10
    assert result.http_reqs == 40
    assert result.failed_rate == 0.0
    assert set(result.steps) == {"auth", "info", "sendCoin", "buy"}
    assert all(c["fails"] == 0 for c in result.checks.values())
    assert result.checks["token exists"]["passes"] == 10
    assert result.error_messages == []


def test_always_failing_step_breaches_error_rate(target, short_load):
    """One failing step in four is a 25% failed-request rate."""
    # Arrange
    routes = {("POST", "/api/sendCoin"): FakeResponse(500, {"errors": "internal"})}

    # Act
    result = _runner(target, short_load(), routes=routes).run()

    # Assert
    assert not result.success
    assert result.failed_rate == pytest.approx(0.25)
    assert result.steps["sendCoin"]["failed"] == 10
    assert result.checks["send status is 200"] == {"passes": 0, "fails": 10}
    assert [v["metric"] for v in result.violations] == ["http_req_failed"]


def test_occasional_failure_is_caught_by_strict_threshold(target, short_load):
    routes = {("GET", "/api/info"): EveryNth(5, FakeResponse(503, None))}

    result = _runner(target, short_load(), routes=routes).run()

    assert not result.success
    assert result.steps["info"]["failed"] == 2
    assert result.failed_rate == pytest.approx(2 / 40)


def test_one_percent_send_failures_fail_the_run(target, short_load):
    """1% failed sendCoin calls is 0.25% of all requests, far above rate<0.0001."""
    routes = {("POST", "/api/sendCoin"): EveryNth(100, FakeResponse(500, None))}
    load = short_load(arrival_rate=100, duration=1, preallocated_workers=5, max_workers=50)

    result = _runner(target, load, routes=routes).run()

    assert result.executor["completed"] == 100
    assert result.failed_rate == pytest.approx(1 / 400)
    assert not result.success
    assert result.violations[0]["metric"] == "http_req_failed"


def test_network_errors_are_summarized(target, short_load):
    routes = {("GET", "/api/buy/pen"): requests.ConnectionError("connection reset")}

    result = _runner(target, short_load(), routes=routes).run()

    assert result.http_reqs == 40
    assert result.error_messages == ["10x ConnectionError: connection reset"]
    assert not result.success


def test_auth_outage_with_abort_records_only_auth(target, short_load):
    routes = {("POST", "/api/auth"): FakeResponse(500, None)}
    flow = FlowConfig(abort_on_auth_failure=True)

    result = _runner(target, short_load(), routes=routes, flow=flow).run()

    assert result.http_reqs == 10
    assert set(result.steps) == {"auth"}
    assert result.failed_rate == 1.0


def test_lenient_thresholds_tolerate_failures(target, short_load):
    routes = {("POST", "/api/sendCoin"): FakeResponse(500, None)}
    thresholds = {"http_req_failed": ["rate<0.5"], "http_req_duration": ["p(95)<1000"]}

    result = _runner(target, short_load(), routes=routes, thresholds=thresholds).run()

    assert result.success
    assert [t["passed"] for t in result.thresholds] == [True, True]


def test_dropped_iterations_are_reported(target, short_load):
    def slow(_kwargs):
        time.sleep(0.2)
        return FakeResponse(200, {"token": "t"})

    load = short_load(arrival_rate=40, preallocated_workers=1, max_workers=1)
    result = _runner(target, load, routes={("POST", "/api/auth"): slow}).run()

    assert result.dropped > 0
    assert any("iterations dropped" in m for m in result.error_messages)
    assert result.executor["late_outcomes"] == 0


def test_unknown_scenario_is_rejected(target, short_load):
    with pytest.raises(ValueError, match="Unknown scenario"):
        ScenarioRunner("checkout", RunnerConfig(target=target, load=short_load()))
