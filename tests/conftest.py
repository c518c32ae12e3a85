"""
Shared fixtures for the shop-load test suite.
"""

from __future__ import annotations

import pytest

from shopload.config import FlowConfig, LoadConfig, TargetConfig
from shopload.stats import OutcomeLog
from tests.fakes import FakeShopSession


@pytest.fixture
def target() -> TargetConfig:
    return TargetConfig(url="http://shop.test/", request_timeout=2)


@pytest.fixture
def flow() -> FlowConfig:
    return FlowConfig()


@pytest.fixture
def outcome_log() -> OutcomeLog:
    return OutcomeLog()


@pytest.fixture
def shop_session() -> FakeShopSession:
    return FakeShopSession()


@pytest.fixture
def short_load():
    """Factory for quick executor runs."""

    def _make(**overrides) -> LoadConfig:
        params = {
            "arrival_rate": 20,
            "time_unit": 1,
            "duration": 0.5,
            "preallocated_workers": 2,
            "max_workers": 10,
            "graceful_stop": 2,
        }
        params.update(overrides)
        return LoadConfig(**params)

    return _make


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep user config files and SHOPLOAD_* variables out of tests."""
    for var in (
        "SHOPLOAD_URL",
        "SHOPLOAD_RATE",
        "SHOPLOAD_DURATION",
        "SHOPLOAD_OUTPUT_DIR",
        "SHOPLOAD_ABORT_ON_AUTH_FAILURE",
        "SHOPLOAD_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
