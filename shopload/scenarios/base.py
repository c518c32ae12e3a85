"""
Base Scenario Class

Abstract base class for iteration scenarios. A scenario issues requests
through ``request()``, which times the call, evaluates named checks against
the response and appends a ``RequestOutcome`` to the run's outcome log.
Checks are recorded, never raised.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import requests

from ..config import FlowConfig, TargetConfig
from ..executor import IterationContext
from ..stats import OutcomeLog, RequestOutcome

Check = Callable[[Optional[requests.Response]], bool]


class BaseScenario(ABC):
    """
    Abstract base class for scenarios.

    Subclasses must implement:
    - name: Scenario name
    - iterate(): Execute one iteration for a virtual user
    """

    def __init__(self, target: TargetConfig, flow: FlowConfig, log: OutcomeLog):
        self.target = target
        self.flow = flow
        self.log = log

    @property
    @abstractmethod
    def name(self) -> str:
        """Return scenario name."""
        pass

    @abstractmethod
    def iterate(self, ctx: IterationContext) -> None:
        """Run one iteration. Must not raise on failed checks."""
        pass

    def __call__(self, ctx: IterationContext) -> None:
        self.iterate(ctx)

    def request(
        self,
        ctx: IterationContext,
        name: str,
        method: str,
        path: str,
        checks: Dict[str, Check],
        **kwargs: Any,
    ) -> Optional[requests.Response]:
        """
        Send a request, evaluate ``checks`` and record the outcome.

        Returns the response, or None when the request failed at the network
        level. In that case every check for the step is recorded as failed.
        """
        kwargs.setdefault("timeout", self.target.request_timeout)
        start = time.perf_counter()
        try:
            response = ctx.http.request(method, f"{self.target.url}{path}", **kwargs)
        except requests.RequestException as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self.log.append(RequestOutcome(
                name=name,
                status_code=0,
                duration_ms=duration_ms,
                checks_failed=frozenset(checks),
                error=f"{type(e).__name__}: {e}",
            ))
            return None
        duration_ms = (time.perf_counter() - start) * 1000

        passed, failed = set(), set()
        for check_name, check in checks.items():
            (passed if _safe_check(check, response) else failed).add(check_name)

        self.log.append(RequestOutcome(
            name=name,
            status_code=response.status_code,
            duration_ms=duration_ms,
            checks_passed=frozenset(passed),
            checks_failed=frozenset(failed),
        ))
        return response


def _safe_check(check: Check, response: Optional[requests.Response]) -> bool:
    """A check that raises counts as failed."""
    try:
        return bool(check(response))
    except Exception:
        return False


def status_is(code: int) -> Check:
    return lambda r: r is not None and r.status_code == code
