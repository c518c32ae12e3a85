"""
Scenario runner: drives a scenario through the constant-arrival-rate
executor and turns the outcome log into metrics and threshold results.
"""

import logging
from collections import Counter
from functools import partial

from ..client import create_session
from ..executor import ConstantArrivalRateExecutor, TimelineEntry
from ..output import ScenarioOutput
from ..scenarios import BaseScenario, ShopScenario
from ..stats import OutcomeLog, aggregate
from ..thresholds import evaluate_all
from .base import BaseRunner, RunnerConfig

logger = logging.getLogger(__name__)

# Map scenario names to their implementations
SCENARIO_MAP = {
    "shop-flow": ShopScenario,
}

# Distinct request errors kept in the output
MAX_ERROR_MESSAGES = 10


class ScenarioRunner(BaseRunner):
    """Runner that executes a scenario at a constant arrival rate."""

    def __init__(self, scenario_name: str, config: RunnerConfig, session_factory=None):
        super().__init__(config)
        if scenario_name not in SCENARIO_MAP:
            raise ValueError(f"Unknown scenario: {scenario_name}")
        self._name = scenario_name
        self._session_factory = session_factory or partial(
            create_session, pool_size=4, retries=config.target.retries,
        )
        self.log = OutcomeLog()

    @property
    def name(self) -> str:
        return self._name

    def create_scenario(self) -> BaseScenario:
        scenario_cls = SCENARIO_MAP[self._name]
        return scenario_cls(self.config.target, self.config.flow, self.log)

    def run(self) -> ScenarioOutput:
        """Execute the scenario and return standardized output."""
        load = self.config.load
        scenario = self.create_scenario()

        if not self.config.quiet:
            print(f"\n{'='*60}")
            print(f"Running scenario: {self.name}")
            print(f"{'='*60}")
            print(f"Rate:     {load.arrival_rate:g} iterations / {load.time_unit:g}s")
            print(f"Duration: {load.duration:g}s (graceful stop {load.graceful_stop:g}s)")
            print(f"Workers:  {load.preallocated_workers} preallocated, {load.max_workers} max")
            if not self.config.flow.abort_on_auth_failure:
                print("Auth:     iterations continue after a failed auth (empty bearer token)")

        executor = ConstantArrivalRateExecutor(
            load,
            session_factory=self._session_factory,
            on_progress=None if self.config.quiet else self.print_progress,
            report_interval=self.config.report_interval,
        )
        stats = executor.run(scenario)
        outcomes = self.log.seal()

        metrics = aggregate(
            outcomes,
            duration_secs=stats.elapsed_secs,
            iteration_durations_ms=stats.iteration_durations_ms,
            dropped_iterations=stats.dropped,
        )
        results = evaluate_all(self.config.thresholds, metrics)
        for r in results:
            if not r.passed:
                logger.info("Threshold failed: %s (observed %s)", r.threshold, r.observed)

        errors = Counter(o.error for o in outcomes if o.error)
        error_messages = [
            f"{count}x {message}" for message, count in errors.most_common(MAX_ERROR_MESSAGES)
        ]
        if stats.dropped:
            error_messages.append(
                f"{stats.dropped} iterations dropped: worker pool exhausted at "
                f"{load.max_workers} workers"
            )
        if stats.errored:
            error_messages.append(f"{stats.errored} iterations raised an exception")
        if stats.stopped_early:
            error_messages.append(
                f"Stopped early after {stats.scheduled} of {load.expected_iterations} "
                "scheduled iterations"
            )

        executor_info = stats.to_dict()
        executor_info["late_outcomes"] = self.log.late

        return self.create_output(
            name=self.name,
            duration_secs=stats.elapsed_secs,
            metrics=metrics,
            executor=executor_info,
            threshold_results=results,
            timeline=[e.to_dict() for e in stats.timeline],
            error_messages=error_messages,
        )

    def print_progress(self, entry: TimelineEntry):
        """Print progress during scenario execution."""
        total = self.config.load.duration
        pct = min(entry.elapsed_secs / total * 100, 100) if total > 0 else 0
        rate = entry.started / entry.elapsed_secs if entry.elapsed_secs > 0 else 0
        print(
            f"  [{entry.elapsed_secs:.0f}s/{total:.0f}s] {pct:.0f}% | "
            f"Rate: {rate:.0f}/s | "
            f"Started: {entry.started:,} | "
            f"In flight: {entry.in_flight} | "
            f"Workers: {entry.workers} | "
            f"Dropped: {entry.dropped}"
        )
