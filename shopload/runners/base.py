"""
Base runner class for shop-load scenarios.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import FlowConfig, LoadConfig, TargetConfig, DEFAULT_THRESHOLDS
from ..output import ScenarioOutput
from ..stats import MetricSummary
from ..thresholds import Threshold, ThresholdResult, parse_thresholds


@dataclass
class RunnerConfig:
    """Configuration for a runner."""
    target: TargetConfig = field(default_factory=TargetConfig)
    load: LoadConfig = field(default_factory=LoadConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)
    thresholds: List[Threshold] = field(
        default_factory=lambda: parse_thresholds(DEFAULT_THRESHOLDS)
    )
    report_interval: float = 5.0
    quiet: bool = False


class BaseRunner(ABC):
    """Base class for all runners."""

    def __init__(self, config: RunnerConfig):
        self.config = config

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the runner/scenario name."""
        pass

    @abstractmethod
    def run(self) -> ScenarioOutput:
        """Execute the runner and return results."""
        pass

    @staticmethod
    def create_output(
        name: str,
        duration_secs: float,
        metrics: Optional[MetricSummary] = None,
        executor: Optional[Dict] = None,
        threshold_results: Optional[List[ThresholdResult]] = None,
        timeline: Optional[List[Dict]] = None,
        error_messages: Optional[List[str]] = None,
        success: Optional[bool] = None,
    ) -> ScenarioOutput:
        """
        Create a standardized ScenarioOutput.

        Success defaults to "every threshold held".
        """
        threshold_results = threshold_results or []
        if success is None:
            success = all(r.passed for r in threshold_results)

        return ScenarioOutput(
            name=name,
            success=success,
            duration_secs=duration_secs,
            metrics=metrics.to_dict() if metrics else {},
            checks={
                check: {"passes": c.passes, "fails": c.fails}
                for check, c in (metrics.checks.items() if metrics else [])
            },
            steps={
                step: s.to_dict()
                for step, s in (metrics.steps.items() if metrics else [])
            },
            executor=executor or {},
            thresholds=[r.to_dict() for r in threshold_results],
            timeline=timeline or [],
            error_messages=error_messages or [],
        )
