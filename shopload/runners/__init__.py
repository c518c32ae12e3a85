"""
Runners package for shop-load CLI.

Provides runner classes that drive scenarios through the executor.
"""

from .base import BaseRunner, RunnerConfig
from .scenario_runner import ScenarioRunner

__all__ = ["BaseRunner", "RunnerConfig", "ScenarioRunner"]
