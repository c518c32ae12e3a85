"""
Shop Load Scenarios

Iteration scenarios run by the constant-arrival-rate executor.
"""

from .base import BaseScenario
from .shop import ShopScenario, UserSession

__all__ = [
    "BaseScenario",
    "ShopScenario",
    "UserSession",
]
