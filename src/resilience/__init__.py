"""Resilience helpers for side effects that must not fail a request"""

from src.resilience.fallback import best_effort

__all__ = [
    "best_effort",
]
