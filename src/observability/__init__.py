"""
Observability module for learnstream.

This module provides Prometheus metrics collection (metrics.py) and the
FastAPI middleware that records HTTP request metrics (metrics_middleware.py).
"""

__all__ = ["metrics", "metrics_middleware"]
