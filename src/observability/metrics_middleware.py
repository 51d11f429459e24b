"""
FastAPI middleware for automatic Prometheus metrics collection.

This middleware automatically tracks:
- Request counts by endpoint, method, and status code
- Request latency histograms
- Requests in progress (concurrent requests)
"""

import logging
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.observability.metrics import (
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress,
)

logger = logging.getLogger(__name__)

# Path segments followed by a caller-chosen identifier
ID_PARENT_SEGMENTS = {"users": "{user_id}"}


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect Prometheus metrics for HTTP requests.

    Automatically tracks:
    - Total requests (counter) by method, endpoint, status
    - Request duration (histogram) by method, endpoint
    - Requests in progress (gauge) by method, endpoint
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        method = request.method
        path = normalize_path(request.url.path)

        http_requests_in_progress.labels(method=method, endpoint=path).inc()
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error(f"Request failed: {e}", exc_info=True)
            raise
        finally:
            http_requests_in_progress.labels(method=method, endpoint=path).dec()
            http_requests_total.labels(
                method=method, endpoint=path, status=status_code
            ).inc()
            http_request_duration_seconds.labels(
                method=method, endpoint=path
            ).observe(time.perf_counter() - start_time)

        return response


def normalize_path(path: str) -> str:
    """
    Normalize request path to reduce cardinality.

    - /api/users/alice/xp -> /api/users/{user_id}/xp
    - numeric segments -> {id}

    Args:
        path: The raw request path

    Returns:
        Normalized path pattern
    """
    if path in ("/", "/metrics"):
        return path

    parts = path.strip("/").split("/")
    normalized_parts = []
    for i, part in enumerate(parts):
        parent = parts[i - 1] if i > 0 else None
        if parent in ID_PARENT_SEGMENTS:
            normalized_parts.append(ID_PARENT_SEGMENTS[parent])
        elif part.isdigit():
            normalized_parts.append("{id}")
        else:
            normalized_parts.append(part)

    return "/" + "/".join(normalized_parts)


def setup_metrics_middleware(app):
    """
    Add Prometheus metrics middleware to FastAPI application.

    Args:
        app: FastAPI application instance
    """
    from src.config import ENABLE_METRICS

    if not ENABLE_METRICS:
        logger.info("Metrics collection is disabled (ENABLE_METRICS=false)")
        return

    app.add_middleware(PrometheusMiddleware)
    logger.info("Prometheus metrics middleware added to FastAPI")
