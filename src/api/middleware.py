"""API middleware for rate limiting and CORS"""
import logging
from typing import Optional
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware

from src.config import API_RATE_LIMIT, CORS_ORIGINS
from src.gamification.rate_limiter import client_ip_from_headers

logger = logging.getLogger(__name__)

# Coarse per-IP request limit for the HTTP layer; the anti-cheat IP limit
# works on recorded actions and is applied by the progress service.
limiter = Limiter(key_func=get_remote_address)


def setup_cors(app):
    """Configure CORS middleware"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info(f"CORS configured for origins: {CORS_ORIGINS}")


def setup_rate_limiting(app):
    """Configure rate limiting"""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info(f"Rate limiting configured: {API_RATE_LIMIT} per IP")


def request_ip(request: Request) -> Optional[str]:
    """Client IP from forwarding headers, falling back to the socket peer"""
    peer = request.client.host if request.client else None
    return client_ip_from_headers(request.headers, peer)


def request_user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or "unknown"
