"""
Service Layer Package

This package contains business logic services that separate concerns between
the presentation layer (FastAPI routes) and the data access layer (ActionStore).

Core Services:
- ProgressService: Action validation, XP accrual, streaks, achievements
"""

from src.services.container import ServiceContainer, get_container, init_container, reset_container

__all__ = [
    "ServiceContainer",
    "get_container",
    "init_container",
    "reset_container",
]
