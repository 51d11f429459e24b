"""
Service Container - Dependency Injection Container

Simple DI container for managing service instances and their dependencies.
Uses lazy loading to only instantiate services when first accessed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
import logging

from src.gamification.store import ActionStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    Infrastructure dependencies (store, clock) are injected.
    """

    # Infrastructure dependencies (injected)
    store: ActionStore
    clock: Optional[Callable[[], datetime]] = None  # defaults to UTC now

    # Services (lazy-loaded via properties)
    _progress_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def progress_service(self):
        """Get ProgressService instance (lazy-loaded)"""
        if self._progress_service is None:
            from datetime import timedelta
            from src import config
            from src.gamification.anti_cheat import build_policies
            from src.gamification.rate_limiter import IPRateLimitPolicy
            from src.services.progress_service import ProgressService

            kwargs = {}
            if self.clock is not None:
                kwargs["clock"] = self.clock

            self._progress_service = ProgressService(
                self.store,
                tz=config.get_timezone(),
                policies=build_policies(config.get_policy_overrides()),
                ip_policy=IPRateLimitPolicy(
                    max_actions=config.IP_LIMIT_PER_5_MIN,
                    max_burst=config.IP_BURST_PER_10_SEC,
                ),
                lookback=timedelta(minutes=config.ACTION_LOOKBACK_MINUTES),
                max_future_skew_ms=config.MAX_FUTURE_SKEW_MS,
                max_action_age_ms=config.MAX_ACTION_AGE_MS,
                **kwargs
            )
            logger.debug("ProgressService instantiated")
        return self._progress_service


# Global container instance (initialized in the API lifespan)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Returns:
        ServiceContainer: The global container instance

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() during application startup before using services."
        )
    return _container


def init_container(
    store: ActionStore,
    clock: Optional[Callable[[], datetime]] = None
) -> ServiceContainer:
    """
    Initialize the global service container.

    Should be called once at startup after the store is ready.

    Args:
        store: ActionStore implementation
        clock: Optional clock override (tests)

    Returns:
        ServiceContainer: The initialized container
    """
    global _container

    _container = ServiceContainer(store=store, clock=clock)

    logger.info("Service container initialized")
    return _container


def reset_container() -> None:
    """Drop the global container (application shutdown and tests)"""
    global _container
    _container = None
