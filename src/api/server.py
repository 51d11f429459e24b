"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api.routes import router
from src.api.metrics_routes import router as metrics_router
from src.api.middleware import setup_cors, setup_rate_limiting
from src.config import LOG_LEVEL, STORE_BACKEND, STORE_TIMEOUT_SECONDS, validate_config
from src.exceptions import (
    ActionRejected,
    DatabaseError,
    LearnStreamError,
    RecordNotFoundError,
    ValidationError,
)
from src.gamification.store import ActionStore
from src.observability.metrics import init_metrics
from src.observability.metrics_middleware import setup_metrics_middleware
from src.services import init_container, reset_container

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)

logger = logging.getLogger(__name__)


async def create_store() -> ActionStore:
    """Build the store selected by STORE_BACKEND"""
    if STORE_BACKEND == "memory":
        from src.gamification.memory_store import InMemoryActionStore

        logger.warning("Using in-memory store; progress is not persisted")
        return InMemoryActionStore(lock_timeout_seconds=STORE_TIMEOUT_SECONDS)

    from src.db.connection import db
    from src.db.store import PostgresActionStore

    await db.init_pool()
    logger.info("Database pool initialized")
    return PostgresActionStore(db, timeout_seconds=STORE_TIMEOUT_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application"""
    # Startup
    logger.info("Starting API server...")
    owns_store = app.state.store is None
    if owns_store:
        validate_config()
        app.state.store = await create_store()
        init_container(app.state.store)
    init_metrics()

    yield

    # Shutdown
    logger.info("Shutting down API server...")
    if owns_store:
        await app.state.store.close()
        app.state.store = None
        reset_container()
    logger.info("Store closed")


def _rejection_response(request: Request, exc: ActionRejected) -> JSONResponse:
    content = {"valid": False, "reason": exc.reason}
    if exc.cooldown_remaining_ms is not None:
        content["cooldownRemaining"] = exc.cooldown_remaining_ms
    if request.url.path.startswith("/api/progress/"):
        content = {"error": exc.reason, **content}
    return JSONResponse(status_code=429, content=content)


def setup_exception_handlers(app: FastAPI) -> None:
    """Map the exception hierarchy onto HTTP status codes"""

    @app.exception_handler(ActionRejected)
    async def action_rejected_handler(request: Request, exc: ActionRejected):
        return _rejection_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "message": "Invalid request", "details": errors}
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: RecordNotFoundError):
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError):
        return JSONResponse(status_code=500, content=exc.to_dict())

    @app.exception_handler(LearnStreamError)
    async def learnstream_error_handler(request: Request, exc: LearnStreamError):
        return JSONResponse(status_code=500, content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )


def create_api_application(
    store: Optional[ActionStore] = None,
    clock: Optional[Callable[[], datetime]] = None
) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        store: Pre-built store; when omitted the lifespan builds one from config
        clock: Optional clock override, only used with an injected store

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="LearnStream Rewards API",
        description="Action validation, anti-cheat and XP rewards for LearnStream",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.store = store
    if store is not None:
        init_container(store, clock=clock)

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)
    setup_metrics_middleware(app)
    setup_exception_handlers(app)

    # Include routes
    app.include_router(router)
    app.include_router(metrics_router)

    logger.info("FastAPI application created")

    return app
