import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, crud
from .config import Settings, get_settings
from .db import close_db, create_engine, create_session_factory, init_db
from .errors import TaskHubError, ValidationFailed, field_errors_from_pydantic
from .logging_setup import setup_logging
from .routes import attachments, auth, tasks, users
from .storage import LocalObjectStorage, ObjectStorage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    settings: Settings = app.state.settings
    engine: AsyncEngine = app.state.engine

    setup_logging(settings)
    await init_db(engine)
    if settings.admin_email and settings.admin_password:
        async with app.state.session_factory() as db:
            await crud.users.ensure_admin(db, settings.admin_email, settings.admin_password, settings)
    logger.info("Task Management API %s started (%s)", __version__, settings.app_env)
    yield
    if app.state.owns_engine:
        await close_db(engine)


def _error_response(status_code: int, message: str, errors: Optional[list[dict]] = None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    settings: Settings = app.state.settings

    @app.exception_handler(TaskHubError)
    async def taskhub_error_handler(request: Request, exc: TaskHubError):
        errors = exc.errors if isinstance(exc, ValidationFailed) else None
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc.status_code, exc.message, errors)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error_response(400, "Validation failed", field_errors_from_pydantic(exc.errors()))

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError):
        return _error_response(400, "Validation failed", field_errors_from_pydantic(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        body = {"success": False, "message": "Internal server error"}
        if settings.is_development:
            body["error"] = str(exc)
        return JSONResponse(status_code=500, content=body)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    storage: Optional[ObjectStorage] = None,
) -> FastAPI:
    """Build the API; callers may supply their own engine and storage"""
    settings = settings or get_settings()

    app = FastAPI(
        title="Task Management API",
        description="Task management with ownership rules, comments and file attachments",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.owns_engine = engine is None
    app.state.engine = engine or create_engine(settings)
    app.state.session_factory = create_session_factory(app.state.engine)

    if storage is None:
        upload_path = settings.upload_path
        upload_path.mkdir(parents=True, exist_ok=True)
        storage = LocalObjectStorage(upload_path, settings.upload_base_url)
        app.mount(settings.upload_base_url, StaticFiles(directory=str(upload_path)), name="uploads")
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
        return response

    register_exception_handlers(app)

    app.include_router(auth.router, prefix="/api")
    app.include_router(users.router, prefix="/api")
    app.include_router(tasks.router, prefix="/api")
    app.include_router(attachments.router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": "Task Management API",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/health",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "taskhub", "version": __version__}

    @app.get("/api")
    async def api_info():
        """API information endpoint"""
        return {
            "endpoints": {
                "auth": "/api/auth",
                "users": "/api/users",
                "tasks": "/api/tasks",
                "attachments": "/api/tasks/{task_id}/upload",
            },
            "features": [
                "JWT access and refresh tokens",
                "Task CRUD with ownership rules",
                "Comments and file attachments",
                "Filtered and paginated task search",
            ],
        }

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "taskhub.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
