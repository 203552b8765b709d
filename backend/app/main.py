"""Taskline Backend Application.

This is the main entry point for the Taskline backend service.
Taskline is a collaborative task manager: tasks are edited over REST and
every change is pushed to connected browsers over a WebSocket.

Modules:
    - realtime: WebSocket sessions, task rooms, presence, event fan-out
    - tasks: DuckDB-backed task CRUD (publishes task:* events)
    - notifications: per-user notification inbox (notification:new)
    - audit: DuckDB-based audit logging of task mutations
    - auth: accounts, token issuance, JWT verification for REST and WebSocket
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.audit import AuditLogService
from app.auth.router import router as auth_router
from app.auth.users import UserService
from app.config import get_config
from app.errors import register_exception_handlers
from app.notifications.router import router as notifications_router
from app.notifications.service import NotificationService
from app.realtime.hub import hub
from app.realtime.router import router as realtime_router
from app.tasks.router import router as tasks_router
from app.tasks.service import TaskService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# websockets/uvicorn.access log every frame and request line.
for _noisy in (
    "websockets",
    "uvicorn.access",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in taskline.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    hub.reset(config.realtime)
    TaskService.get_instance(config.storage.tasks_path)
    NotificationService.get_instance(config.storage.notifications_path)
    AuditLogService.get_instance(config.storage.audit_path)
    UserService.get_instance(config.storage.users_path)
    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port} "
        f"(WebSocket at /ws)"
    )

    yield  # Application runs here

    # Shutdown
    hub.registry.clear()
    TaskService.reset_instance()
    NotificationService.reset_instance()
    AuditLogService.reset_instance()
    UserService.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Taskline API",
    description="Backend service for Taskline - collaborative task management with live updates",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

# Register all routers
app.include_router(auth_router)
app.include_router(realtime_router)
app.include_router(tasks_router)
app.include_router(notifications_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the number of open realtime connections.
    """
    return {"status": "ok", "connections": len(hub.registry)}


if __name__ == "__main__":
    import uvicorn

    _config = get_config()
    uvicorn.run("app.main:app", host=_config.server.host, port=_config.server.port)
