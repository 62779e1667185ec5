import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes.auth import router as auth_router
from app.api.routes.events import router as events_router
from app.api.routes.filesystem import router as filesystem_router
from app.api.routes.mcp import router as mcp_router
from app.config.settings import get_settings
from app.core.container import AppContainer, set_container
from app.db.seed import seed_app_data
from app.db.session import get_sessionmaker
from app.mcp.client_manager import MCPClientManager
from app.middleware.error_handler import (
    ServiceError,
    catch_all_handler,
    service_error_handler,
    validation_error_handler,
)
from app.services.event_bus import EventBus

logger = logging.getLogger(__name__)


def _configure_app_logging() -> None:
    """Ensure app.* logs are visible under the same sink as uvicorn error logs."""
    app_logger = logging.getLogger("app")
    uvicorn_error_logger = logging.getLogger("uvicorn.error")

    if uvicorn_error_logger.handlers:
        app_logger.handlers = list(uvicorn_error_logger.handlers)
        app_logger.setLevel(uvicorn_error_logger.level or logging.INFO)
        app_logger.propagate = False
        return

    if not app_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(levelname)s:     %(name)s - %(message)s")
        )
        app_logger.addHandler(handler)
    app_logger.setLevel(logging.INFO)
    app_logger.propagate = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    _configure_app_logging()

    event_bus = EventBus()
    container = AppContainer(
        event_bus=event_bus,
        mcp_client_manager=MCPClientManager(event_bus=event_bus),
    )
    app.state.container = container
    set_container(container)

    session_factory = get_sessionmaker()
    with session_factory() as session:
        seed_app_data(session)
        session.commit()

    yield

    # Child processes must not outlive the backend.
    names = await container.mcp_client_manager.names()
    if names:
        logger.info("Disconnecting %d MCP server(s) on shutdown", len(names))
    await container.mcp_client_manager.disconnect_all()
    set_container(None)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(Exception, catch_all_handler)

    app.include_router(filesystem_router)
    app.include_router(auth_router)
    app.include_router(mcp_router)
    app.include_router(events_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
