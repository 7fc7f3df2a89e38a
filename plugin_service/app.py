"""
Plugin Service Application - FastAPI structure.

- create_app() собирает приложение: сервис плагинов в app.state,
  роутеры /api, учёт запросов в метриках, JSON-ошибки
- lifespan останавливает работающие плагины при завершении
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ServiceSettings
from .constants import LOG_FORMAT
from .services.plugin_service import DefaultPluginService, PluginService

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure logging (only if not already configured)."""
    if not logging.root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("plugin_service").setLevel(level)
    logging.getLogger("plugin").setLevel(level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle manager - startup and shutdown logic."""
    logger.info("🚀 Starting plugin service...")
    service: PluginService = app.state.plugin_service
    logger.info(f"✅ Application startup complete ({len(service.list_plugins())} plugin(s) installed)")

    yield

    logger.info("🛑 Application shutdown started")
    try:
        await service.close()
    except Exception as e:
        logger.error(f"❌ Error during plugin service shutdown: {e}", exc_info=True)


def _endpoint_key(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None) or "unmatched"
    return f"{request.method} {path}"


# ============= Application Factory =============

def create_app(
    settings: Optional[ServiceSettings] = None,
    service: Optional[PluginService] = None,
) -> FastAPI:
    """
    Create and configure the plugin service FastAPI application.

    Args:
        settings: настройки сервиса (по умолчанию из окружения)
        service: готовая реализация PluginService (например, в тестах)

    Returns:
        Configured FastAPI application
    """
    settings = settings or ServiceSettings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Plugin Service",
        version="1.0.0",
        description="Plugin lifecycle management REST API",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings
    app.state.plugin_service = service or DefaultPluginService(settings)

    # ============= Metrics Middleware =============

    @app.middleware("http")
    async def record_api_metrics(request: Request, call_next):
        response = await call_next(request)
        plugin_service: PluginService = request.app.state.plugin_service
        endpoint = _endpoint_key(request)
        plugin_service.record_api_request(endpoint)
        if response.status_code >= 400:
            plugin_service.record_api_error(endpoint)
        return response

    # ============= Error Handlers =============

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            message = f"Resource not found: {request.url.path}"
        else:
            message = str(exc.detail)
        return JSONResponse({"error": message}, status_code=exc.status_code)

    # ============= Basic Routes =============

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "UP"}

    # ============= Mount Routers =============
    from .routes import metrics, plugins

    app.include_router(plugins.router, tags=["plugins"])
    app.include_router(metrics.router, tags=["metrics"])
    logger.info("✅ FastAPI application created successfully")

    return app
