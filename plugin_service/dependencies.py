"""
Dependency Injection для plugin-service.

Предоставляет Depends функции для получения зависимостей из app.state.
"""
import logging

from fastapi import HTTPException, Request

from .services.plugin_service import PluginService

logger = logging.getLogger(__name__)


def get_plugin_service(request: Request) -> PluginService:
    """
    Dependency для получения PluginService.

    Использование:
        @router.get("/plugins")
        async def list_plugins(service: PluginService = Depends(get_plugin_service)):
            return service.list_plugins()
    """
    service = getattr(request.app.state, 'plugin_service', None)
    if service is None:
        logger.error("Plugin service not available in app.state")
        raise HTTPException(
            status_code=503,
            detail="Plugin service not initialized. Please wait for application startup."
        )
    return service


__all__ = ['get_plugin_service']
