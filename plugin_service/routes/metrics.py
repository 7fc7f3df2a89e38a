"""
Metrics routes.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..dependencies import get_plugin_service
from ..services.plugin_service import PluginService

router = APIRouter(prefix="/api")


@router.get("/metrics")
async def get_metrics(service: PluginService = Depends(get_plugin_service)):
    """API request/error counters and plugin counts."""
    return JSONResponse(service.get_metrics())
