"""
Plugin management routes.
Handles plugin listing, discovery, install, start/stop, unload and config.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..dependencies import get_plugin_service
from ..errors import PluginOperationError
from ..models import PluginDescriptor, PluginRecord
from ..services.plugin_service import PluginService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api")


# ============= Pydantic Schemas =============

class PluginInfoSchema(BaseModel):
    name: str
    version: Optional[str] = None
    state: str
    jarPath: Optional[str] = None

    @classmethod
    def from_record(cls, record: PluginRecord) -> "PluginInfoSchema":
        return cls(name=record.name, version=record.version, state=record.state.value, jarPath=record.artifact_path)


class PluginDescriptorSchema(BaseModel):
    name: str
    jarPath: str
    className: Optional[str] = None
    size: int

    @classmethod
    def from_descriptor(cls, descriptor: PluginDescriptor) -> "PluginDescriptorSchema":
        return cls(
            name=descriptor.name,
            jarPath=descriptor.artifact_path,
            className=descriptor.entry_point,
            size=descriptor.size_bytes,
        )


class PluginInstallRequest(BaseModel):
    pluginName: Optional[str] = None
    jarPath: Optional[str] = None
    className: Optional[str] = None


# ============= Helpers =============

def error_response(message: str, code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=code)


def internal_error(operation: str) -> JSONResponse:
    logger.error(f"Unexpected error {operation}", exc_info=True)
    return error_response("Internal server error", 500)


def operation_error(operation: str, error: PluginOperationError) -> JSONResponse:
    logger.error(f"Error {operation}: {error.message}", exc_info=True)
    return error_response(error.cause_message, 400)


def plugin_not_found(service: PluginService, name: str) -> JSONResponse:
    available = sorted(service.list_plugins())
    message = f"Plugin not found: {name}"
    if available:
        message += f". Available plugins: [{', '.join(available)}]"
    else:
        message += ". No plugins installed. Install a plugin first: POST /api/plugins/install"
    return error_response(message, 404)


async def read_json_object(request: Request) -> Optional[Dict[str, Any]]:
    """JSON-объект тела запроса или None, если тело не объект."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


# ============= Plugin Routes =============

@router.get("/plugins")
async def list_plugins(service: PluginService = Depends(get_plugin_service)):
    """List all installed plugins."""
    try:
        plugins: List[Dict[str, Any]] = []
        for name in sorted(service.list_plugins()):
            record = service.get_plugin_info(name)
            if record is None:
                # удалён между list и get
                continue
            plugins.append(PluginInfoSchema.from_record(record).model_dump())
        return JSONResponse(plugins)
    except Exception:
        return internal_error("listing plugins")


# Должен быть объявлен до /plugins/{name}
@router.get("/plugins/discover")
async def discover_plugins(service: PluginService = Depends(get_plugin_service)):
    """Discover plugin artifacts in the plugins directory."""
    try:
        # обход директории и разбор исходников блокируют, уводим в поток
        descriptors = await asyncio.to_thread(service.discover_plugins)
        return JSONResponse([PluginDescriptorSchema.from_descriptor(d).model_dump() for d in descriptors])
    except PluginOperationError as e:
        logger.error(f"Error discovering plugins: {e.message}", exc_info=True)
        return error_response(e.cause_message, 500)
    except Exception:
        return internal_error("discovering plugins")


@router.post("/plugins/install")
async def install_plugin(request: Request, service: PluginService = Depends(get_plugin_service)):
    """Install a plugin from an artifact."""
    payload = await read_json_object(request)
    if payload is None:
        return error_response("Request body must be a JSON object", 400)
    body = PluginInstallRequest(**{k: v for k, v in payload.items() if k in PluginInstallRequest.model_fields and isinstance(v, str)})
    if not body.pluginName or not body.jarPath or not body.className:
        return error_response("Missing required fields: pluginName, jarPath, className", 400)

    try:
        record = await service.install_plugin(body.pluginName, body.jarPath, body.className)
        return JSONResponse(PluginInfoSchema.from_record(record).model_dump(), status_code=201)
    except PluginOperationError as e:
        return operation_error("installing plugin", e)
    except Exception:
        return internal_error("installing plugin")


@router.get("/plugins/{name}")
async def get_plugin_info(name: str, service: PluginService = Depends(get_plugin_service)):
    """Get information about a plugin."""
    try:
        record = service.get_plugin_info(name)
        if record is None:
            return error_response(f"Plugin not found: {name}", 404)
        return JSONResponse(PluginInfoSchema.from_record(record).model_dump())
    except Exception:
        return internal_error("getting plugin info")


@router.post("/plugins/{name}/start")
async def start_plugin(name: str, service: PluginService = Depends(get_plugin_service)):
    """Start a plugin."""
    try:
        if service.get_plugin_info(name) is None:
            return plugin_not_found(service, name)
        record = await service.start_plugin(name)
        return JSONResponse(PluginInfoSchema.from_record(record).model_dump())
    except PluginOperationError as e:
        return operation_error("starting plugin", e)
    except Exception:
        return internal_error("starting plugin")


@router.post("/plugins/{name}/stop")
async def stop_plugin(name: str, service: PluginService = Depends(get_plugin_service)):
    """Stop a plugin."""
    try:
        if service.get_plugin_info(name) is None:
            return plugin_not_found(service, name)
        record = await service.stop_plugin(name)
        return JSONResponse(PluginInfoSchema.from_record(record).model_dump())
    except PluginOperationError as e:
        return operation_error("stopping plugin", e)
    except Exception:
        return internal_error("stopping plugin")


@router.post("/plugins/{name}/cancel")
async def cancel_plugin_operation(name: str, service: PluginService = Depends(get_plugin_service)):
    """Ask an in-flight start of the plugin to abort at its next checkpoint."""
    if service.get_plugin_info(name) is None:
        return plugin_not_found(service, name)
    cancelled = service.cancel_plugin_operation(name)
    return JSONResponse({"name": name, "cancelled": cancelled})


@router.delete("/plugins/{name}")
async def unload_plugin(name: str, service: PluginService = Depends(get_plugin_service)):
    """Unload a plugin (it must be stopped first)."""
    try:
        if service.get_plugin_info(name) is None:
            return plugin_not_found(service, name)
        await service.unload_plugin(name)
        return JSONResponse({"message": f"Plugin unloaded: {name}"})
    except PluginOperationError as e:
        return operation_error("unloading plugin", e)
    except Exception:
        return internal_error("unloading plugin")


@router.get("/plugins/{name}/config")
async def get_plugin_config(name: str, service: PluginService = Depends(get_plugin_service)):
    """Get plugin configuration."""
    try:
        config = service.get_plugin_config(name)
        if config is None:
            return plugin_not_found(service, name)
        return JSONResponse(config)
    except PluginOperationError as e:
        return operation_error("getting plugin config", e)
    except Exception:
        return internal_error("getting plugin config")


@router.put("/plugins/{name}/config")
async def update_plugin_config(name: str, request: Request, service: PluginService = Depends(get_plugin_service)):
    """Merge keys into plugin configuration."""
    payload = await read_json_object(request)
    if payload is None:
        return error_response("Request body must be a JSON object", 400)
    try:
        if service.get_plugin_info(name) is None:
            return plugin_not_found(service, name)
        config = await service.update_plugin_config(name, payload)
        return JSONResponse(config)
    except PluginOperationError as e:
        return operation_error("updating plugin config", e)
    except Exception:
        return internal_error("updating plugin config")
