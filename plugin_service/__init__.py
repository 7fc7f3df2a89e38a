"""
Plugin Service - REST API и движок жизненного цикла плагинов.
"""

from .app import create_app
from .config import ServiceSettings
from .plugin_system.base import PluginBase
from .services.plugin_service import DefaultPluginService, PluginService

__version__ = "1.0.0"

__all__ = [
    "create_app",
    "ServiceSettings",
    "PluginBase",
    "PluginService",
    "DefaultPluginService",
]
