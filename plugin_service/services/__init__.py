from .metrics import ApiMetrics
from .plugin_service import DefaultPluginService, PluginService

__all__ = ["ApiMetrics", "DefaultPluginService", "PluginService"]
