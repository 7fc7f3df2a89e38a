"""
Менеджеры плагин-системы

- lifecycle: управление жизненным циклом
"""

from .lifecycle import PluginLifecycleManager, init_plugin_lifecycle_manager

__all__ = [
    'PluginLifecycleManager',
    'init_plugin_lifecycle_manager',
]
