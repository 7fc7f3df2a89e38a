"""
Plugin System - модульная система управления плагинами.

Структура:
- base/ - базовый класс плагина (base.py)
- managers/ - менеджер жизненного цикла
- registry.py - реестр установленных плагинов
- loader.py - загрузка артефактов в изолированные области
- plugin_finder.py - поиск плагинов (discovery)
- metadata_reader.py - чтение метаданных из plugin.json
- archive_handler.py - работа с архивами (zip/jar, tar.gz)
"""

from .base import PluginBase
from .registry import PluginRegistry
from .loader import PluginLoader, ModuleHandle
from .plugin_finder import PluginFinder, DiscoveryScan, discover
from .managers import PluginLifecycleManager, init_plugin_lifecycle_manager

__all__ = [
    'PluginBase',
    'PluginRegistry',
    'PluginLoader',
    'ModuleHandle',
    'PluginFinder',
    'DiscoveryScan',
    'discover',
    'PluginLifecycleManager',
    'init_plugin_lifecycle_manager',
]
