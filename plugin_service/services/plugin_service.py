"""
Plugin service facade.

HTTP-слой зависит только от абстрактного PluginService; DefaultPluginService
собирает реестр, загрузчик, менеджер жизненного цикла и discovery в
атомарные операции и ведёт счётчики API.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Set

from ..config import ServiceSettings
from ..errors import PluginNotFoundError, PluginOperationError
from ..models import PluginDescriptor, PluginRecord, PluginState
from ..plugin_system.loader import PluginLoader
from ..plugin_system.managers.lifecycle import PluginLifecycleManager
from ..plugin_system.plugin_finder import discover
from ..plugin_system.registry import PluginRegistry
from .metrics import ApiMetrics

logger = logging.getLogger(__name__)


class PluginService(ABC):
    """
    Контракт операций над плагинами, который вызывает HTTP-слой.

    Все операции, которые могут не удаться, бросают PluginOperationError
    с исходной причиной в ``cause``.
    """

    @abstractmethod
    def list_plugins(self) -> Set[str]:
        """Имена всех установленных плагинов."""

    @abstractmethod
    def get_plugin_info(self, name: str) -> Optional[PluginRecord]:
        """Снимок записи плагина или None, если плагина нет."""

    @abstractmethod
    def discover_plugins(self) -> List[PluginDescriptor]:
        """Кандидаты в плагины из директории плагинов."""

    @abstractmethod
    async def install_plugin(self, name: str, artifact_path: str, entry_point: str) -> PluginRecord:
        ...

    @abstractmethod
    async def start_plugin(self, name: str) -> PluginRecord:
        ...

    @abstractmethod
    async def stop_plugin(self, name: str) -> PluginRecord:
        ...

    @abstractmethod
    async def unload_plugin(self, name: str) -> None:
        ...

    @abstractmethod
    def get_plugin_config(self, name: str) -> Optional[Dict[str, str]]:
        """Конфигурация плагина или None, если плагина нет."""

    @abstractmethod
    async def update_plugin_config(self, name: str, config: Mapping[str, str]) -> Dict[str, str]:
        ...

    @abstractmethod
    def record_api_request(self, endpoint: str) -> None:
        ...

    @abstractmethod
    def record_api_error(self, endpoint: str) -> None:
        ...

    @abstractmethod
    def get_metrics(self) -> Dict[str, Any]:
        ...

    def cancel_plugin_operation(self, name: str) -> bool:
        """Попросить текущий запуск плагина прерваться; False, если прерывать нечего."""
        return False

    async def close(self) -> None:
        """Освободить ресурсы при остановке приложения."""


class DefaultPluginService(PluginService):
    """Реализация PluginService поверх in-process lifecycle manager."""

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        registry: Optional[PluginRegistry] = None,
        loader: Optional[PluginLoader] = None,
        lifecycle: Optional[PluginLifecycleManager] = None,
        metrics: Optional[ApiMetrics] = None,
    ):
        self.settings = settings or ServiceSettings()
        self.registry = registry or PluginRegistry()
        self.loader = loader or PluginLoader()
        self.lifecycle = lifecycle or PluginLifecycleManager(
            self.registry,
            self.loader,
            load_timeout=self.settings.load_timeout,
            hook_timeout=self.settings.hook_timeout,
            plugin_configs=self.settings.plugin_configs,
        )
        self.metrics = metrics or ApiMetrics()
        logger.info(f"🔌 Plugin service ready (plugins dir: {self.settings.plugins_dir})")

    # ============= Queries =============

    def list_plugins(self) -> Set[str]:
        return set(self.registry.list())

    def get_plugin_info(self, name: str) -> Optional[PluginRecord]:
        try:
            return self.lifecycle.snapshot(name)
        except PluginNotFoundError:
            return None

    def discover_plugins(self) -> List[PluginDescriptor]:
        scan = discover(self.settings.plugins_dir)
        try:
            descriptors = list(scan)
        except Exception as e:
            raise PluginOperationError(f"Failed to discover plugins in {self.settings.plugins_dir}: {e}", cause=e) from e
        logger.info(f"🔍 Discovered {len(descriptors)} plugin(s), skipped {scan.skipped}")
        return descriptors

    def get_plugin_config(self, name: str) -> Optional[Dict[str, str]]:
        try:
            return self.lifecycle.get_config(name)
        except PluginNotFoundError:
            return None

    def validate_plugin_exists(self, name: str) -> PluginRecord:
        record = self.get_plugin_info(name)
        if record is None:
            raise PluginOperationError(f"Plugin not found: {name}", cause=PluginNotFoundError(name))
        return record

    # ============= Lifecycle =============

    async def install_plugin(self, name: str, artifact_path: str, entry_point: str) -> PluginRecord:
        for field_name, value in (('pluginName', name), ('jarPath', artifact_path), ('className', entry_point)):
            if not value or not str(value).strip():
                raise PluginOperationError(f"Missing required field: {field_name}")
        try:
            return await self.lifecycle.install(name, artifact_path, entry_point)
        except Exception as e:
            raise PluginOperationError(f"Failed to install plugin: {name}", cause=e) from e

    async def start_plugin(self, name: str) -> PluginRecord:
        try:
            return await self.lifecycle.start(name)
        except Exception as e:
            raise PluginOperationError(f"Failed to start plugin: {name}", cause=e) from e

    async def stop_plugin(self, name: str) -> PluginRecord:
        self.validate_plugin_exists(name)
        try:
            return await self.lifecycle.stop(name)
        except Exception as e:
            raise PluginOperationError(f"Failed to stop plugin: {name}", cause=e) from e

    async def unload_plugin(self, name: str) -> None:
        self.validate_plugin_exists(name)
        try:
            await self.lifecycle.unload(name)
        except Exception as e:
            raise PluginOperationError(f"Failed to unload plugin: {name}", cause=e) from e

    async def update_plugin_config(self, name: str, config: Mapping[str, str]) -> Dict[str, str]:
        self.validate_plugin_exists(name)
        bad_keys = [k for k, v in config.items() if not isinstance(k, str) or not isinstance(v, str)]
        if bad_keys:
            raise PluginOperationError(f"Config keys and values must be strings: {', '.join(map(str, bad_keys))}")
        try:
            return await self.lifecycle.update_config(name, config)
        except Exception as e:
            raise PluginOperationError(f"Failed to update config of plugin: {name}", cause=e) from e

    def cancel_plugin_operation(self, name: str) -> bool:
        return self.lifecycle.cancel(name)

    # ============= Metrics =============

    def record_api_request(self, endpoint: str) -> None:
        self.metrics.record_request(endpoint)

    def record_api_error(self, endpoint: str) -> None:
        self.metrics.record_error(endpoint)

    def get_metrics(self) -> Dict[str, Any]:
        data = self.metrics.snapshot()
        by_state = self.registry.count_by_state()
        data['plugins_total'] = len(self.registry)
        data['plugins_by_state'] = by_state
        data['plugins_running'] = by_state.get(PluginState.RUNNING.value, 0)
        return data

    async def close(self) -> None:
        await self.lifecycle.shutdown()
        self.loader.cleanup()
        logger.info("Plugin service closed")


__all__ = ["PluginService", "DefaultPluginService"]
