"""
Plugin Lifecycle Manager - управление жизненным циклом плагинов.

Машина состояний на каждый плагин:

    (нет) --install--> INSTALLED --start--> STARTING --> RUNNING
    RUNNING --stop--> STOPPING --> STOPPED
    INSTALLED | STOPPED | FAILED --unload--> (нет)

Операции над одним именем сериализуются отдельным asyncio.Lock, операции над
разными именами идут параллельно. Загрузка кода и хуки плагина ограничены
таймаутами; блокирующая работа уходит в пул потоков.
"""
import asyncio
import functools
import inspect
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from ...constants import (
    PLUGIN_HOOK_CONFIGURE,
    PLUGIN_HOOK_START,
    PLUGIN_HOOK_STOP,
    PLUGIN_HOOK_TIMEOUT,
    PLUGIN_LOAD_TIMEOUT,
)
from ...errors import (
    AlreadyInstalledError,
    InvalidStateError,
    OperationCancelledError,
    PluginNotFoundError,
    PluginTimeoutError,
)
from ...models import (
    PluginRecord,
    PluginState,
    STARTABLE_STATES,
    UNLOADABLE_STATES,
)
from ..loader import ModuleHandle, PluginLoader
from ..registry import PluginRegistry

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class PluginLifecycleManager:
    """
    Менеджер жизненного цикла плагинов.

    Отвечает за:
    - установку (проверка артефакта без создания экземпляра)
    - запуск/остановку с хуками плагина
    - выгрузку записи из реестра
    - обновление конфигурации работающих плагинов
    - кооперативную отмену запуска

    Экземпляры плагинов и их ModuleHandle принадлежат только менеджеру;
    наружу отдаются копии записей (PluginRecord.snapshot()).
    """

    def __init__(
        self,
        registry: PluginRegistry,
        loader: PluginLoader,
        load_timeout: float = PLUGIN_LOAD_TIMEOUT,
        hook_timeout: float = PLUGIN_HOOK_TIMEOUT,
        plugin_configs: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        self.registry = registry
        self.loader = loader
        self.load_timeout = load_timeout
        self.hook_timeout = hook_timeout
        self.plugin_configs: Dict[str, Dict[str, str]] = {
            name: dict(cfg) for name, cfg in (plugin_configs or {}).items()
        }
        self._locks: Dict[str, asyncio.Lock] = {}
        self._locks_guard = threading.Lock()
        self._handles: Dict[str, ModuleHandle] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}
        logger.info("PluginLifecycleManager initialized")

    def _lock_for(self, name: str) -> asyncio.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[name] = lock
            return lock

    # ------------------------------------------------------------------ #
    # Операции
    # ------------------------------------------------------------------ #

    async def install(
        self,
        name: str,
        artifact_path: str,
        entry_point: str,
        version: Optional[str] = None,
    ) -> PluginRecord:
        """Установить плагин: проверить, что артефакт разрешается, и создать запись INSTALLED."""
        async with self._lock_for(name):
            if name in self.registry:
                existing = self.registry.get(name)
                raise AlreadyInstalledError(name, existing.state.value)

            handle = await self._call_blocking(
                self.loader.load,
                artifact_path,
                entry_point,
                timeout=self.load_timeout,
                what=f"loading {entry_point} from {artifact_path}",
                on_late_result=self.loader.unload,
            )
            try:
                resolved_version = version or handle.version
            finally:
                self.loader.unload(handle)

            record = PluginRecord(
                name=name,
                artifact_path=artifact_path,
                entry_point=entry_point,
                version=resolved_version,
                state=PluginState.INSTALLED,
                config=dict(self.plugin_configs.get(name, {})),
                installed_at=_now(),
            )
            self.registry.put(name, record, strict=True)
            logger.info(f"📦 Installed plugin {name} v{resolved_version} ({entry_point})")
            return record.snapshot()

    async def start(self, name: str) -> PluginRecord:
        """Запустить плагин: загрузка -> экземпляр (STARTING) -> on_configure -> on_start -> RUNNING."""
        async with self._lock_for(name):
            record = self._record_for_transition(name, "start")
            if record.state not in STARTABLE_STATES:
                raise InvalidStateError(name, record.state.value, "start")

            cancel_event = asyncio.Event()
            self._cancel_events[name] = cancel_event
            record.last_error = None
            handle: Optional[ModuleHandle] = None
            logger.info(f"🚀 Starting plugin {name}")

            try:
                handle = await self._call_blocking(
                    self.loader.load,
                    record.artifact_path,
                    record.entry_point,
                    timeout=self.load_timeout,
                    what=f"loading plugin {name}",
                    on_late_result=self.loader.unload,
                )
                self._checkpoint(name, cancel_event)

                instance = await self._call_blocking(
                    self.loader.instantiate,
                    handle,
                    timeout=self.hook_timeout,
                    what=f"constructing plugin {name}",
                    on_late_result=functools.partial(_discard_late_instance, name),
                )
                # STARTING всегда с экземпляром
                record.instance = instance
                record.state = PluginState.STARTING
                await self._call_hook(record.instance, PLUGIN_HOOK_CONFIGURE, dict(record.config), name=name)
                self._checkpoint(name, cancel_event)

                await self._call_hook(record.instance, PLUGIN_HOOK_START, name=name)

                self._handles[name] = handle
                record.state = PluginState.RUNNING
                record.last_start = _now()
            except BaseException as e:
                record.instance = None
                self.loader.unload(handle)
                record.state = PluginState.FAILED
                record.last_error = _describe(e)
                logger.error(f"❌ Failed to start plugin {name}: {record.last_error}", exc_info=True)
                raise
            finally:
                self._cancel_events.pop(name, None)

            logger.info(f"✅ Plugin {name} is running")
            return record.snapshot()

    async def stop(self, name: str) -> PluginRecord:
        """
        Остановить плагин: STOPPING -> on_stop -> освобождение области -> STOPPED.

        Ошибка on_stop не мешает освобождению ресурсов и переходу в STOPPED,
        но пробрасывается вызывающему. Таймаут on_stop переводит плагин в FAILED.
        """
        async with self._lock_for(name):
            record = self._record_for_transition(name, "stop")
            if record.state != PluginState.RUNNING:
                raise InvalidStateError(name, record.state.value, "stop")

            record.state = PluginState.STOPPING
            logger.info(f"🛑 Stopping plugin {name}")
            instance = record.instance
            handle = self._handles.pop(name, None)
            hook_error: Optional[BaseException] = None

            try:
                await self._call_hook(instance, PLUGIN_HOOK_STOP, name=name)
            except BaseException as e:
                # включая отмену вызывающей задачи: ресурсы всё равно освобождаем
                hook_error = e
            finally:
                record.instance = None
                self.loader.unload(handle)
                record.last_stop = _now()

            # таймаут и отмена оставляют плагин в неизвестном состоянии
            if isinstance(hook_error, PluginTimeoutError) or (
                hook_error is not None and not isinstance(hook_error, Exception)
            ):
                record.state = PluginState.FAILED
            else:
                record.state = PluginState.STOPPED

            if hook_error is not None:
                record.last_error = _describe(hook_error)
                logger.error(f"❌ Stop hook of plugin {name} failed: {record.last_error}", exc_info=hook_error)
                raise hook_error

            logger.info(f"✅ Plugin {name} stopped")
            return record.snapshot()

    async def unload(self, name: str) -> PluginRecord:
        """Удалить запись плагина. Работающий плагин нужно сначала остановить."""
        async with self._lock_for(name):
            record = self.registry.get(name)
            if record.state not in UNLOADABLE_STATES:
                raise InvalidStateError(name, record.state.value, "unload")
            self.registry.remove(name)
            self.loader.unload(self._handles.pop(name, None))
            logger.info(f"🗑️ Unloaded plugin {name}")
            return record.snapshot()

    async def update_config(self, name: str, config: Mapping[str, str]) -> Dict[str, str]:
        """
        Слить ключи в конфигурацию плагина.

        Для RUNNING плагина вызывается on_configure; если хук упал,
        прежняя конфигурация восстанавливается.
        """
        async with self._lock_for(name):
            record = self.registry.get(name)
            previous = dict(record.config)
            record.config.update(config)
            if record.state == PluginState.RUNNING and record.instance is not None:
                try:
                    await self._call_hook(record.instance, PLUGIN_HOOK_CONFIGURE, dict(record.config), name=name)
                except BaseException as e:
                    record.config = previous
                    if isinstance(e, PluginTimeoutError) or not isinstance(e, Exception):
                        # прерванный on_configure: состояние экземпляра неизвестно
                        record.instance = None
                        self.loader.unload(self._handles.pop(name, None))
                        record.state = PluginState.FAILED
                        record.last_error = _describe(e)
                        record.last_stop = _now()
                        logger.error(f"❌ Reconfiguration of plugin {name} was interrupted: {record.last_error}")
                    raise
            logger.info(f"⚙️ Updated config of plugin {name}: {sorted(config)}")
            return dict(record.config)

    def get_config(self, name: str) -> Dict[str, str]:
        return dict(self.registry.get(name).config)

    def snapshot(self, name: str) -> PluginRecord:
        return self.registry.get(name).snapshot()

    def snapshots(self) -> List[PluginRecord]:
        return [record.snapshot() for record in self.registry.records()]

    def cancel(self, name: str) -> bool:
        """
        Попросить текущий запуск плагина прерваться в ближайшей контрольной точке.

        Returns:
            True, если запуск был в процессе и флаг выставлен
        """
        event = self._cancel_events.get(name)
        if event is None:
            return False
        event.set()
        logger.info(f"⏹️ Cancellation requested for plugin {name}")
        return True

    async def shutdown(self) -> None:
        """Остановить все работающие плагины."""
        for name in sorted(self.registry.list()):
            try:
                if self.registry.get(name).state == PluginState.RUNNING:
                    await self.stop(name)
            except Exception as e:
                logger.error(f"Error stopping plugin {name} during shutdown: {e}")

    # ------------------------------------------------------------------ #
    # Внутреннее
    # ------------------------------------------------------------------ #

    def _record_for_transition(self, name: str, operation: str) -> PluginRecord:
        # переход из отсутствующего состояния недопустим, как и любой другой нелегальный переход
        try:
            return self.registry.get(name)
        except PluginNotFoundError as e:
            raise InvalidStateError(name, PluginState.UNINSTALLED.value, operation) from e

    @staticmethod
    def _checkpoint(name: str, cancel_event: asyncio.Event) -> None:
        if cancel_event.is_set():
            raise OperationCancelledError(f"Start of plugin '{name}' was cancelled")

    async def _call_blocking(
        self,
        fn: Callable[..., Any],
        *args: Any,
        timeout: float,
        what: str,
        on_late_result: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """
        Выполнить блокирующую функцию в пуле потоков с таймаутом.

        Поток нельзя прервать; если результат придёт после таймаута, он
        передаётся в on_late_result (например, чтобы освободить handle).
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, functools.partial(fn, *args))
        try:
            result = await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError as e:
            if on_late_result is not None:
                future.add_done_callback(functools.partial(_deliver_late_result, on_late_result))
            raise PluginTimeoutError(f"Timeout after {timeout}s while {what}") from e

        if inspect.isawaitable(result):
            try:
                result = await asyncio.wait_for(result, timeout)
            except asyncio.TimeoutError as e:
                raise PluginTimeoutError(f"Timeout after {timeout}s while {what}") from e
        return result

    async def _call_hook(self, instance: Any, hook_name: str, *args: Any, name: str) -> Any:
        hook = getattr(instance, hook_name)
        what = f"calling {hook_name} of plugin {name}"
        if inspect.iscoroutinefunction(hook):
            try:
                return await asyncio.wait_for(hook(*args), self.hook_timeout)
            except asyncio.TimeoutError as e:
                raise PluginTimeoutError(f"Timeout after {self.hook_timeout}s while {what}") from e
        return await self._call_blocking(hook, *args, timeout=self.hook_timeout, what=what)


def _deliver_late_result(callback: Callable[[Any], None], future: "asyncio.Future") -> None:
    if future.cancelled() or future.exception() is not None:
        return
    try:
        callback(future.result())
    except Exception as e:
        logger.warning(f"Failed to clean up late result: {e}")


def _discard_late_instance(name: str, instance: Any) -> None:
    logger.warning(f"⚠️ Plugin {name} finished constructing after its timeout, discarding {type(instance).__name__} instance")


def init_plugin_lifecycle_manager(
    registry: PluginRegistry,
    loader: PluginLoader,
    **kwargs: Any,
) -> PluginLifecycleManager:
    """Создать менеджер жизненного цикла поверх явно переданных реестра и загрузчика."""
    return PluginLifecycleManager(registry, loader, **kwargs)


__all__ = [
    "PluginLifecycleManager",
    "init_plugin_lifecycle_manager",
]
