"""
Основной модуль загрузки плагинов.

Превращает пару (артефакт, entry point) в класс плагина внутри изолированной
области импорта:
- каждая загрузка получает собственный синтетический пакет
  ``_plugin_scope_<hex>``, под которым импортируются модули плагина;
- архивы распаковываются во временную директорию этой области;
- ModuleHandle.release() удаляет модули области из sys.modules и
  временные файлы, поэтому выгрузка не оставляет символов в хост-процессе.
"""

import importlib
import importlib.machinery
import importlib.util
import logging
import os
import shutil
import sys
import tempfile
import threading
import types
import uuid
from typing import Any, Dict, Optional, Tuple

from ..constants import (
    PLUGIN_METADATA_FILE,
    PLUGIN_SCOPE_PREFIX,
    PLUGIN_UNKNOWN_VERSION,
    REQUIRED_PLUGIN_HOOKS,
)
from ..errors import (
    ArtifactNotFoundError,
    EntryPointNotFoundError,
    IncompatibleInterfaceError,
    PluginInternalError,
)
from .archive_handler import ArchiveHandler, archive_type_of
from .metadata_reader import PluginMetadataReader
from .plugin_finder import PluginFinder

logger = logging.getLogger(__name__)


class ModuleHandle:
    """
    Загруженная единица кода плагина.

    Симметричный acquire/release ресурс: создаётся PluginLoader.load(),
    освобождается release() (или выходом из ``with``). Повторный release()
    ничего не делает.
    """

    def __init__(
        self,
        scope: str,
        root: str,
        plugin_class: type,
        artifact_path: str,
        entry_point: str,
        version: str,
        scratch_dir: Optional[str] = None,
    ):
        self.scope = scope
        self.root = root
        self.plugin_class = plugin_class
        self.artifact_path = artifact_path
        self.entry_point = entry_point
        self.version = version
        self.scratch_dir = scratch_dir
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        _drop_scope(self.scope, self.scratch_dir)
        self.plugin_class = None
        logger.debug(f"🧹 Released plugin scope {self.scope} ({self.entry_point})")

    def __enter__(self) -> "ModuleHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"<ModuleHandle {self.entry_point} scope={self.scope} {state}>"


def _drop_scope(scope: str, scratch_dir: Optional[str]) -> None:
    prefix = scope + "."
    for module_name in [m for m in list(sys.modules) if m == scope or m.startswith(prefix)]:
        sys.modules.pop(module_name, None)
    if scratch_dir:
        for cached_path in [p for p in list(sys.path_importer_cache) if isinstance(p, str) and p.startswith(scratch_dir)]:
            sys.path_importer_cache.pop(cached_path, None)
        shutil.rmtree(scratch_dir, ignore_errors=True)


def parse_entry_point(entry_point: str) -> Tuple[Optional[str], str]:
    """
    Разобрать entry point на (модуль, класс).

    Поддерживаются ``pkg.module.ClassName`` и ``pkg.module:ClassName``;
    голое ``ClassName`` ищется в entry-файле артефакта.
    """
    entry_point = (entry_point or "").strip()
    if ":" in entry_point:
        module_part, _, class_name = entry_point.partition(":")
    elif "." in entry_point:
        module_part, _, class_name = entry_point.rpartition(".")
    else:
        module_part, class_name = "", entry_point

    module_part = module_part.strip() or None
    class_name = class_name.strip()
    if not class_name.isidentifier():
        raise EntryPointNotFoundError(f"Invalid entry point: '{entry_point}'")
    if module_part and not all(part.isidentifier() for part in module_part.split(".")):
        raise EntryPointNotFoundError(f"Invalid entry point module: '{module_part}'")
    return module_part, class_name


class PluginLoader:
    """
    Загрузчик плагинов из артефактов.

    Поддерживаемые артефакты: одиночный ``.py`` файл, директория-пакет,
    архив (``.zip``/``.jar``/``.whl``, ``.tar.gz``/``.tgz``/``.tar``).
    Методы синхронные; менеджер жизненного цикла вызывает их в отдельном
    потоке с таймаутом.
    """

    def __init__(self, temp_dir: Optional[str] = None):
        self.temp_dir = temp_dir or tempfile.mkdtemp(prefix="plugins_")
        os.makedirs(self.temp_dir, exist_ok=True)
        self._live_handles: Dict[str, ModuleHandle] = {}
        self._lock = threading.Lock()
        logger.info(f"🔌 PluginLoader initialized (scratch: {self.temp_dir})")

    def load(self, artifact_path: str, entry_point: str) -> ModuleHandle:
        """
        Загрузить класс плагина.

        Raises:
            ArtifactNotFoundError: путь не существует или артефакт не читается
            EntryPointNotFoundError: модуль/класс не найден или не импортируется
            IncompatibleInterfaceError: у класса нет on_start/on_stop/on_configure
        """
        path = os.path.abspath(os.path.expanduser(artifact_path or ""))
        if not artifact_path or not os.path.exists(path):
            raise ArtifactNotFoundError(f"Plugin artifact not found: {artifact_path}")

        module_part, class_name = parse_entry_point(entry_point)
        scope = f"{PLUGIN_SCOPE_PREFIX}{uuid.uuid4().hex}"
        scratch_dir: Optional[str] = None

        try:
            if os.path.isdir(path):
                root = path
                module = self._import_from_root(scope, root, module_part, entry_point)
            elif path.endswith(".py"):
                root = os.path.dirname(path)
                module = self._import_single_file(scope, path)
            else:
                archive_type = archive_type_of(path)
                if archive_type is None:
                    raise ArtifactNotFoundError(f"Unsupported plugin artifact type: {artifact_path}")
                scratch_dir = os.path.join(self.temp_dir, scope)
                try:
                    root = ArchiveHandler(scratch_dir).extract_archive(path, archive_type)
                except ValueError as e:
                    raise ArtifactNotFoundError(f"Cannot read plugin artifact {artifact_path}: {e}") from e
                module = self._import_from_root(scope, root, module_part, entry_point)

            plugin_class = getattr(module, class_name, None)
            if plugin_class is None:
                raise EntryPointNotFoundError(
                    f"Class '{class_name}' not found in {artifact_path} (entry point: {entry_point})"
                )
            self._check_interface(plugin_class, entry_point)
            version = self._resolve_version(plugin_class, root)
        except BaseException:
            _drop_scope(scope, scratch_dir)
            raise

        handle = ModuleHandle(
            scope=scope,
            root=root,
            plugin_class=plugin_class,
            artifact_path=artifact_path,
            entry_point=entry_point,
            version=version,
            scratch_dir=scratch_dir,
        )
        with self._lock:
            self._live_handles[scope] = handle
        logger.info(f"✅ Loaded {entry_point} from {artifact_path} (scope {scope})")
        return handle

    def unload(self, handle: Optional[ModuleHandle]) -> None:
        """Освободить область загрузки. Идемпотентно."""
        if handle is None:
            return
        with self._lock:
            self._live_handles.pop(handle.scope, None)
        handle.release()

    def instantiate(self, handle: ModuleHandle) -> Any:
        """Создать экземпляр плагина (конструктор без аргументов)."""
        if handle.released:
            raise PluginInternalError(f"Cannot instantiate {handle.entry_point}: handle already released")
        return handle.plugin_class()

    @property
    def live_handles(self) -> int:
        with self._lock:
            return len(self._live_handles)

    def cleanup(self) -> None:
        """Освободить все живые области и временную директорию."""
        with self._lock:
            handles = list(self._live_handles.values())
            self._live_handles.clear()
        for handle in handles:
            handle.release()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    # ------------------------------------------------------------------ #

    def _create_scope(self, scope: str, root: str, use_root_init: bool) -> types.ModuleType:
        """Зарегистрировать синтетический пакет области с __path__ = [root]."""
        importlib.invalidate_caches()
        init_file = os.path.join(root, "__init__.py")
        if use_root_init and os.path.isfile(init_file):
            spec = importlib.util.spec_from_file_location(
                scope, init_file, submodule_search_locations=[root]
            )
            package = importlib.util.module_from_spec(spec)
            sys.modules[scope] = package
            self._exec_module(spec, package, scope)
            return package

        package = types.ModuleType(scope)
        package.__path__ = [root]
        package.__package__ = scope
        package.__spec__ = importlib.machinery.ModuleSpec(scope, None, is_package=True)
        package.__spec__.submodule_search_locations = [root]
        sys.modules[scope] = package
        return package

    def _import_from_root(self, scope: str, root: str, module_part: Optional[str], entry_point: str) -> types.ModuleType:
        package = self._create_scope(scope, root, use_root_init=True)
        if module_part is None:
            entry_file = PluginFinder.find_entry_file(root)
            if entry_file is None:
                raise EntryPointNotFoundError(
                    f"Entry point '{entry_point}' has no module and no main.py/__init__.py found"
                )
            if os.path.basename(entry_file) == "__init__.py":
                return package
            module_part = os.path.splitext(os.path.basename(entry_file))[0]

        full_name = f"{scope}.{module_part}"
        try:
            return importlib.import_module(full_name)
        except ModuleNotFoundError as e:
            if e.name and (full_name == e.name or full_name.startswith(e.name + ".")):
                raise EntryPointNotFoundError(
                    f"Module '{module_part}' not found in artifact (entry point: {entry_point})"
                ) from e
            raise EntryPointNotFoundError(f"Failed to import '{module_part}': {e}") from e
        except Exception as e:
            raise EntryPointNotFoundError(f"Failed to import '{module_part}': {e}") from e

    def _import_single_file(self, scope: str, file_path: str) -> types.ModuleType:
        # Модуль-файл: пакет области только даёт относительным импортам доступ к соседям
        self._create_scope(scope, os.path.dirname(file_path), use_root_init=False)
        module_name = f"{scope}.{os.path.splitext(os.path.basename(file_path))[0]}"
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if not spec or not spec.loader:
            raise ArtifactNotFoundError(f"Failed to load spec from {file_path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        self._exec_module(spec, module, module_name)
        return module

    @staticmethod
    def _exec_module(spec, module: types.ModuleType, module_name: str) -> None:
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise EntryPointNotFoundError(f"Failed to import '{module_name.split('.', 1)[-1]}': {e}") from e

    @staticmethod
    def _check_interface(plugin_class: Any, entry_point: str) -> None:
        if not isinstance(plugin_class, type):
            raise IncompatibleInterfaceError(f"Entry point '{entry_point}' is not a class")
        missing = [hook for hook in REQUIRED_PLUGIN_HOOKS if not callable(getattr(plugin_class, hook, None))]
        if missing:
            raise IncompatibleInterfaceError(
                f"Class '{plugin_class.__name__}' does not implement plugin hooks: {', '.join(missing)}"
            )

    @staticmethod
    def _resolve_version(plugin_class: type, root: str) -> str:
        version = getattr(plugin_class, "version", None)
        if isinstance(version, str) and version:
            return version
        try:
            metadata = PluginMetadataReader.read_metadata(os.path.join(root, PLUGIN_METADATA_FILE))
        except ValueError as e:
            logger.warning(f"⚠️ Ignoring plugin metadata: {e}")
            metadata = None
        if metadata and metadata.get("version"):
            return metadata["version"]
        return PLUGIN_UNKNOWN_VERSION


__all__ = ["PluginLoader", "ModuleHandle", "parse_entry_point"]
