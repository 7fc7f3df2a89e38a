"""
Модуль для поиска плагинов в директории (discovery).

Код плагинов при поиске не исполняется: entry point берётся из plugin.json
или определяется разбором исходника через ast.
"""

import ast
import os
import logging
from typing import Iterator, List, Optional

from ..constants import PLUGIN_ENTRY_FILES, PLUGIN_METADATA_FILE, REQUIRED_PLUGIN_HOOKS
from ..models import PluginDescriptor
from .archive_handler import ArchiveHandler, archive_type_of, strip_archive_suffix
from .metadata_reader import PluginMetadataReader

logger = logging.getLogger(__name__)


class PluginFinder:
    """Поисковик плагинов"""

    EXCLUDED_NAMES = {'__pycache__', '__init__.py', 'setup.py', 'conftest.py'}

    @staticmethod
    def find_candidates(plugins_dir: str) -> List[str]:
        """
        Найти все кандидаты в плагины в директории.

        Args:
            plugins_dir: Путь к директории с плагинами

        Returns:
            Отсортированный список путей
        """
        if not os.path.isdir(plugins_dir):
            logger.warning(f"❌ Plugins directory not found: {plugins_dir}")
            return []

        items = os.listdir(plugins_dir)
        if not items:
            logger.info(f"ℹ️ Plugins directory is empty: {plugins_dir}")
            return []

        plugin_paths = []
        for item in sorted(items):
            # Пропускаем скрытые файлы и служебные имена
            if item.startswith('.') or item in PluginFinder.EXCLUDED_NAMES:
                continue
            item_path = os.path.join(plugins_dir, item)
            if os.path.isdir(item_path):
                if PluginFinder.is_plugin_package(item_path):
                    plugin_paths.append(item_path)
            elif item.endswith('.py') or archive_type_of(item):
                plugin_paths.append(item_path)
        return plugin_paths

    @staticmethod
    def is_plugin_package(package_path: str) -> bool:
        if os.path.exists(os.path.join(package_path, PLUGIN_METADATA_FILE)):
            return True
        return any(os.path.exists(os.path.join(package_path, f)) for f in PLUGIN_ENTRY_FILES)

    @staticmethod
    def find_entry_file(package_path: str) -> Optional[str]:
        """
        Найти entry файл плагина (main.py или __init__.py).

        Args:
            package_path: Путь к директории плагина

        Returns:
            Путь к entry файлу или None
        """
        for file_name in PLUGIN_ENTRY_FILES:
            candidate = os.path.join(package_path, file_name)
            if os.path.exists(candidate):
                return candidate
        logger.debug(f"No main.py or __init__.py found in {package_path}")
        return None

    @staticmethod
    def find_plugin_class(source: str, source_name: str) -> Optional[str]:
        """
        Имя первого класса в исходнике, определяющего хуки плагина.

        Raises:
            SyntaxError: исходник не разбирается
        """
        tree = ast.parse(source, filename=source_name)
        hooks = set(REQUIRED_PLUGIN_HOOKS)
        for node in tree.body:
            if not isinstance(node, ast.ClassDef):
                continue
            methods = {
                item.name for item in node.body
                if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef))
            }
            if methods & hooks:
                return node.name
        return None


def _directory_size(path: str) -> int:
    total = 0
    for dirpath, dirnames, filenames in os.walk(path):
        dirnames[:] = [d for d in dirnames if d != '__pycache__']
        for file_name in filenames:
            try:
                total += os.path.getsize(os.path.join(dirpath, file_name))
            except OSError:
                continue
    return total


def _read_text(path: str) -> str:
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


def describe_artifact(path: str) -> PluginDescriptor:
    """
    Построить дескриптор артефакта.

    Raises:
        ValueError / SyntaxError / OSError: артефакт повреждён или не читается
    """
    file_name = os.path.basename(path.rstrip(os.sep))

    if os.path.isdir(path):
        name = file_name
        metadata = PluginMetadataReader.read_metadata(os.path.join(path, PLUGIN_METADATA_FILE))
        entry_point = (metadata or {}).get('entry_point')
        if not entry_point:
            entry_file = PluginFinder.find_entry_file(path)
            if entry_file:
                class_name = PluginFinder.find_plugin_class(_read_text(entry_file), entry_file)
                if class_name:
                    module = os.path.splitext(os.path.basename(entry_file))[0]
                    entry_point = class_name if module == '__init__' else f"{module}.{class_name}"
        return PluginDescriptor(name, path, entry_point, _directory_size(path))

    if path.endswith('.py'):
        name = os.path.splitext(file_name)[0]
        class_name = PluginFinder.find_plugin_class(_read_text(path), path)
        entry_point = f"{name}.{class_name}" if class_name else None
        return PluginDescriptor(name, path, entry_point, os.path.getsize(path))

    archive_type = archive_type_of(path)
    if archive_type is None:
        raise ValueError(f"Unsupported artifact: {path}")
    name = strip_archive_suffix(file_name)
    members = ArchiveHandler.list_members(path, archive_type)
    entry_point = None
    if PLUGIN_METADATA_FILE in members:
        raw = ArchiveHandler.read_member(path, archive_type, PLUGIN_METADATA_FILE)
        metadata = PluginMetadataReader.parse_metadata(raw, f"{path}!{PLUGIN_METADATA_FILE}")
        entry_point = metadata.get('entry_point')
    if not entry_point:
        for entry_name in PLUGIN_ENTRY_FILES:
            if entry_name in members:
                raw = ArchiveHandler.read_member(path, archive_type, entry_name)
                class_name = PluginFinder.find_plugin_class(raw.decode('utf-8'), f"{path}!{entry_name}")
                if class_name:
                    module = os.path.splitext(entry_name)[0]
                    entry_point = class_name if module == '__init__' else f"{module}.{class_name}"
                break
    return PluginDescriptor(name, path, entry_point, os.path.getsize(path))


class DiscoveryScan:
    """
    Ленивый, конечный, перезапускаемый результат discovery.

    Каждая итерация заново сканирует директорию, ничего не кэшируется.
    Повреждённые артефакты пропускаются; их число после итерации лежит в
    ``skipped``.
    """

    def __init__(self, directory: str):
        self.directory = directory
        self.skipped = 0

    def __iter__(self) -> Iterator[PluginDescriptor]:
        self.skipped = 0
        for path in PluginFinder.find_candidates(self.directory):
            try:
                descriptor = describe_artifact(path)
            except (ValueError, SyntaxError, UnicodeDecodeError, OSError) as e:
                self.skipped += 1
                logger.warning(f"⏭️ Skipping malformed plugin artifact {path}: {e}")
                continue
            yield descriptor
        if self.skipped:
            logger.info(f"🔍 Discovery in {self.directory}: skipped {self.skipped} artifact(s)")

    def __repr__(self) -> str:
        return f"<DiscoveryScan {self.directory}>"


def discover(directory: str) -> DiscoveryScan:
    """Найти кандидатов в плагины, не регистрируя их."""
    return DiscoveryScan(directory)


__all__ = ["PluginFinder", "DiscoveryScan", "describe_artifact", "discover"]
