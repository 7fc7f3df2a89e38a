"""
Модуль для чтения метаданных плагинов из plugin.json
"""

import json
import logging
from typing import Dict, Optional, Any, Union

logger = logging.getLogger(__name__)


class PluginMetadataReader:
    """Читатель метаданных плагинов"""

    KNOWN_FIELDS = ['name', 'version', 'entry_point', 'description']

    @staticmethod
    def read_metadata(plugin_json_path: str) -> Optional[Dict[str, Any]]:
        """
        Прочитать метаданные плагина из plugin.json.

        Args:
            plugin_json_path: Путь к файлу plugin.json

        Returns:
            Dict с метаданными или None, если файла нет

        Raises:
            ValueError: файл есть, но это не JSON-объект
        """
        try:
            with open(plugin_json_path, 'rb') as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        return PluginMetadataReader.parse_metadata(raw, plugin_json_path)

    @staticmethod
    def parse_metadata(raw: Union[bytes, str], source: str) -> Dict[str, Any]:
        """Разобрать содержимое plugin.json (например, прочитанное из архива)."""
        try:
            metadata = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValueError(f"Invalid JSON in {source}: {e}") from e

        if not isinstance(metadata, dict):
            raise ValueError(f"{source} must contain a JSON object")

        for key in PluginMetadataReader.KNOWN_FIELDS:
            value = metadata.get(key)
            if value is not None and not isinstance(value, str):
                logger.warning(f"⚠️ Field '{key}' in {source} is not a string, ignoring it")
                metadata.pop(key)

        logger.debug(f"✅ Read plugin metadata from {source}")
        return metadata
