"""
Service configuration: централизованная загрузка настроек сервиса.

Источники (по возрастанию приоритета):
- значения по умолчанию из constants.py
- YAML/JSON файл, путь в PLUGIN_SERVICE_CONFIG
- переменные окружения (PLUGINS_DIR, PLUGIN_LOAD_TIMEOUT, ...)
"""
import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .constants import (
    DEFAULT_HOST,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PLUGINS_DIR,
    DEFAULT_PORT,
    PLUGIN_HOOK_TIMEOUT,
    PLUGIN_LOAD_TIMEOUT,
)

logger = logging.getLogger(__name__)


class ConfigSource(Enum):
    """Источники конфигурации"""
    FILE = "file"
    ENV = "env"
    DEFAULT = "default"


# env var -> поле ServiceSettings
ENV_VARS = {
    'PLUGINS_DIR': 'plugins_dir',
    'PLUGIN_LOAD_TIMEOUT': 'load_timeout',
    'PLUGIN_HOOK_TIMEOUT': 'hook_timeout',
    'PLUGIN_SERVICE_HOST': 'host',
    'PLUGIN_SERVICE_PORT': 'port',
    'LOG_LEVEL': 'log_level',
}


class ServiceSettings(BaseModel):
    """Настройки plugin-service"""
    plugins_dir: str = DEFAULT_PLUGINS_DIR
    load_timeout: float = Field(default=PLUGIN_LOAD_TIMEOUT, gt=0)
    hook_timeout: float = Field(default=PLUGIN_HOOK_TIMEOUT, gt=0)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL
    # Начальная конфигурация плагинов, применяется при установке
    plugin_configs: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    source: ConfigSource = ConfigSource.DEFAULT

    @field_validator('log_level')
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator('plugin_configs', mode='before')
    @classmethod
    def _stringify_plugin_configs(cls, value: Any) -> Any:
        # YAML отдаёт числа и bool как есть, конфиг плагина хранит только строки
        if not isinstance(value, dict):
            return value
        return {
            str(name): {str(k): str(v) for k, v in (cfg or {}).items()}
            for name, cfg in value.items()
        }

    @classmethod
    def from_file(cls, path: str) -> "ServiceSettings":
        """Прочитать настройки из YAML или JSON файла."""
        data = _read_config_file(Path(path))
        settings = cls(**data)
        settings.source = ConfigSource.FILE
        logger.info(f"Loaded service settings from {path}")
        return settings

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "ServiceSettings":
        """
        Собрать настройки из окружения.

        Если задан PLUGIN_SERVICE_CONFIG, сначала читается файл, затем
        переменные окружения перекрывают его значения.
        """
        environ = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        source = ConfigSource.DEFAULT

        config_path = environ.get('PLUGIN_SERVICE_CONFIG')
        if config_path:
            data.update(_read_config_file(Path(config_path)))
            source = ConfigSource.FILE

        for env_name, field_name in ENV_VARS.items():
            value = environ.get(env_name)
            if value is not None and value != '':
                data[field_name] = value
                source = ConfigSource.ENV

        try:
            settings = cls(**data)
        except ValidationError as e:
            logger.error(f"Invalid service settings: {e}")
            raise
        settings.source = source
        return settings


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix.lower() in ('.yaml', '.yml'):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


__all__ = ["ServiceSettings", "ConfigSource"]
