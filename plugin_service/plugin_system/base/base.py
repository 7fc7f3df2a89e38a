"""
Базовый класс плагина.

Плагину не обязательно наследоваться от PluginBase: загрузчик проверяет
только наличие хуков on_start / on_stop / on_configure. Базовый класс даёт
пустые реализации и именованный логгер.
"""
import logging
from typing import Dict, Optional


class PluginBase:
    """Минимальная поверхность плагина."""

    name: Optional[str] = None
    version: Optional[str] = None
    description: str = ""

    def __init__(self) -> None:
        self.config: Dict[str, str] = {}
        self.logger = logging.getLogger(f"plugin.{self.name or type(self).__name__}")

    async def on_configure(self, config: Dict[str, str]) -> None:
        self.config = dict(config)

    async def on_start(self) -> None:
        pass

    async def on_stop(self) -> None:
        pass


__all__ = ["PluginBase"]
