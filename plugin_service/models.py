"""
Модели данных плагин-системы: состояния, записи реестра и дескрипторы.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .constants import PLUGIN_UNKNOWN_VERSION


class PluginState(Enum):
    """Состояния плагина"""
    UNINSTALLED = "UNINSTALLED"
    INSTALLED = "INSTALLED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


# Состояния, в которых у записи есть живой экземпляр плагина
LIVE_STATES = frozenset({PluginState.STARTING, PluginState.RUNNING, PluginState.STOPPING})
STARTABLE_STATES = frozenset({PluginState.INSTALLED, PluginState.STOPPED})
UNLOADABLE_STATES = frozenset({PluginState.INSTALLED, PluginState.STOPPED, PluginState.FAILED})


@dataclass
class PluginRecord:
    """Запись реестра об установленном плагине"""
    name: str
    artifact_path: str
    entry_point: str
    version: str = PLUGIN_UNKNOWN_VERSION
    state: PluginState = PluginState.INSTALLED
    config: Dict[str, str] = field(default_factory=dict)
    instance: Optional[Any] = None
    installed_at: Optional[datetime] = None
    last_start: Optional[datetime] = None
    last_stop: Optional[datetime] = None
    last_error: Optional[str] = None

    def snapshot(self) -> "PluginRecord":
        """Read-only copy: no instance, detached config."""
        return replace(self, config=dict(self.config), instance=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'version': self.version,
            'state': self.state.value,
            'artifact_path': self.artifact_path,
            'entry_point': self.entry_point,
            'config': dict(self.config),
            'installed_at': self.installed_at.isoformat() if self.installed_at else None,
            'last_start': self.last_start.isoformat() if self.last_start else None,
            'last_stop': self.last_stop.isoformat() if self.last_stop else None,
            'last_error': self.last_error,
        }


@dataclass(frozen=True)
class PluginDescriptor:
    """Найденный, но не установленный кандидат в плагины"""
    name: str
    artifact_path: str
    entry_point: Optional[str]
    size_bytes: int


__all__ = [
    "PluginState",
    "PluginRecord",
    "PluginDescriptor",
    "LIVE_STATES",
    "STARTABLE_STATES",
    "UNLOADABLE_STATES",
]
