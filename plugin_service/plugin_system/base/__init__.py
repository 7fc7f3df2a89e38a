from .base import PluginBase

__all__ = ["PluginBase"]
