from . import metrics, plugins

__all__ = ["metrics", "plugins"]
