"""
Plugin error taxonomy.

Lifecycle and loader errors leave the plugin in a well-defined state and are
raised with their original cause chained. The service facade wraps every
fallible operation into a single ``PluginOperationError``.
"""
from typing import Optional


class PluginError(Exception):
    """Base class for every plugin-system failure."""


class PluginNotFoundError(PluginError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"Plugin not found: {name}")
        self.name = name


class DuplicateNameError(PluginError):
    def __init__(self, name: str):
        super().__init__(f"Plugin name already registered: {name}")
        self.name = name


class AlreadyInstalledError(PluginError):
    def __init__(self, name: str, state: str):
        super().__init__(f"Plugin already installed: {name} (state: {state})")
        self.name = name
        self.state = state


class InvalidStateError(PluginError):
    def __init__(self, name: str, state: str, operation: str):
        super().__init__(f"Cannot {operation} plugin '{name}' in state {state}")
        self.name = name
        self.state = state
        self.operation = operation


class ArtifactNotFoundError(PluginError):
    pass


class EntryPointNotFoundError(PluginError):
    pass


class IncompatibleInterfaceError(PluginError):
    pass


class PluginTimeoutError(PluginError):
    pass


class OperationCancelledError(PluginError):
    pass


class PluginInternalError(PluginError):
    pass


class PluginOperationError(Exception):
    """
    Единственный тип ошибки, который фасад отдаёт наружу.

    Хранит человекочитаемое сообщение и исходную причину (``cause``),
    которая также доступна через ``__cause__``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def cause_message(self) -> str:
        """
        Сообщение причины для клиента.

        Берётся первая PluginError в цепочке: её текст уже описывает ошибку
        в терминах плагина, а причины под ней (ImportError и т.п.) содержат
        внутренние имена модулей. Если PluginError в цепочке нет (упал хук
        плагина), отдаётся сообщение самой глубокой причины.
        """
        current: BaseException = self
        message = self.message
        seen = {id(self)}
        while True:
            nxt = current.__cause__ or getattr(current, "cause", None)
            if nxt is None or id(nxt) in seen:
                break
            seen.add(id(nxt))
            current = nxt
            if isinstance(current, PluginError):
                return str(current) or message
            # asyncio.TimeoutError и подобные приходят без текста
            if str(current):
                message = str(current)
        return message


__all__ = [
    "PluginError",
    "PluginNotFoundError",
    "DuplicateNameError",
    "AlreadyInstalledError",
    "InvalidStateError",
    "ArtifactNotFoundError",
    "EntryPointNotFoundError",
    "IncompatibleInterfaceError",
    "PluginTimeoutError",
    "OperationCancelledError",
    "PluginInternalError",
    "PluginOperationError",
]
