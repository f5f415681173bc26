# src/coordination/handlers.py
"""
Task handler registry: maps a task kind to the coroutine that executes it.

    registry = TaskHandlerRegistry()

    @registry.handler("frame_processing")
    async def process_frame(payload):
        ...
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Union

from src.errors import ConfigurationError, UnknownTaskKind

logger = logging.getLogger("castquest.coordination.handlers")

TaskHandler = Callable[[Any], Union[Awaitable[Any], Any]]


class TaskHandlerRegistry:
    """Handlers keyed by task kind"""

    def __init__(self, handlers: Dict[str, TaskHandler] = None):
        self._handlers: Dict[str, TaskHandler] = {}
        for kind, handler in (handlers or {}).items():
            self.register(kind, handler)

    def register(self, kind: str, handler: TaskHandler) -> None:
        if not kind:
            raise ConfigurationError("Task kind must be a non-empty string")
        if not callable(handler):
            raise ConfigurationError(f"Handler for '{kind}' is not callable", kind=kind)
        if kind in self._handlers:
            logger.warning(f"Replacing handler for task kind '{kind}'")
        self._handlers[kind] = handler
        logger.debug(f"Registered handler | kind={kind} | handler={getattr(handler, '__name__', handler)!r}")

    def handler(self, kind: str) -> Callable[[TaskHandler], TaskHandler]:
        """Decorator form of register()"""
        def decorator(fn: TaskHandler) -> TaskHandler:
            self.register(kind, fn)
            return fn
        return decorator

    def unregister(self, kind: str) -> None:
        self._handlers.pop(kind, None)

    def get(self, kind: str) -> TaskHandler:
        """
        Raises:
            UnknownTaskKind: no handler registered for kind
        """
        try:
            return self._handlers[kind]
        except KeyError:
            raise UnknownTaskKind(kind, list(self._handlers)) from None

    def kinds(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, kind: object) -> bool:
        return kind in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
