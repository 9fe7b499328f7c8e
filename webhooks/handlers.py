"""
InternalHandlerRegistry — named in-process targets for INTERNAL subscriptions.

Subscriptions address a handler as ``"component.method"``.  Handlers are
registered at startup, either directly or with the ``@internal_handler``
decorator, and receive the ``WebhookEvent``.  Sync and async callables are
both accepted.
"""

from __future__ import annotations

import inspect
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from utils.schemas import WebhookEvent

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z_][\w-]*\.[A-Za-z_]\w*$")

Handler = Callable[[WebhookEvent], Any]


class HandlerNotFoundError(LookupError):
    pass


class InternalHandlerRegistry:
    """Process-wide singleton mapping "component.method" → callable."""

    _instance: Optional["InternalHandlerRegistry"] = None

    def __new__(cls) -> "InternalHandlerRegistry":
        if cls._instance is None:
            inst = super().__new__(cls)
            inst._handlers: Dict[str, Handler] = {}
            cls._instance = inst
        return cls._instance

    def register(self, name: str, handler: Handler) -> None:
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid handler name {name!r} (expected 'component.method')")
        if name in self._handlers:
            logger.warning("Internal handler %s replaced", name)
        self._handlers[name] = handler

    def get(self, name: str) -> Handler:
        handler = self._handlers.get(name or "")
        if handler is None:
            raise HandlerNotFoundError(f"Internal handler not found: {name}")
        return handler

    def names(self) -> List[str]:
        return sorted(self._handlers)

    async def invoke(self, name: str, event: WebhookEvent) -> Any:
        result = self.get(name)(event)
        if inspect.isawaitable(result):
            result = await result
        return result

    @classmethod
    def reset(cls) -> None:
        """Destroy singleton — only useful in test teardown."""
        cls._instance = None


def internal_handler(name: str) -> Callable[[Handler], Handler]:
    """Decorator: register the function as INTERNAL target ``name``."""

    def decorator(fn: Handler) -> Handler:
        InternalHandlerRegistry().register(name, fn)
        return fn

    return decorator
