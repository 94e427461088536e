"""MessageHook — subscription point for inbound push messages.

The host's socket layer calls ``dispatch(message_type, data)`` for every
message it receives. Handler errors are logged and never reach the host.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

logger = logging.getLogger(__name__)

Handler = Callable[[dict], None]


class MessageHook:
    """Per-message-type handler registry."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, message_type: str, handler: Handler) -> None:
        if handler not in self._handlers[message_type]:
            self._handlers[message_type].append(handler)

    def off(self, message_type: str, handler: Handler) -> None:
        handlers = self._handlers.get(message_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handler_count(self, message_type: str | None = None) -> int:
        if message_type is not None:
            return len(self._handlers.get(message_type, []))
        return sum(len(h) for h in self._handlers.values())

    def dispatch(self, message_type: str, data: dict) -> None:
        for handler in list(self._handlers.get(message_type, [])):
            try:
                handler(data)
            except Exception:
                logger.exception("Handler for %s failed", message_type)
