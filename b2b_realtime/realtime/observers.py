"""Multicast callback registry used for every realtime subscription surface."""

from __future__ import annotations

import inspect
import itertools
import logging
from typing import Any, Callable, Dict, Generic, List, TypeVar

log = logging.getLogger("realtime")

H = TypeVar("H", bound=Callable[..., Any])

Unsubscribe = Callable[[], None]


class Multicast(Generic[H]):
    """Deliver one event to many independent subscribers.

    Every ``subscribe`` call gets its own token, so registering the same
    callable twice yields two subscriptions and each unsubscriber only removes
    its own entry. Handlers may be plain functions or coroutine functions.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: Dict[int, H] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, handler: H) -> Unsubscribe:
        token = next(self._tokens)
        self._handlers[token] = handler
        log.debug("[RT SUBSCRIBE] channel=%s total=%s", self.name, len(self._handlers))

        def unsubscribe() -> None:
            if self._handlers.pop(token, None) is not None:
                log.debug("[RT UNSUBSCRIBE] channel=%s remaining=%s", self.name, len(self._handlers))

        return unsubscribe

    async def emit(self, *args: Any) -> int:
        """Call every handler registered at the time of the call.

        A failing handler is logged and does not prevent delivery to the
        others. Returns the number of handlers that completed.
        """

        delivered = 0
        for handler in self._snapshot():
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("[RT HANDLER ERROR] channel=%s handler=%r", self.name, handler)
                continue
            delivered += 1
        return delivered

    def clear(self) -> None:
        self._handlers.clear()

    def _snapshot(self) -> List[H]:
        return list(self._handlers.values())

    def __len__(self) -> int:
        return len(self._handlers)

    def __bool__(self) -> bool:
        return True
