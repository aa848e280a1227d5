import inspect
import logging
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


async def invoke_callback(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    """
    Call a consumer callback, awaiting it if it is a coroutine function.

    Consumer errors are logged; they must not stop a poller or a health probe.
    """
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Callback %r raised", callback)


class Subscribers:
    """Ordered listener registry used for domain events."""

    def __init__(self):
        self._listeners: List[Callable[[Any], Any]] = []

    def subscribe(self, listener: Callable[[Any], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def publish(self, event: Any) -> None:
        for listener in list(self._listeners):
            await invoke_callback(listener, event)

    def __len__(self) -> int:
        return len(self._listeners)
