"""Synchronous publish/subscribe for client session events."""
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Named topics with ordered listener lists.

    Listeners run synchronously in registration order. A listener that raises
    is logged and skipped; the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, listener: Listener) -> Listener:
        """Register a listener. Returns it so ``on`` can be used as a decorator helper."""
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def off(self, event: str, listener: Optional[Listener] = None) -> None:
        """Remove one listener, or every listener for ``event`` when none is given."""
        if listener is None:
            self._listeners.pop(event, None)
            return
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, data: Any = None) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(data)
            except Exception:
                logger.exception(f"[Session] Error in {event} listener")

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))
