# backend/proxy/cancel.py
import logging
from threading import Lock, Event
from typing import Callable, List, Optional

logger = logging.getLogger("swiftrelay")


class CancellationToken:
    """
    A single-fire cancellation signal.

    Callbacks subscribed before `cancel()` run exactly once when it fires;
    callbacks subscribed afterwards run immediately. Calling `cancel()` again
    is a no-op, so both sides of a relay may trigger it without coordinating.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.event = Event()
        self.reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []
        self._lock = Lock()

    @property
    def cancelled(self) -> bool:
        return self.event.is_set()

    def subscribe(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self.event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Fire the token. Returns True only for the call that actually fired it."""
        with self._lock:
            if self.event.is_set():
                return False
            self.reason = reason
            self.event.set()
            callbacks, self._callbacks = self._callbacks, []

        logger.debug(f"[CANCEL] {self.name or 'token'} fired: {reason}")
        for callback in callbacks:
            callback()
        return True
