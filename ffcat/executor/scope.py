"""Cancellation scopes shared by processes running as a group."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger("ffcat")


def _run_callback(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception as exc:
        logger.debug("Cancel callback %r failed: %s", callback, exc)


class CancelScope:
    """One-shot cancellation signal with callbacks.

    A scope created with a parent is cancelled when the parent is.
    Callbacks run exactly once, on the thread calling :meth:`cancel`,
    or immediately when added to a scope that is already cancelled. A
    callback that raises is logged and does not stop the others.
    """

    def __init__(self, parent: Optional["CancelScope"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._parent = parent
        if parent is not None:
            parent.add_callback(self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def child(self) -> "CancelScope":
        """Create a scope cancelled together with this one."""
        return CancelScope(self)

    def cancel(self) -> None:
        """Cancel the scope. Calling it again does nothing."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        if self._parent is not None:
            self._parent.remove_callback(self.cancel)
        for callback in callbacks:
            _run_callback(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or ``timeout`` passes; return ``cancelled``."""
        return self._event.wait(timeout)

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        _run_callback(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass
