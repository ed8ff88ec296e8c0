"""Per-session cancellation token."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable


logger = logging.getLogger(__name__)


class CancellationToken:
    """Cancel-once flag with callbacks, shared by the transport and the monitor.

    Callbacks registered after cancellation run immediately, so a transport
    that attaches late still gets aborted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return
        callback()

    def cancel(self) -> bool:
        """Cancel the token; returns False if it was already cancelled."""
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                # Remaining callbacks still run
                logger.error(f"Cancellation callback failed: {e}", exc_info=True)
        return True
