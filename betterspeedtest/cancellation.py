"""Process-wide cancellation for in-flight probe and session subprocesses."""

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Callable

from betterspeedtest.errors import MeasurementCancelled

logger = logging.getLogger(__name__)

# Same set the shell tool trapped.
CANCEL_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)


class CancellationToken:
    """Shared cancel flag plus the cleanup callbacks of running components.

    ``cancel()`` may be called from any thread, including directly from a
    signal handler interrupting code that holds the lock, so the lock is
    reentrant and callbacks run on a snapshot outside it.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.RLock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Set the flag and run every registered callback. Idempotent."""
        with self._lock:
            first = not self._event.is_set()
            self._event.set()
            callbacks = list(self._callbacks)

        if first:
            logger.info("Cancellation requested: stopping %d components", len(callbacks))

        for callback in callbacks:
            callback()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise MeasurementCancelled()

    def register(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._callbacks.append(callback)
            already_cancelled = self._event.is_set()
        # Late registration still gets cleaned up.
        if already_cancelled:
            callback()

    def unregister(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    @contextmanager
    def attached(self, *callbacks: Callable[[], None]):
        """Register callbacks for the duration of a ``with`` block."""
        for callback in callbacks:
            self.register(callback)
        try:
            yield self
        finally:
            for callback in callbacks:
                self.unregister(callback)


def install_signal_handlers(token: CancellationToken) -> dict:
    """Route interrupt signals to ``token.cancel()``.

    The handler hands the work to a short-lived thread: the interrupted frame
    may be blocked in ``Popen.wait()`` holding that process's waitpid lock,
    and reaping from inside the handler would deadlock on it.

    Must be called from the main thread. Returns the previous handlers so
    callers can restore them.
    """

    def _handler(signum, frame):
        logger.debug("Received signal %d", signum)
        threading.Thread(target=token.cancel, name="cancel", daemon=True).start()

    previous = {}
    for signum in CANCEL_SIGNALS:
        previous[signum] = signal.signal(signum, _handler)
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)
