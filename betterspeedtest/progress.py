"""Terminal spinner shown while a phase is running."""

import itertools
import sys
import threading

FRAMES = "/-\\|"


class Spinner:
    """Draws a one-character spinner on a TTY from a background thread.

    Does nothing when the stream is not a terminal, so redirected output
    contains only reports.
    """

    def __init__(self, stream=None, interval: float = 1.0):
        self.stream = stream if stream is not None else sys.stderr
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def enabled(self) -> bool:
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    def start(self) -> None:
        if not self.enabled or self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._spin, name="spinner", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self.stream.write(" \b")
        self.stream.flush()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def _spin(self) -> None:
        for frame in itertools.cycle(FRAMES):
            self.stream.write(frame + "\b")
            self.stream.flush()
            if self._stop.wait(self.interval):
                return
