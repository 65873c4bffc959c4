"""Marshal work onto the thread that owns the UI."""

import logging
import queue
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class MainThreadExecutor:
    """Run callbacks on the thread that calls :meth:`run`.

    Clipboard and keystroke injection are not safe from arbitrary worker
    threads, so background work hands them over through :meth:`call_soon`.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[Callable[[], None] | None] = queue.Queue()
        self._closed = threading.Event()

    def call_soon(self, callback: Callable[[], None]) -> None:
        if self._closed.is_set():
            raise RuntimeError("UI executor is shut down")
        self._queue.put(callback)

    def run(self) -> None:
        """Drain callbacks until :meth:`shutdown` is called."""
        while True:
            callback = self._queue.get()
            if callback is None:
                break
            try:
                callback()
            except Exception as e:
                logger.error(f"UI callback failed: {e}", exc_info=True)

    def run_pending(self) -> int:
        """Run whatever is queued right now without blocking. Returns the count."""
        count = 0
        while True:
            try:
                callback = self._queue.get_nowait()
            except queue.Empty:
                return count
            if callback is None:
                return count
            try:
                callback()
            except Exception as e:
                logger.error(f"UI callback failed: {e}", exc_info=True)
            count += 1

    def shutdown(self) -> None:
        self._closed.set()
        self._queue.put(None)
