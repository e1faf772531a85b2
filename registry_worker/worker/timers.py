import threading
from collections.abc import Callable

from registry_worker.logging.logger import Log


class RepeatingTimer(threading.Thread):
    """Daemon thread calling ``func`` every ``interval`` seconds until cancelled.

    A failing tick is logged and the timer keeps running.
    """

    def __init__(self, interval: float, func: Callable[[], None], name: str) -> None:
        super().__init__(name=name, daemon=True)
        self._interval = interval
        self._func = func
        self._cancelled = threading.Event()

    def run(self) -> None:
        while not self._cancelled.wait(self._interval):
            try:
                self._func()
            except Exception as exc:
                Log.error(f"Timer {self.name} tick failed: {exc}")

    def cancel(self) -> None:
        self._cancelled.set()
