"""Signal handling for the worker process.

The first SIGTERM/SIGINT asks the lifecycle to stop after the in-flight job.
A second one exits immediately; the job it was processing stays claimed
until another worker's crash-recovery scan resets it.
"""

import os
import signal
from types import FrameType

from registry_worker.logging.logger import Log
from registry_worker.worker.lifecycle import WorkerLifecycle


class SignalHandler:
    def __init__(self, lifecycle: WorkerLifecycle) -> None:
        self._lifecycle = lifecycle
        self._received = 0

    def __call__(self, signum: int, frame: FrameType | None) -> None:
        self._received += 1
        name = signal.Signals(signum).name
        if self._received == 1:
            Log.info(f"Received {name}, stopping after the current job (send again to force exit)")
            self._lifecycle.request_stop()
            return
        Log.warning(f"Received {name} again, exiting immediately")
        os._exit(1)

    def install(self) -> None:
        signal.signal(signal.SIGTERM, self)
        signal.signal(signal.SIGINT, self)
