# customs_app/orchestrator/progress.py
import time
import logging
from typing import Callable, List, Optional

from customs_app.common.declaration_data_structures import ProgressUpdate, ProgressCallback

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(module)s - %(message)s')

# Percentages published when each pipeline state is entered.
STEP_PROGRESS = {
    "validation": 5,
    "navigation": 10,
    "form_fill": 25,
    "submission": 85,
    "qr_extraction": 95,
    "done": 100,
}


class ProgressChannel:
    """
    Broadcasts progress updates of one automation run to any number of subscribers.

    Published percentages never go backwards and are clamped to 0-100. Subscribers
    are called synchronously in subscription order; an exception raised by one
    subscriber is logged and does not reach the publisher or the other subscribers.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._subscribers: List[ProgressCallback] = []
        self._clock = clock
        self.last_progress = 0
        self.history: List[ProgressUpdate] = []

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, step: str, progress: float, message: str) -> ProgressUpdate:
        clamped = int(max(0, min(100, progress)))
        self.last_progress = max(self.last_progress, clamped)
        update = ProgressUpdate(progress=self.last_progress, step=step, message=message, timestamp=self._clock())
        self.history.append(update)

        for callback in list(self._subscribers):
            try:
                callback(update)
            except Exception as e:
                logging.warning(f"ProgressChannel: Subscriber {getattr(callback, '__name__', callback)!r} failed on '{step}': {e}")
        return update


def logging_subscriber(prefix: Optional[str] = None) -> ProgressCallback:
    """Subscriber that writes each update to the log."""
    label = f"{prefix}: " if prefix else ""

    def _log(update: ProgressUpdate) -> None:
        logging.info(f"{label}[{update.progress:3d}%] {update.step} - {update.message}")

    return _log
