from __future__ import annotations

import threading
from collections.abc import Callable

from receipt_processor.core.config import settings
from receipt_processor.core.logging import get_logger, log_event, log_exception
from receipt_processor.modules.queue.service import TickReport, drain_retry_queue

logger = get_logger(__name__)


class RetryQueueWorker:
    """
    Periodic retry-queue runner on a daemon thread.

    `stop()` only prevents further ticks; a tick that is already running finishes.
    """

    def __init__(
        self,
        *,
        interval_seconds: float | None = None,
        drain: Callable[[], TickReport | None] = drain_retry_queue,
    ) -> None:
        if interval_seconds is None:
            interval_seconds = settings.retry_queue_interval_seconds
        self._interval = float(interval_seconds)
        self._drain = drain
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="retry-queue-worker", daemon=True
        )
        self._thread.start()
        log_event(logger, "retry_queue.worker.start", interval_seconds=self._interval)

    def stop(self, *, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None
        log_event(logger, "retry_queue.worker.stop")

    def run_once(self) -> TickReport | None:
        return self._drain()

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except Exception:  # noqa: BLE001
                log_exception(logger, "retry_queue.worker.tick_error")
