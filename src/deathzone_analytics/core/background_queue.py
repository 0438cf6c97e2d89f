"""
Background Queue

Bounded hand-off between the ingestion thread and slow collaborators
(database inserts, RabbitMQ publishing). Producers never block: when the
queue is full the oldest pending item is dropped. A single daemon thread
drains the queue in submission order.
"""

import logging
import queue
import threading
from typing import Any, Callable, Optional

from ..metrics import BACKGROUND_ITEMS_DROPPED, BACKGROUND_QUEUE_PENDING


class BackgroundQueue:
    """
    Drop-oldest queue with one handler thread.

    The thread is started on the first submit. close() stops accepting new
    items, lets the thread finish what is already queued and joins it.

    Example:
        >>> writer = BackgroundQueue(store.write_event, name="event_store")
        >>> writer.submit(event)
        >>> writer.close(timeout=10)
    """

    POLL_INTERVAL = 0.2

    def __init__(
        self,
        handler: Callable[[Any], Any],
        name: str,
        max_size: int = 10000,
        logger: Optional[logging.Logger] = None,
    ):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")

        self.handler = handler
        self.name = name
        self.max_size = max_size
        self.logger = logger or logging.getLogger(__name__)

        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_size)
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

        self.submitted_count = 0
        self.handled_count = 0
        self.dropped_count = 0
        self.error_count = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, item: Any) -> bool:
        """
        Queue an item for the handler thread without blocking.

        Returns:
            True if queued, False if the queue is closed
        """
        with self._lock:
            if self._closed:
                self.dropped_count += 1
                BACKGROUND_ITEMS_DROPPED.labels(queue_name=self.name).inc()
                self.logger.warning(f"{self.name} queue is closed, dropping item")
                return False

            self._ensure_thread()

            while True:
                try:
                    self._queue.put_nowait(item)
                    break
                except queue.Full:
                    self._drop_oldest()

            self.submitted_count += 1
            BACKGROUND_QUEUE_PENDING.labels(queue_name=self.name).set(self._queue.qsize())
            return True

    def close(self, timeout: Optional[float] = 10.0) -> bool:
        """
        Stop accepting items and wait for the queued ones to be handled.

        Returns:
            True if the handler thread finished within timeout
        """
        with self._lock:
            self._closed = True
            thread = self._thread

        if thread is None:
            return True

        thread.join(timeout)
        if thread.is_alive():
            self.logger.warning(
                f"{self.name} queue did not drain within {timeout}s, "
                f"{self._queue.qsize()} items pending"
            )
            return False

        self.logger.info(
            f"{self.name} queue closed: {self.handled_count} handled, "
            f"{self.dropped_count} dropped, {self.error_count} failed"
        )
        return True

    def _ensure_thread(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._thread = threading.Thread(target=self._run, name=f"{self.name}-writer", daemon=True)
        self._thread.start()

    def _drop_oldest(self) -> None:
        try:
            self._queue.get_nowait()
        except queue.Empty:
            return

        self._queue.task_done()
        self.dropped_count += 1
        BACKGROUND_ITEMS_DROPPED.labels(queue_name=self.name).inc()
        self.logger.warning(f"{self.name} queue full ({self.max_size}), dropped oldest item")

    def _run(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=self.POLL_INTERVAL)
            except queue.Empty:
                if self._closed:
                    return
                continue

            try:
                self.handler(item)
                self.handled_count += 1
            except Exception as e:
                self.error_count += 1
                self.logger.error(f"{self.name} handler failed: {e}", exc_info=True)
            finally:
                self._queue.task_done()
                BACKGROUND_QUEUE_PENDING.labels(queue_name=self.name).set(self._queue.qsize())
