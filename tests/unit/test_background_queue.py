"""Unit tests for BackgroundQueue."""

import threading

import pytest
from unittest.mock import Mock

from deathzone_analytics.core.background_queue import BackgroundQueue


class TestBackgroundQueue:
    """Test the drop-oldest hand-off queue."""

    def test_items_handled_in_order(self):
        """Test items reach the handler in submission order."""
        handled = []
        worker = BackgroundQueue(handled.append, name="test")

        for i in range(5):
            assert worker.submit(i) is True

        assert worker.close(timeout=5) is True
        assert handled == [0, 1, 2, 3, 4]
        assert worker.handled_count == 5

    def test_no_thread_until_first_submit(self):
        """Test closing an unused queue returns immediately."""
        worker = BackgroundQueue(Mock(), name="test")

        assert worker.close(timeout=0) is True

    def test_handler_errors_do_not_stop_thread(self):
        """Test a failing item is counted and later items still run."""
        handled = []

        def handler(item):
            if item == "bad":
                raise RuntimeError("boom")
            handled.append(item)

        worker = BackgroundQueue(handler, name="test")
        worker.submit("bad")
        worker.submit("good")
        worker.close(timeout=5)

        assert handled == ["good"]
        assert worker.error_count == 1

    def test_full_queue_drops_oldest(self):
        """Test the oldest pending item is dropped when full."""
        started = threading.Event()
        release = threading.Event()
        handled = []

        def handler(item):
            started.set()
            release.wait(5)
            handled.append(item)

        worker = BackgroundQueue(handler, name="test", max_size=2)
        worker.submit("a")
        assert started.wait(5)

        for item in ["b", "c", "d"]:
            worker.submit(item)

        assert worker.dropped_count == 1
        release.set()
        worker.close(timeout=5)

        assert handled == ["a", "c", "d"]

    def test_submit_after_close(self):
        """Test closed queues refuse new items."""
        handler = Mock()
        worker = BackgroundQueue(handler, name="test")
        worker.close()

        assert worker.submit("late") is False
        assert worker.closed is True
        handler.assert_not_called()

    def test_close_timeout(self):
        """Test close reports a handler that is still running."""
        release = threading.Event()
        worker = BackgroundQueue(lambda item: release.wait(5), name="test")
        worker.submit("slow")

        assert worker.close(timeout=0.1) is False

        release.set()

    def test_invalid_size(self):
        """Test a non-positive size is rejected."""
        with pytest.raises(ValueError):
            BackgroundQueue(Mock(), name="test", max_size=0)
