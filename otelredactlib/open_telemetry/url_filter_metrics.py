"""Thread-safe counters for the URL filter exporters."""

from threading import Lock


class UrlFilterMetrics:
    """
    Thread-safe metrics tracking for filtered telemetry.
    """

    def __init__(self) -> None:
        """Initialize metrics with thread-safe counters."""
        self._examined_count: int = 0
        self._filtered_count: int = 0
        self._fail_open_count: int = 0
        self._lock = Lock()

    def record_batch(self, examined: int, filtered: int) -> None:
        """
        Record the outcome of one export batch.

        Args:
            examined: Number of items in the batch
            filtered: Number of items dropped from the batch
        """
        with self._lock:
            self._examined_count += examined
            self._filtered_count += filtered

    def increment_fail_open(self, count: int = 1) -> None:
        """Record items forwarded unfiltered because filtering failed."""
        with self._lock:
            self._fail_open_count += count

    def get_examined_count(self) -> int:
        with self._lock:
            return self._examined_count

    def get_filtered_count(self) -> int:
        with self._lock:
            return self._filtered_count

    def get_fail_open_count(self) -> int:
        with self._lock:
            return self._fail_open_count

    def snapshot(self) -> dict[str, int]:
        """
        Get all counters at once.

        Returns:
            Dictionary of counter name to value (copy)
        """
        with self._lock:
            return {
                "examined": self._examined_count,
                "filtered": self._filtered_count,
                "fail_open": self._fail_open_count,
            }
