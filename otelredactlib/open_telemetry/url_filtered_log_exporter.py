import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from opentelemetry.sdk._logs.export import LogExporter, LogExportResult
from typing_extensions import override

from otelredactlib.open_telemetry.url_filter_engine import (
    DEFAULT_MAX_CACHE_SIZE,
    UrlFilterEngine,
    UrlFilterRulesMixin,
)
from otelredactlib.open_telemetry.url_filter_metrics import UrlFilterMetrics
from otelredactlib.open_telemetry.url_filter_rule import UrlFilterRuleSpec
from otelredactlib.utilities.logger.log_levels import SRC_LOG_LEVELS

logger = logging.getLogger(__name__)
logger.setLevel(SRC_LOG_LEVELS["URL_FILTER"])

DEFAULT_FLUSH_TIMEOUT_MS: int = 30000


def get_log_record(item: Any) -> Any:
    """Return the log record carried by a batch item (LogData or a bare record)."""
    return getattr(item, "log_record", item)


class UrlFilteredLogExporter(UrlFilterRulesMixin, LogExporter):
    """
    A LogExporter that wraps another exporter and drops log records whose
    body or attributes contain a URL matching any configured rule.

    Filtering fails open: a record whose evaluation raises is kept, and if
    the batch as a whole cannot be partitioned it is forwarded unfiltered.
    """

    def __init__(
        self,
        wrapped_exporter: LogExporter,
        rules: Optional[Iterable[UrlFilterRuleSpec]] = None,
        traversal_keys: Optional[Iterable[str]] = None,
        max_cache_size: int = DEFAULT_MAX_CACHE_SIZE,
        metrics: Optional[UrlFilterMetrics] = None,
    ) -> None:
        """
        Initialize the URL filtered log exporter.

        Args:
            wrapped_exporter: The log exporter to wrap
            rules: Rule specifications (strings, compiled regexes or
                   {"pattern": ...} mappings)
            traversal_keys: Attribute keys whose values are scanned for URLs
            max_cache_size: Size of the URL extraction cache
            metrics: Optional metrics tracker (creates one if not provided)
        """
        self.wrapped_exporter = wrapped_exporter
        self._engine = UrlFilterEngine(
            rules=rules, traversal_keys=traversal_keys, max_cache_size=max_cache_size
        )
        self.metrics = metrics or UrlFilterMetrics()

        logger.info(
            "UrlFilteredLogExporter initialized. Rules: %s",
            [str(rule) for rule in self._engine.rules],
        )

    def _should_drop(self, item: Any) -> bool:
        record = get_log_record(item)
        return self._engine.matches(record.body) or self._engine.matches(
            record.attributes
        )

    def _partition(self, batch: Sequence[Any]) -> Tuple[List[Any], int]:
        """
        Split a batch into records to keep and a count of dropped records.

        Returns:
            Tuple of (retained records, number dropped)
        """
        retained: List[Any] = []
        dropped = 0
        for item in batch:
            try:
                if self._should_drop(item):
                    dropped += 1
                    logger.debug(
                        "Filtered out log record with body: %.80r",
                        get_log_record(item).body,
                    )
                    continue
            except Exception as e:
                logger.warning(
                    "Error evaluating URL filter for log record, keeping it: %s", e
                )
                self.metrics.increment_fail_open()
            retained.append(item)
        return retained, dropped

    @override
    def export(self, batch: Sequence[Any]) -> LogExportResult:
        """
        Export log records, dropping the ones that match a filter rule.

        Args:
            batch: The log records to export

        Returns:
            The result of exporting the retained records
        """
        try:
            retained, dropped = self._partition(batch)
        except Exception:
            logger.exception(
                "URL filtering failed for a batch of %d log records. "
                "Exporting the batch unfiltered to prevent data loss.",
                len(batch),
            )
            self.metrics.increment_fail_open(len(batch))
            return self._export_downstream(batch)

        self.metrics.record_batch(examined=len(batch), filtered=dropped)
        if dropped:
            logger.info(
                "URL filter dropped %d of %d log records (%d retained)",
                dropped,
                len(batch),
                len(retained),
            )

        return self._export_downstream(retained)

    def _export_downstream(self, batch: Sequence[Any]) -> LogExportResult:
        try:
            return self.wrapped_exporter.export(batch)
        except Exception:
            logger.exception(
                "Wrapped log exporter failed to export %d records", len(batch)
            )
            return LogExportResult.FAILURE

    @override
    def shutdown(self) -> None:
        """Shutdown the wrapped exporter and log final metrics."""
        try:
            counts = self.metrics.snapshot()
            if counts["filtered"] > 0:
                logger.info("UrlFilteredLogExporter shutdown: %s", counts)
        except Exception:
            logger.exception("Error logging shutdown metrics")
        finally:
            shutdown = getattr(self.wrapped_exporter, "shutdown", None)
            if callable(shutdown):
                shutdown()

    @override
    def force_flush(self, timeout_millis: int = DEFAULT_FLUSH_TIMEOUT_MS) -> bool:
        """Force flush the wrapped exporter."""
        force_flush = getattr(self.wrapped_exporter, "force_flush", None)
        if callable(force_flush):
            return bool(force_flush(timeout_millis))
        return True
