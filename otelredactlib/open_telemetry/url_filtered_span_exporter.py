"""SpanExporter that drops spans with sensitive URLs and all of their descendants.

A span is filtered when its own name or attributes match a URL rule, or when
any ancestor was filtered. Decisions are remembered in a SpanDecisionCache so
that children exported in a later batch than their parent are still dropped.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from opentelemetry.trace import INVALID_SPAN_ID, format_span_id
from typing_extensions import override

from otelredactlib.open_telemetry.protocols import SpanDecisionCache
from otelredactlib.open_telemetry.span_decision_cache import (
    get_shared_span_decision_cache,
)
from otelredactlib.open_telemetry.url_filter_config import ENV_VAR_VERBOSITY
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

# Default timeout for force_flush in milliseconds (30 seconds)
DEFAULT_FLUSH_TIMEOUT_MS: int = 30000

# At this verbosity every span is exported unfiltered
BYPASS_VERBOSITY: str = "trace"


def get_span_id(span: ReadableSpan) -> str:
    """Return the hex-encoded id of a span."""
    context = span.context
    if context is None:
        raise ValueError(f"Span {span.name!r} has no span context")
    return format_span_id(context.span_id)


def get_parent_span_id(span: ReadableSpan) -> Optional[str]:
    """Return the hex-encoded parent id of a span, or None for root spans."""
    parent = span.parent
    if parent is None or parent.span_id == INVALID_SPAN_ID:
        return None
    return format_span_id(parent.span_id)


class UrlFilteredSpanExporter(UrlFilterRulesMixin, SpanExporter):
    """
    A SpanExporter that wraps another exporter and filters out spans that
    touch a sensitive URL, cascading the decision down to every descendant.

    Filtering fails open: a span whose evaluation raises is kept, and if the
    batch as a whole cannot be processed it is exported unfiltered.
    """

    def __init__(
        self,
        wrapped_exporter: SpanExporter,
        rules: Optional[Iterable[UrlFilterRuleSpec]] = None,
        traversal_keys: Optional[Iterable[str]] = None,
        max_cache_size: int = DEFAULT_MAX_CACHE_SIZE,
        decision_cache: Optional[SpanDecisionCache] = None,
        verbosity: Optional[str] = None,
        metrics: Optional[UrlFilterMetrics] = None,
    ) -> None:
        """
        Initialize the URL filtered span exporter.

        Args:
            wrapped_exporter: The span exporter to wrap
            rules: Rule specifications (strings, compiled regexes or
                   {"pattern": ...} mappings)
            traversal_keys: Attribute keys whose values are scanned for URLs
            max_cache_size: Size of the URL extraction cache
            decision_cache: Cache of filtered span ids. Defaults to the
                            process-wide shared cache.
            verbosity: Verbosity override. "trace" disables filtering. When
                       None, OTEL_URL_FILTER_VERBOSITY is read on each export.
            metrics: Optional metrics tracker (creates one if not provided)
        """
        self.wrapped_exporter = wrapped_exporter
        self._engine = UrlFilterEngine(
            rules=rules, traversal_keys=traversal_keys, max_cache_size=max_cache_size
        )
        self._decision_cache: SpanDecisionCache = (
            decision_cache
            if decision_cache is not None
            else get_shared_span_decision_cache()
        )
        self._verbosity = verbosity
        self.metrics = metrics or UrlFilterMetrics()

        logger.info(
            "UrlFilteredSpanExporter initialized. Rules: %s, decision cache: %s",
            [str(rule) for rule in self._engine.rules],
            type(self._decision_cache).__name__,
        )

    @property
    def decision_cache(self) -> SpanDecisionCache:
        return self._decision_cache

    def clear_filter_cache(self) -> None:
        """Forget every cached span decision."""
        self._decision_cache.clear()

    def get_filter_cache_size(self) -> int:
        return self._decision_cache.size()

    def _is_bypassed(self) -> bool:
        verbosity = self._verbosity or os.environ.get(ENV_VAR_VERBOSITY, "")
        return verbosity.strip().lower() == BYPASS_VERBOSITY

    def _span_matches(self, span: ReadableSpan) -> bool:
        return self._engine.matches(span.name) or self._engine.matches(
            span.attributes
        )

    def _mark_filtered(self, span_ids: Iterable[str]) -> None:
        for span_id in span_ids:
            self._decision_cache.set(span_id, True)

    def _is_filtered(
        self, span: ReadableSpan, spans_by_id: Dict[str, ReadableSpan]
    ) -> bool:
        """
        Decide whether a span is filtered, by ancestry first and then by its own content.

        Args:
            span: The span to evaluate
            spans_by_id: Spans of the current batch keyed by hex span id

        Returns:
            True if the span should not be exported
        """
        span_id = get_span_id(span)
        if self._decision_cache.get(span_id) is True:
            return True

        visited: List[str] = [span_id]
        parent_id = get_parent_span_id(span)
        while parent_id is not None:
            if parent_id in visited:
                logger.warning(
                    "Cyclic parent chain detected at span %s, treating as not filtered",
                    parent_id,
                )
                break

            if self._decision_cache.get(parent_id) is True:
                self._mark_filtered(visited)
                return True

            parent = spans_by_id.get(parent_id)
            if parent is None:
                # Parent was exported earlier without being flagged
                break

            if self._span_matches(parent):
                self._mark_filtered([parent_id, *visited])
                return True

            visited.append(parent_id)
            parent_id = get_parent_span_id(parent)

        if self._span_matches(span):
            self._decision_cache.set(span_id, True)
            return True
        return False

    def _partition(
        self, spans: Sequence[ReadableSpan]
    ) -> Tuple[List[ReadableSpan], int]:
        spans_by_id: Dict[str, ReadableSpan] = {}
        for span in spans:
            try:
                spans_by_id[get_span_id(span)] = span
            except Exception as e:
                logger.debug("Span without a usable id left out of batch index: %s", e)

        retained: List[ReadableSpan] = []
        dropped = 0
        for span in spans:
            try:
                if self._is_filtered(span, spans_by_id):
                    dropped += 1
                    logger.debug("Filtered out span: %s", span.name)
                    continue
            except Exception as e:
                logger.warning(
                    "Error evaluating URL filter for span, keeping it: %s", e
                )
                self.metrics.increment_fail_open()
            retained.append(span)
        return retained, dropped

    @override
    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """
        Export spans, filtering out the ones that match a rule or descend from one.

        Args:
            spans: The spans to export

        Returns:
            The result of exporting the retained spans
        """
        if self._is_bypassed():
            return self._export_downstream(spans)

        try:
            retained, dropped = self._partition(spans)
        except Exception:
            logger.exception(
                "URL filtering failed for a batch of %d spans. "
                "Exporting the batch unfiltered to prevent data loss.",
                len(spans),
            )
            self.metrics.increment_fail_open(len(spans))
            return self._export_downstream(spans)

        self.metrics.record_batch(examined=len(spans), filtered=dropped)
        if dropped:
            logger.info(
                "URL filter dropped %d of %d spans (%d retained)",
                dropped,
                len(spans),
                len(retained),
            )

        return self._export_downstream(retained)

    def _export_downstream(self, spans: Sequence[Any]) -> SpanExportResult:
        try:
            return self.wrapped_exporter.export(spans)
        except Exception:
            logger.exception("Wrapped span exporter failed to export %d spans", len(spans))
            return SpanExportResult.FAILURE

    @override
    def shutdown(self) -> None:
        """Shutdown the wrapped exporter and log final metrics."""
        try:
            counts = self.metrics.snapshot()
            if counts["filtered"] > 0:
                logger.info("UrlFilteredSpanExporter shutdown: %s", counts)
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
