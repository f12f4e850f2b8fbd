import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from opentelemetry.attributes import BoundedAttributes
from opentelemetry.sdk._logs.export import LogExporter, LogExportResult
from opentelemetry.trace import (
    INVALID_SPAN_ID,
    INVALID_TRACE_ID,
    format_span_id,
    format_trace_id,
)
from typing_extensions import override

from otelredactlib.open_telemetry.attribute_names import ChunkAttributeNames
from otelredactlib.open_telemetry.chunking import (
    DEFAULT_CHUNK_EVENT_NAME,
    DEFAULT_MAX_CHUNK_CHARS,
    OversizedField,
    find_oversized_field,
    is_chunk_metadata_key,
)
from otelredactlib.open_telemetry.url_filtered_log_exporter import get_log_record
from otelredactlib.utilities.logger.log_levels import SRC_LOG_LEVELS

logger = logging.getLogger(__name__)
logger.setLevel(SRC_LOG_LEVELS["CHUNKING"])

DEFAULT_FLUSH_TIMEOUT_MS: int = 30000
DEFAULT_LOG_SOURCE_NAME: str = "log"


def _rebuild_attributes(
    original: Optional[Mapping[str, Any]], attributes: Dict[str, Any]
) -> Mapping[str, Any]:
    """Keep SDK records on BoundedAttributes so exporters can still read `dropped`."""
    if isinstance(original, BoundedAttributes):
        # Unbounded: chunk attributes must never be evicted by the record limit
        return BoundedAttributes(maxlen=None, attributes=attributes, immutable=False)
    return attributes


def body_chunk_key(attributes: Mapping[str, Any]) -> str:
    """
    Pick the key the log body is chunked under.

    Returns ``body`` unless the record already has an attribute with that name
    or chunk metadata derived from it, in which case ``log.`` is prepended
    until the key is free.
    """
    key = ChunkAttributeNames.BODY_KEY
    while key in attributes or any(
        existing.startswith(f"{key}_") and is_chunk_metadata_key(existing)
        for existing in attributes
    ):
        key = f"{ChunkAttributeNames.BODY_KEY_FALLBACK_PREFIX}{key}"
    return key


class ChunkingLogExporter(LogExporter):
    """
    A LogExporter that splits oversized log bodies and attributes into
    indexed ``{key}_chunk_<n>`` attributes on the same record.

    Log records have no child events, so every chunk stays on the record
    together with ``{key}_chunked``, ``{key}_totalChunks`` and
    ``{key}_chunkContextId`` metadata.
    """

    def __init__(
        self,
        wrapped_exporter: LogExporter,
        max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS,
        keep_original_key: bool = False,
        event_name: str = DEFAULT_CHUNK_EVENT_NAME,
    ) -> None:
        """
        Initialize the chunking log exporter.

        Args:
            wrapped_exporter: The log exporter to wrap
            max_chunk_chars: Fields longer than this are chunked
            keep_original_key: Keep a truncated preview under the original key
                               instead of removing it
            event_name: Accepted for symmetry with ChunkingSpanExporter;
                        log records carry chunks as attributes
        """
        if max_chunk_chars <= 0:
            raise ValueError("max_chunk_chars must be positive")
        self.wrapped_exporter = wrapped_exporter
        self.max_chunk_chars = max_chunk_chars
        self.keep_original_key = keep_original_key
        self.event_name = event_name

        logger.info(
            "ChunkingLogExporter initialized. max_chunk_chars: %d, keep_original_key: %s",
            self.max_chunk_chars,
            self.keep_original_key,
        )

    def _chunk_attributes(self, field: OversizedField) -> Dict[str, Any]:
        attributes = field.metadata_attributes(include_context_id=True)
        for chunk in field.chunks:
            attributes[
                f"{field.key}{ChunkAttributeNames.CHUNK_SUFFIX}{chunk.chunk_index}"
            ] = chunk.chunk_text
        return attributes

    def _chunk_record(self, item: Any) -> bool:
        """
        Chunk the oversized fields of one log record in place.

        Returns:
            True if anything was chunked
        """
        record = get_log_record(item)
        raw_trace_id = getattr(record, "trace_id", None)
        raw_span_id = getattr(record, "span_id", None)
        trace_id = (
            format_trace_id(raw_trace_id)
            if raw_trace_id and raw_trace_id != INVALID_TRACE_ID
            else None
        )
        span_id = (
            format_span_id(raw_span_id)
            if raw_span_id and raw_span_id != INVALID_SPAN_ID
            else None
        )
        scope = getattr(item, "instrumentation_scope", None)
        source_name = getattr(scope, "name", None) or DEFAULT_LOG_SOURCE_NAME

        chunked_any = False
        attributes: Mapping[str, Any] = record.attributes or {}
        new_attributes: Dict[str, Any] = {}

        body_field = find_oversized_field(
            body_chunk_key(attributes),
            record.body,
            self.max_chunk_chars,
            trace_id,
            span_id,
            source_name,
        )

        for key, value in attributes.items():
            field = find_oversized_field(
                key, value, self.max_chunk_chars, trace_id, span_id, source_name
            )
            if field is None:
                new_attributes[key] = value
                continue
            chunked_any = True
            if self.keep_original_key:
                new_attributes[key] = field.preview
            new_attributes.update(self._chunk_attributes(field))

        if body_field is not None:
            chunked_any = True
            new_attributes.update(self._chunk_attributes(body_field))

        if chunked_any:
            record.attributes = _rebuild_attributes(record.attributes, new_attributes)
        if body_field is not None:
            record.body = (
                body_field.preview
                if self.keep_original_key
                else ChunkAttributeNames.CHUNKED_BODY_PLACEHOLDER
            )
        return chunked_any

    @override
    def export(self, batch: Sequence[Any]) -> LogExportResult:
        """
        Export log records after chunking their oversized fields.

        Args:
            batch: The log records to export

        Returns:
            The result of the wrapped exporter
        """
        try:
            chunked = 0
            for item in batch:
                try:
                    if self._chunk_record(item):
                        chunked += 1
                except Exception as e:
                    logger.warning("Error chunking log record, exporting it unchanged: %s", e)
            if chunked:
                logger.debug("Chunked %d of %d log records", chunked, len(batch))
        except Exception:
            logger.exception(
                "Chunking failed for a batch of %d log records. Exporting it unchunked.",
                len(batch),
            )

        try:
            return self.wrapped_exporter.export(batch)
        except Exception:
            logger.exception("Wrapped log exporter failed to export %d records", len(batch))
            return LogExportResult.FAILURE

    @override
    def shutdown(self) -> None:
        """Shutdown the wrapped exporter."""
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
