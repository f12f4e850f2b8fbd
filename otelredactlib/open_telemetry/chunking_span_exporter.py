"""SpanExporter that splits oversized span and event attributes into chunk events.

Every oversized attribute is replaced by ``{key}_chunked`` and
``{key}_totalChunks`` metadata, and its content travels in synthetic events
named ``{source}/{event_name}``, one per chunk, each carrying
``chunkContextId``, ``chunkKey``, ``chunkIndex``, ``totalChunks`` and ``chunk``.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from opentelemetry.sdk.trace import Event, ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from opentelemetry.trace import format_span_id, format_trace_id
from typing_extensions import override

from otelredactlib.open_telemetry.attribute_names import ChunkAttributeNames
from otelredactlib.open_telemetry.chunking import (
    DEFAULT_CHUNK_EVENT_NAME,
    DEFAULT_MAX_CHUNK_CHARS,
    OversizedField,
    find_oversized_field,
)
from otelredactlib.utilities.logger.log_levels import SRC_LOG_LEVELS

logger = logging.getLogger(__name__)
logger.setLevel(SRC_LOG_LEVELS["CHUNKING"])

# Default timeout for force_flush in milliseconds (30 seconds)
DEFAULT_FLUSH_TIMEOUT_MS: int = 30000


class ChunkingSpanExporter(SpanExporter):
    """
    A SpanExporter that wraps another exporter and chunks oversized attributes.

    Spans with nothing to chunk are forwarded as the same object; spans with
    oversized fields are rebuilt as new ReadableSpan instances.
    """

    def __init__(
        self,
        wrapped_exporter: SpanExporter,
        max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS,
        keep_original_key: bool = False,
        event_name: str = DEFAULT_CHUNK_EVENT_NAME,
    ) -> None:
        """
        Initialize the chunking span exporter.

        Args:
            wrapped_exporter: The span exporter to wrap
            max_chunk_chars: Fields longer than this are chunked
            keep_original_key: Keep a truncated preview under the original key
                               instead of removing it
            event_name: Suffix of the synthetic chunk event names
        """
        if max_chunk_chars <= 0:
            raise ValueError("max_chunk_chars must be positive")
        self.wrapped_exporter = wrapped_exporter
        self.max_chunk_chars = max_chunk_chars
        self.keep_original_key = keep_original_key
        self.event_name = event_name

        logger.info(
            "ChunkingSpanExporter initialized. max_chunk_chars: %d, "
            "keep_original_key: %s, event_name: %s",
            self.max_chunk_chars,
            self.keep_original_key,
            self.event_name,
        )

    def _chunk_events(
        self, source_name: str, field: OversizedField, timestamp: Optional[int]
    ) -> List[Event]:
        return [
            Event(
                name=f"{source_name}/{self.event_name}",
                attributes={
                    ChunkAttributeNames.CHUNK_CONTEXT_ID: chunk.chunk_context_id,
                    ChunkAttributeNames.CHUNK_KEY: chunk.original_key,
                    ChunkAttributeNames.CHUNK_INDEX: chunk.chunk_index,
                    ChunkAttributeNames.TOTAL_CHUNKS: chunk.total_chunks,
                    ChunkAttributeNames.CHUNK: chunk.chunk_text,
                },
                timestamp=timestamp,
            )
            for chunk in field.chunks
        ]

    def _chunk_attributes(
        self,
        attributes: Optional[Mapping[str, Any]],
        trace_id: str,
        span_id: str,
        source_name: str,
        timestamp: Optional[int],
    ) -> Optional[Tuple[Dict[str, Any], List[Event]]]:
        """
        Chunk every oversized value of an attribute mapping.

        Returns:
            The rewritten attributes and the chunk events to append, or None
            when nothing was oversized
        """
        if not attributes:
            return None

        new_attributes: Dict[str, Any] = {}
        events: List[Event] = []
        for key, value in attributes.items():
            field = find_oversized_field(
                key, value, self.max_chunk_chars, trace_id, span_id, source_name
            )
            if field is None:
                new_attributes[key] = value
                continue
            if self.keep_original_key:
                new_attributes[key] = field.preview
            new_attributes.update(field.metadata_attributes(include_context_id=False))
            events.extend(self._chunk_events(source_name, field, timestamp))

        if not events:
            return None
        return new_attributes, events

    def _chunk_span(self, span: ReadableSpan) -> ReadableSpan:
        context = span.context
        trace_id = format_trace_id(context.trace_id) if context is not None else ""
        span_id = format_span_id(context.span_id) if context is not None else ""
        changed = False

        attributes: Mapping[str, Any] = span.attributes or {}
        span_timestamp = span.end_time or span.start_time
        chunked_span_attributes = self._chunk_attributes(
            attributes, trace_id, span_id, span.name, span_timestamp
        )
        chunk_events: List[Event] = []
        if chunked_span_attributes is not None:
            attributes, chunk_events = chunked_span_attributes
            changed = True

        events: List[Event] = []
        for event in span.events:
            chunked_event = self._chunk_attributes(
                event.attributes, trace_id, span_id, event.name, event.timestamp
            )
            if chunked_event is None:
                events.append(event)
                continue
            event_attributes, event_chunks = chunked_event
            events.append(
                Event(
                    name=event.name,
                    attributes=event_attributes,
                    timestamp=event.timestamp,
                )
            )
            events.extend(event_chunks)
            changed = True

        if not changed:
            return span

        events.extend(chunk_events)
        return ReadableSpan(
            name=span.name,
            context=span.context,
            parent=span.parent,
            resource=span.resource,
            attributes=dict(attributes),
            events=events,
            links=span.links,
            kind=span.kind,
            status=span.status,
            start_time=span.start_time,
            end_time=span.end_time,
            instrumentation_scope=span.instrumentation_scope,
        )

    @override
    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """
        Export spans after chunking their oversized attributes.

        Args:
            spans: The spans to export

        Returns:
            The result of the wrapped exporter
        """
        try:
            prepared: Sequence[ReadableSpan] = [self._safe_chunk_span(span) for span in spans]
        except Exception:
            logger.exception(
                "Chunking failed for a batch of %d spans. Exporting it unchunked.",
                len(spans),
            )
            prepared = spans

        try:
            return self.wrapped_exporter.export(prepared)
        except Exception:
            logger.exception("Wrapped span exporter failed to export %d spans", len(spans))
            return SpanExportResult.FAILURE

    def _safe_chunk_span(self, span: ReadableSpan) -> ReadableSpan:
        try:
            return self._chunk_span(span)
        except Exception as e:
            logger.warning("Error chunking span %s, exporting it unchanged: %s", span.name, e)
            return span

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
