import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, LogExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

from otelredactlib.open_telemetry.chunking_config import ChunkingConfig
from otelredactlib.open_telemetry.chunking_log_exporter import ChunkingLogExporter
from otelredactlib.open_telemetry.chunking_span_exporter import ChunkingSpanExporter
from otelredactlib.open_telemetry.protocols import SpanDecisionCache
from otelredactlib.open_telemetry.url_filter_config import UrlFilterConfig
from otelredactlib.open_telemetry.url_filtered_log_exporter import (
    UrlFilteredLogExporter,
)
from otelredactlib.open_telemetry.url_filtered_span_exporter import (
    UrlFilteredSpanExporter,
)
from otelredactlib.utilities.logger.log_levels import SRC_LOG_LEVELS

logger = logging.getLogger(__name__)
logger.setLevel(SRC_LOG_LEVELS["OPEN_TELEMETRY"])


def _usable_filter_config(config: UrlFilterConfig) -> bool:
    if not config.enabled:
        logger.info("URL filtering disabled via configuration")
        return False
    validation_errors = config.validate()
    if validation_errors:
        logger.warning(
            "URL filter configuration has validation errors: %s. Disabling URL filtering.",
            validation_errors,
        )
        return False
    return True


def _usable_chunking_config(config: ChunkingConfig) -> bool:
    if not config.enabled:
        logger.info("Chunking disabled via configuration")
        return False
    validation_errors = config.validate()
    if validation_errors:
        logger.warning(
            "Chunking configuration has validation errors: %s. Disabling chunking.",
            validation_errors,
        )
        return False
    return True


def wrap_span_exporter(
        exporter: SpanExporter,
        filter_config: Optional[UrlFilterConfig] = None,
        chunking_config: Optional[ChunkingConfig] = None,
        decision_cache: Optional[SpanDecisionCache] = None,
) -> SpanExporter:
    """
    Wrap a span exporter with URL filtering and chunking.

    Filtering runs first so spans about to be dropped are never chunked:
    UrlFilteredSpanExporter -> ChunkingSpanExporter -> exporter.
    Disabled or invalid layers are skipped.

    Args:
        exporter: The exporter that ships spans to the backend
        filter_config: URL filter configuration (loaded from environment if None)
        chunking_config: Chunking configuration (loaded from environment if None)
        decision_cache: Span decision cache (shared process-wide cache if None)

    Returns:
        The outermost exporter of the chain
    """
    filter_config = filter_config or UrlFilterConfig.from_environment()
    chunking_config = chunking_config or ChunkingConfig.from_environment()

    wrapped: SpanExporter = exporter
    if _usable_chunking_config(chunking_config):
        wrapped = ChunkingSpanExporter(
            wrapped,
            max_chunk_chars=chunking_config.max_chunk_chars,
            keep_original_key=chunking_config.keep_original_key,
            event_name=chunking_config.event_name,
        )
    if _usable_filter_config(filter_config):
        wrapped = UrlFilteredSpanExporter(
            wrapped,
            rules=filter_config.rules,
            traversal_keys=filter_config.traversal_keys,
            max_cache_size=filter_config.max_cache_size,
            decision_cache=decision_cache,
            verbosity=filter_config.verbosity,
        )
    return wrapped


def wrap_log_exporter(
        exporter: LogExporter,
        filter_config: Optional[UrlFilterConfig] = None,
        chunking_config: Optional[ChunkingConfig] = None,
) -> LogExporter:
    """
    Wrap a log exporter with URL filtering and chunking.

    UrlFilteredLogExporter -> ChunkingLogExporter -> exporter.

    Args:
        exporter: The exporter that ships log records to the backend
        filter_config: URL filter configuration (loaded from environment if None)
        chunking_config: Chunking configuration (loaded from environment if None)

    Returns:
        The outermost exporter of the chain
    """
    filter_config = filter_config or UrlFilterConfig.from_environment()
    chunking_config = chunking_config or ChunkingConfig.from_environment()

    wrapped: LogExporter = exporter
    if _usable_chunking_config(chunking_config):
        wrapped = ChunkingLogExporter(
            wrapped,
            max_chunk_chars=chunking_config.max_chunk_chars,
            keep_original_key=chunking_config.keep_original_key,
            event_name=chunking_config.event_name,
        )
    if _usable_filter_config(filter_config):
        wrapped = UrlFilteredLogExporter(
            wrapped,
            rules=filter_config.rules,
            traversal_keys=filter_config.traversal_keys,
            max_cache_size=filter_config.max_cache_size,
        )
    return wrapped


def apply_span_exporter_pipeline(
        exporter: SpanExporter,
        tracer_provider: Optional[TracerProvider] = None,
        filter_config: Optional[UrlFilterConfig] = None,
        chunking_config: Optional[ChunkingConfig] = None,
) -> bool:
    """
    Register a filtered and chunked exporter on a TracerProvider.

    Args:
        exporter: The exporter that ships spans to the backend
        tracer_provider: Provider to register on (global provider if None)
        filter_config: URL filter configuration (loaded from environment if None)
        chunking_config: Chunking configuration (loaded from environment if None)

    Returns:
        True if the pipeline was registered, False otherwise
    """
    try:
        provider = tracer_provider or trace.get_tracer_provider()

        if not isinstance(provider, TracerProvider):
            logger.warning(
                "TracerProvider is not SDK TracerProvider (type: %s), cannot apply exporter pipeline.",
                type(provider).__name__,
            )
            return False

        wrapped = wrap_span_exporter(
            exporter, filter_config=filter_config, chunking_config=chunking_config
        )
        provider.add_span_processor(BatchSpanProcessor(wrapped))

        logger.info(
            "✓ Applied span exporter pipeline: %s wrapping %s",
            type(wrapped).__name__,
            type(exporter).__name__,
        )
        return True

    except Exception as e:
        logger.exception("Failed to apply span exporter pipeline", exc_info=e)
        return False


def apply_log_exporter_pipeline(
        exporter: LogExporter,
        logger_provider: LoggerProvider,
        filter_config: Optional[UrlFilterConfig] = None,
        chunking_config: Optional[ChunkingConfig] = None,
) -> bool:
    """
    Register a filtered and chunked exporter on a LoggerProvider.

    Returns:
        True if the pipeline was registered, False otherwise
    """
    try:
        wrapped = wrap_log_exporter(
            exporter, filter_config=filter_config, chunking_config=chunking_config
        )
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(wrapped))

        logger.info(
            "✓ Applied log exporter pipeline: %s wrapping %s",
            type(wrapped).__name__,
            type(exporter).__name__,
        )
        return True

    except Exception as e:
        logger.exception("Failed to apply log exporter pipeline", exc_info=e)
        return False
