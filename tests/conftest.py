"""
Shared test fixtures for the URL filtering and chunking exporters.
"""

from typing import Generator

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)

from otelredactlib.open_telemetry.span_decision_cache import TtlSpanDecisionCache
from tests.open_telemetry.telemetry_factory import CaptureLogExporter


@pytest.fixture(scope="function")
def decision_cache() -> TtlSpanDecisionCache:
    """Isolated decision cache so tests never share cascade state."""
    return TtlSpanDecisionCache(max_size=100, ttl_seconds=60)


@pytest.fixture(scope="function")
def inner_span_exporter() -> Generator[InMemorySpanExporter, None, None]:
    exporter = InMemorySpanExporter()
    yield exporter
    exporter.clear()


@pytest.fixture(scope="function")
def inner_log_exporter() -> CaptureLogExporter:
    return CaptureLogExporter()


@pytest.fixture(autouse=True)
def clear_filter_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "OTEL_URL_FILTER_ENABLED",
        "OTEL_URL_FILTER_RULES",
        "OTEL_URL_FILTER_TRAVERSAL_KEYS",
        "OTEL_URL_FILTER_CACHE_SIZE",
        "OTEL_URL_FILTER_VERBOSITY",
        "OTEL_CHUNKING_ENABLED",
        "OTEL_CHUNKING_MAX_CHARS",
        "OTEL_CHUNKING_KEEP_ORIGINAL_KEY",
        "OTEL_CHUNKING_EVENT_NAME",
    ):
        monkeypatch.delenv(name, raising=False)
