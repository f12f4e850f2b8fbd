import re
from typing import Optional
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)
from opentelemetry.trace import format_span_id

from otelredactlib.open_telemetry.span_decision_cache import TtlSpanDecisionCache
from otelredactlib.open_telemetry.url_filtered_span_exporter import (
    UrlFilteredSpanExporter,
)
from tests.open_telemetry.telemetry_factory import BrokenContextSpan, make_span


def _hex(span_id: int) -> str:
    return format_span_id(span_id)


def _exporter(
    inner: SpanExporter,
    cache: TtlSpanDecisionCache,
    rules: Optional[list] = None,  # type: ignore[type-arg]
    verbosity: Optional[str] = None,
) -> UrlFilteredSpanExporter:
    return UrlFilteredSpanExporter(
        inner,
        rules=rules if rules is not None else ["/api/auth"],
        decision_cache=cache,
        verbosity=verbosity,
    )


def test_exports_spans_that_do_not_match(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    span = make_span("test-span", 0x1, attributes={"http.url": "/api/public"})

    result = exporter.export([span])

    assert result == SpanExportResult.SUCCESS
    assert [s.name for s in inner_span_exporter.get_finished_spans()] == ["test-span"]


def test_filters_span_matching_attribute(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    span = make_span("auth-span", 0x1, attributes={"http.url": "/api/auth/login"})

    exporter.export([span])

    assert inner_span_exporter.get_finished_spans() == ()
    assert decision_cache.has(_hex(0x1))


def test_filters_span_matching_regex(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache, rules=[re.compile(r"/admin/")])

    exporter.export([make_span("admin-span", 0x1, attributes={"http.url": "/admin/users"})])

    assert inner_span_exporter.get_finished_spans() == ()


def test_filters_span_matching_name(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache, rules=["/secret"])

    exporter.export([make_span("GET /secret/endpoint", 0x1)])

    assert inner_span_exporter.get_finished_spans() == ()


def test_multiple_rules(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(
        inner_span_exporter, decision_cache, rules=["/api/auth", re.compile(r"/admin/")]
    )
    spans = [
        make_span("span1", 0x1, attributes={"http.url": "/api/public"}),
        make_span("span2", 0x2, attributes={"http.url": "/api/auth/login"}),
        make_span("span3", 0x3, attributes={"http.url": "/admin/settings"}),
    ]

    exporter.export(spans)

    assert [s.name for s in inner_span_exporter.get_finished_spans()] == ["span1"]


def test_trace_verbosity_bypasses_filtering(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache, verbosity="trace")

    exporter.export([make_span("auth-span", 0x1, attributes={"http.url": "/api/auth/login"})])

    assert len(inner_span_exporter.get_finished_spans()) == 1
    assert decision_cache.size() == 0


def test_trace_verbosity_from_environment(
    inner_span_exporter: InMemorySpanExporter,
    decision_cache: TtlSpanDecisionCache,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    monkeypatch.setenv("OTEL_URL_FILTER_VERBOSITY", "TRACE")

    exporter.export([make_span("auth-span", 0x1, attributes={"http.url": "/api/auth/login"})])

    assert len(inner_span_exporter.get_finished_spans()) == 1


def test_child_of_filtered_parent_is_filtered(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    parent = make_span("parent", 0x10, attributes={"http.url": "/api/auth/login"})
    child = make_span("child", 0x11, parent_id=0x10, attributes={"db.statement": "SELECT 1"})

    exporter.export([parent, child])

    assert inner_span_exporter.get_finished_spans() == ()
    assert decision_cache.has(_hex(0x10))
    assert decision_cache.has(_hex(0x11))


def test_three_generation_chain_filtered_when_only_root_matches(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    root = make_span("root", 0x1, attributes={"http.url": "/api/auth/login"})
    child = make_span("child", 0x2, parent_id=0x1)
    grandchild = make_span("grandchild", 0x3, parent_id=0x2)

    exporter.export([grandchild, child, root])

    assert inner_span_exporter.get_finished_spans() == ()
    for span_id in (0x1, 0x2, 0x3):
        assert decision_cache.has(_hex(span_id))


def test_child_before_parent_order(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    child = make_span("child", 0x2, parent_id=0x1)
    parent = make_span("GET /api/auth/callback", 0x1)

    exporter.export([child, parent])

    assert inner_span_exporter.get_finished_spans() == ()


def test_filters_across_batches_using_cache(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    parent = make_span("parent", 0x1, attributes={"http.url": "/api/auth/login"})
    exporter.export([parent])
    assert decision_cache.has(_hex(0x1))

    child = make_span("child", 0x2, parent_id=0x1, attributes={"http.url": "/api/public"})
    grandchild = make_span("grandchild", 0x3, parent_id=0x2)
    exporter.export([child])
    exporter.export([grandchild])

    assert inner_span_exporter.get_finished_spans() == ()
    assert decision_cache.has(_hex(0x2))


def test_decision_is_shared_between_exporters_using_same_cache(
    decision_cache: TtlSpanDecisionCache,
) -> None:
    first_inner = InMemorySpanExporter()
    second_inner = InMemorySpanExporter()
    first = _exporter(first_inner, decision_cache)
    second = _exporter(second_inner, decision_cache)

    first.export([make_span("parent", 0x1, attributes={"http.url": "/api/auth"})])
    second.export([make_span("child", 0x2, parent_id=0x1)])

    assert second_inner.get_finished_spans() == ()


def test_child_kept_when_parent_not_filtered(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    parent = make_span("parent", 0x1, attributes={"http.url": "/api/public"})
    child = make_span("child", 0x2, parent_id=0x1, attributes={"http.url": "/api/data"})

    exporter.export([parent, child])

    assert len(inner_span_exporter.get_finished_spans()) == 2
    assert decision_cache.size() == 0


def test_child_kept_when_parent_unknown(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)

    exporter.export([make_span("orphan", 0x2, parent_id=0x99)])

    assert len(inner_span_exporter.get_finished_spans()) == 1


def test_circular_parent_references_do_not_loop(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    span1 = make_span("span1", 0x1, parent_id=0x2, attributes={"http.url": "/api/public"})
    span2 = make_span("span2", 0x2, parent_id=0x1, attributes={"http.url": "/api/public"})

    exporter.export([span1, span2])

    assert len(inner_span_exporter.get_finished_spans()) == 2


def test_keeps_span_when_evaluation_fails(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    malformed = BrokenContextSpan(name="malformed", attributes={"http.url": "/api/auth/login"})

    exporter.export([malformed])

    assert len(inner_span_exporter.get_finished_spans()) == 1
    assert exporter.metrics.get_fail_open_count() == 1


def test_broken_cache_keeps_spans(inner_span_exporter: InMemorySpanExporter) -> None:
    broken_cache = MagicMock()
    broken_cache.get.side_effect = RuntimeError("Cache error")
    exporter = UrlFilteredSpanExporter(
        inner_span_exporter, rules=["/api/auth"], decision_cache=broken_cache
    )

    exporter.export([make_span("test", 0x1, attributes={"http.url": "/api/auth/login"})])

    assert len(inner_span_exporter.get_finished_spans()) == 1


def test_exports_whole_batch_when_filtering_fails(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    spans = [
        make_span("auth", 0x1, attributes={"http.url": "/api/auth/login"}),
        make_span("public", 0x2, attributes={"http.url": "/api/public"}),
    ]

    with patch.object(exporter, "_partition", side_effect=RuntimeError("boom")):
        exporter.export(spans)

    assert len(inner_span_exporter.get_finished_spans()) == 2
    assert exporter.metrics.get_fail_open_count() == 2


def test_spans_without_attributes_are_kept(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)

    exporter.export([make_span("test-span", 0x1, attributes={})])

    assert len(inner_span_exporter.get_finished_spans()) == 1


def test_empty_batch_is_forwarded(decision_cache: TtlSpanDecisionCache) -> None:
    inner = MagicMock(spec=SpanExporter)
    inner.export.return_value = SpanExportResult.SUCCESS
    exporter = _exporter(inner, decision_cache)

    assert exporter.export([]) == SpanExportResult.SUCCESS
    inner.export.assert_called_once_with([])


def test_downstream_failure_is_reported_not_raised(
    decision_cache: TtlSpanDecisionCache,
) -> None:
    inner = MagicMock(spec=SpanExporter)
    inner.export.side_effect = ConnectionError("collector down")
    exporter = _exporter(inner, decision_cache)

    assert exporter.export([make_span("ok", 0x1)]) == SpanExportResult.FAILURE


def test_filter_cache_management(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    assert exporter.get_filter_cache_size() == 0

    exporter.export([make_span("test", 0x1, attributes={"http.url": "/api/auth/login"})])
    assert exporter.get_filter_cache_size() == 1

    exporter.clear_filter_cache()
    assert exporter.get_filter_cache_size() == 0


def test_uses_shared_cache_by_default(inner_span_exporter: InMemorySpanExporter) -> None:
    first = UrlFilteredSpanExporter(inner_span_exporter, rules=["/api/auth"])
    second = UrlFilteredSpanExporter(inner_span_exporter, rules=["/api/auth"])

    assert first.decision_cache is second.decision_cache


def test_extracts_urls_from_nested_and_array_attributes(
    inner_span_exporter: InMemorySpanExporter, decision_cache: TtlSpanDecisionCache
) -> None:
    exporter = _exporter(inner_span_exporter, decision_cache)
    nested = make_span("nested", 0x1, attributes={"nested": {"http.url": "/api/auth/login"}})
    array = make_span("array", 0x2, attributes={"urls": ("/api/public", "/api/auth/login")})

    exporter.export([nested, array])

    assert inner_span_exporter.get_finished_spans() == ()


def test_shutdown_and_flush_delegate(decision_cache: TtlSpanDecisionCache) -> None:
    inner = MagicMock(spec=SpanExporter)
    inner.force_flush.return_value = True
    exporter = _exporter(inner, decision_cache)

    assert exporter.force_flush(1000) is True
    exporter.shutdown()

    inner.force_flush.assert_called_once_with(1000)
    inner.shutdown.assert_called_once_with()


def test_shutdown_tolerates_exporter_without_shutdown(
    decision_cache: TtlSpanDecisionCache,
) -> None:
    exporter = _exporter(MagicMock(spec=["export"]), decision_cache)

    exporter.shutdown()
