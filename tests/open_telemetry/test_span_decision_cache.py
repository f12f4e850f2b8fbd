from otelredactlib.open_telemetry.protocols import SpanDecisionCache
from otelredactlib.open_telemetry.span_decision_cache import (
    TtlSpanDecisionCache,
    get_shared_span_decision_cache,
)


class FakeClock:
    def __init__(self) -> None:
        self.now: float = 0.0

    def __call__(self) -> float:
        return self.now


def test_cache_implements_protocol() -> None:
    assert isinstance(TtlSpanDecisionCache(), SpanDecisionCache)


def test_set_get_has_delete() -> None:
    cache = TtlSpanDecisionCache()
    assert cache.get("00000000000000aa") is None
    assert not cache.has("00000000000000aa")

    cache.set("00000000000000aa", True)
    assert cache.get("00000000000000aa") is True
    assert cache.has("00000000000000aa")
    assert cache.size() == 1

    cache.delete("00000000000000aa")
    cache.delete("00000000000000aa")
    assert not cache.has("00000000000000aa")
    assert cache.size() == 0


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = TtlSpanDecisionCache(ttl_seconds=10, timer=clock)
    cache.set("parent", True)

    clock.now = 9.0
    assert cache.get("parent") is True

    clock.now = 10.5
    assert cache.get("parent") is None
    assert cache.size() == 0


def test_oldest_entries_are_evicted_at_capacity() -> None:
    cache = TtlSpanDecisionCache(max_size=2)
    cache.set("a", True)
    cache.set("b", True)
    cache.set("c", True)

    assert cache.size() == 2
    assert not cache.has("a")
    assert cache.has("b") and cache.has("c")


def test_clear_removes_everything() -> None:
    cache = TtlSpanDecisionCache()
    cache.set("a", True)
    cache.set("b", False)
    cache.clear()
    assert cache.size() == 0


def test_shared_cache_is_a_singleton() -> None:
    assert get_shared_span_decision_cache() is get_shared_span_decision_cache()
