"""Protocol definitions for the URL filtering components.

This module defines the cache protocol used by the span filter to remember
filtering decisions across export batches, allowing pluggable storage
(in-memory, distributed, deterministic test doubles).
"""

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class SpanDecisionCache(Protocol):
    """
    Protocol for span filtering decision caches.

    Keys are hex-encoded span ids; values are True for spans that were
    filtered. Implementations decide how long entries live.
    """

    def get(self, span_id: str) -> Optional[bool]:
        """
        Look up the decision recorded for a span.

        Args:
            span_id: Hex-encoded span id

        Returns:
            The cached decision, or None if nothing is cached
        """
        ...

    def set(self, span_id: str, filtered: bool) -> None:
        """Record a decision for a span."""
        ...

    def has(self, span_id: str) -> bool:
        """Return True if a decision is cached for the span."""
        ...

    def delete(self, span_id: str) -> None:
        """Forget the decision for a span (no-op if absent)."""
        ...

    def clear(self) -> None:
        """Forget every cached decision."""
        ...

    def size(self) -> int:
        """Return the number of cached decisions."""
        ...
