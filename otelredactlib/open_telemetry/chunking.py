"""Splitting oversized telemetry fields into reassemblable chunks.

This module provides:
- ChunkMetadata: one chunk of an oversized field
- chunk_context_id: deterministic id shared by every chunk of one field
- split_into_chunks: the chunking algorithm used by both chunking exporters
- is_chunk_metadata_key: recognizes keys written by chunking itself
"""

import json
import logging
import math
import re
import zlib
from dataclasses import dataclass
from typing import Any, List, Optional

from otelredactlib.open_telemetry.attribute_names import ChunkAttributeNames
from otelredactlib.utilities.logger.log_levels import SRC_LOG_LEVELS

logger = logging.getLogger(__name__)
logger.setLevel(SRC_LOG_LEVELS["CHUNKING"])

DEFAULT_MAX_CHUNK_CHARS: int = 8000
DEFAULT_CHUNK_EVENT_NAME: str = "chunk"

_CHUNK_METADATA_KEY_PATTERN: re.Pattern[str] = re.compile(
    r"(?:_chunked|_totalChunks|_chunkContextId|_chunk_\d+)$"
)


@dataclass(frozen=True)
class ChunkMetadata:
    """
    A single chunk of an oversized field.

    Concatenating ``chunk_text`` of every chunk sharing a
    ``chunk_context_id`` in ascending ``chunk_index`` order yields the
    original string.
    """

    original_key: str
    chunk_context_id: str
    total_chunks: int
    chunk_index: int  # 1-based
    chunk_text: str


def chunk_context_id(
    trace_id: Optional[str], span_id: Optional[str], source_name: str, key: str
) -> str:
    """
    Compute the id that ties the chunks of one field together.

    The id is a CRC32 of the inputs, so it is stable across processes and
    restarts and can be recomputed by a consumer reassembling chunks.

    Args:
        trace_id: Hex trace id (or None when the record is not in a trace)
        span_id: Hex span id (or None)
        source_name: Span name, event name or log source the field belongs to
        key: Name of the chunked field

    Returns:
        An 8 character lowercase hex string
    """
    material = "\x1f".join((trace_id or "", span_id or "", source_name, key))
    return format(zlib.crc32(material.encode("utf-8")) & 0xFFFFFFFF, "08x")


def stringify(value: Any) -> str:
    """Best-effort string form of a field: strings as-is, else JSON, else str()."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def is_chunk_metadata_key(key: str) -> bool:
    """Return True for keys written by chunking (never chunked again)."""
    return bool(_CHUNK_METADATA_KEY_PATTERN.search(key))


def total_chunks_for(length: int, max_chunk_chars: int) -> int:
    return math.ceil(length / max_chunk_chars)


def split_into_chunks(
    text: str,
    max_chunk_chars: int,
    original_key: str,
    context_id: str,
) -> List[ChunkMetadata]:
    """
    Split ``text`` into chunks of at most ``max_chunk_chars`` characters.

    Args:
        text: The string to split
        max_chunk_chars: Maximum characters per chunk (must be positive)
        original_key: Name of the field being chunked
        context_id: Id shared by every chunk of this field

    Returns:
        Chunks in ascending chunk_index order (empty for an empty string)
    """
    if max_chunk_chars <= 0:
        raise ValueError("max_chunk_chars must be positive")
    total = total_chunks_for(len(text), max_chunk_chars)
    return [
        ChunkMetadata(
            original_key=original_key,
            chunk_context_id=context_id,
            total_chunks=total,
            chunk_index=index + 1,
            chunk_text=text[index * max_chunk_chars : (index + 1) * max_chunk_chars],
        )
        for index in range(total)
    ]


def reassemble_chunks(chunks: List[ChunkMetadata]) -> str:
    """
    Rebuild the original string from its chunks, in any arrival order.

    Raises:
        ValueError: If chunks from several contexts are mixed or some are missing
    """
    if not chunks:
        return ""
    context_ids = {chunk.chunk_context_id for chunk in chunks}
    if len(context_ids) != 1:
        raise ValueError(f"Chunks belong to several contexts: {sorted(context_ids)}")
    ordered = sorted(chunks, key=lambda chunk: chunk.chunk_index)
    expected = ordered[0].total_chunks
    if [chunk.chunk_index for chunk in ordered] != list(range(1, expected + 1)):
        raise ValueError(
            f"Incomplete chunk set for {ordered[0].chunk_context_id}: "
            f"got {len(ordered)} of {expected}"
        )
    return "".join(chunk.chunk_text for chunk in ordered)


class OversizedField:
    """
    An oversized field that has been split, plus the bookkeeping the
    exporters write back in its place.
    """

    def __init__(
        self,
        key: str,
        text: str,
        chunks: List[ChunkMetadata],
        max_chunk_chars: int,
    ) -> None:
        self.key = key
        self.text = text
        self.chunks = chunks
        self.max_chunk_chars = max_chunk_chars

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def context_id(self) -> str:
        return self.chunks[0].chunk_context_id

    @property
    def preview(self) -> str:
        return self.text[: self.max_chunk_chars]

    def metadata_attributes(self, include_context_id: bool) -> dict[str, Any]:
        """
        Sibling attributes describing the chunked field.

        Args:
            include_context_id: Also write ``{key}_chunkContextId``
        """
        attributes: dict[str, Any] = {
            f"{self.key}{ChunkAttributeNames.CHUNKED_SUFFIX}": True,
            f"{self.key}{ChunkAttributeNames.TOTAL_CHUNKS_SUFFIX}": self.total_chunks,
        }
        if include_context_id:
            attributes[f"{self.key}{ChunkAttributeNames.CHUNK_CONTEXT_ID_SUFFIX}"] = (
                self.context_id
            )
        return attributes


def find_oversized_field(
    key: str,
    value: Any,
    max_chunk_chars: int,
    trace_id: Optional[str],
    span_id: Optional[str],
    source_name: str,
) -> Optional[OversizedField]:
    """
    Chunk a single field when its string form is longer than ``max_chunk_chars``.

    Returns:
        The split field, or None when the field fits or is chunk metadata
    """
    if is_chunk_metadata_key(key) or value is None:
        return None
    text = stringify(value)
    if len(text) <= max_chunk_chars:
        return None
    context_id = chunk_context_id(trace_id, span_id, source_name, key)
    chunks = split_into_chunks(text, max_chunk_chars, key, context_id)
    logger.debug(
        "Chunking field %s of %s (%d chars) into %d chunks",
        key,
        source_name,
        len(text),
        len(chunks),
    )
    return OversizedField(key=key, text=text, chunks=chunks, max_chunk_chars=max_chunk_chars)
