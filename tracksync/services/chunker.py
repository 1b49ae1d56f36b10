"""Split time ranges into spans the upstream position endpoint accepts."""

from datetime import datetime, timedelta
from typing import NamedTuple

# The Weenect position endpoint rejects ranges longer than 24 hours.
MAX_CHUNK_SPAN = timedelta(hours=24)


class Chunk(NamedTuple):
    """Half-open time interval [start, end)."""

    start: datetime
    end: datetime


def chunk_range(
    start: datetime,
    end: datetime,
    max_span: timedelta = MAX_CHUNK_SPAN,
) -> list[Chunk]:
    """
    Split [start, end) into contiguous chunks no longer than max_span.

    Each chunk starts where the previous one ended; only the last chunk may be
    shorter than max_span. An empty or inverted range yields no chunks.

    Args:
        start: Range start (inclusive)
        end: Range end (exclusive)
        max_span: Maximum length of a single chunk

    Returns:
        Chunks in increasing time order
    """
    if max_span <= timedelta(0):
        raise ValueError(f"max_span must be positive, got {max_span}")

    chunks: list[Chunk] = []
    current = start
    while current < end:
        chunk_end = min(current + max_span, end)
        chunks.append(Chunk(current, chunk_end))
        current = chunk_end

    return chunks
