"""Document chunker - deterministic, size-capped text splitting."""

DEFAULT_MAX_BYTES = 200 * 1024
DEFAULT_MAX_CHUNKS = 5

# Widest UTF-8 encoding of a single code point
_MIN_MAX_BYTES = 4


def chunk_text(
    text: str,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    max_chunks: int = DEFAULT_MAX_CHUNKS,
) -> list[str]:
    """Split text into at most `max_chunks` ordered segments.

    Pure function with no I/O or randomness. Segments cover the text left to
    right without overlap, so concatenating them yields a prefix of the input.
    Text beyond the last allowed segment is dropped.

    Args:
        text: Text to split
        max_bytes: Maximum UTF-8 size of each segment (default 200 KiB)
        max_chunks: Maximum number of segments (default 5)

    Returns:
        List of non-empty segments, each at most max_bytes when UTF-8 encoded

    Raises:
        ValueError: If max_bytes < 4 or max_chunks < 1

    Strategy:
        1. Encode once and walk a byte cursor
        2. Take a window of max_bytes and back off to a code point boundary
        3. If a newline falls in the second half of the window, cut after it
        4. Stop after max_chunks segments
    """
    if max_bytes < _MIN_MAX_BYTES:
        raise ValueError(f"max_bytes must be >= {_MIN_MAX_BYTES}")
    if max_chunks < 1:
        raise ValueError("max_chunks must be >= 1")

    if not text:
        return []

    encoded = text.encode("utf-8")
    total = len(encoded)
    chunks: list[str] = []
    start = 0

    while start < total and len(chunks) < max_chunks:
        end = min(start + max_bytes, total)

        if end < total:
            # Continuation bytes look like 0b10xxxxxx; never cut before one
            while end > start and (encoded[end] & 0xC0) == 0x80:
                end -= 1

            newline = encoded.rfind(b"\n", start + max_bytes // 2, end)
            if newline != -1:
                end = newline + 1

        chunks.append(encoded[start:end].decode("utf-8"))
        start = end

    return chunks


def truncation_applied(text: str, chunks: list[str]) -> bool:
    """Whether chunking dropped a tail of the text."""
    return sum(len(c) for c in chunks) < len(text)
