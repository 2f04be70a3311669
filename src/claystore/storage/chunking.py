"""
Chunking for oversized documents.

The whole payload is base64-encoded first and the encoded text is then cut
into fixed-width slices. Cutting after encoding means a slice boundary can
never fall inside a multi-byte character of the source document.
"""

import base64
import binascii
import math
from typing import List, Optional, Sequence

from claystore.core.contracts import ChunkRecord
from claystore.core.errors import DecodeError, IncompleteChunkSet, MalformedPayload


def encoded_chunk_width(raw_budget: int) -> int:
    """
    Convert a pre-encoding byte budget into a slice width in encoded characters.

    Base64 maps every 3 input bytes to 4 characters, so a width that is a
    multiple of 4 keeps each slice aligned to whole input groups.

    Args:
        raw_budget: Chunk payload budget in bytes before encoding

    Returns:
        Slice width in base64 characters
    """
    if raw_budget <= 0:
        raise ValueError(f"Chunk budget must be positive, got {raw_budget}")
    return 4 * math.ceil(raw_budget / 3)


def encoded_length(data: bytes) -> int:
    """Length of the base64 encoding of data."""
    return 4 * math.ceil(len(data) / 3)


def split(data: bytes, max_chunk_chars: int) -> List[str]:
    """
    Encode data and split the encoded text into ordered slices.

    Args:
        data: Raw document bytes
        max_chunk_chars: Maximum slice length in encoded characters

    Returns:
        ceil(encoded_length(data) / max_chunk_chars) slices, in order
    """
    if max_chunk_chars <= 0:
        raise ValueError(f"Chunk width must be positive, got {max_chunk_chars}")

    encoded = base64.b64encode(data).decode("ascii")
    return [
        encoded[start:start + max_chunk_chars]
        for start in range(0, len(encoded), max_chunk_chars)
    ]


def build_chunk_records(
    data: bytes, max_chunk_chars: int, chunk_set_id: str
) -> List[ChunkRecord]:
    """
    Split data into ChunkRecord objects sharing one chunk set ID.

    Args:
        data: Raw document bytes
        max_chunk_chars: Maximum slice length in encoded characters
        chunk_set_id: Identifier of this chunking operation

    Returns:
        ChunkRecord list ordered by chunk_index
    """
    payloads = split(data, max_chunk_chars)
    total_chunks = len(payloads)
    return [
        ChunkRecord(
            chunk_set_id=chunk_set_id,
            chunk_index=index,
            total_chunks=total_chunks,
            payload=payload,
        )
        for index, payload in enumerate(payloads)
    ]


def reassemble(
    chunks: Sequence[Optional[str]], total_chunks: Optional[int] = None
) -> bytes:
    """
    Concatenate slices in list order and decode them.

    Args:
        chunks: Slices ordered by chunk index; None marks a slot that was
            never filled
        total_chunks: Expected number of slices (defaults to len(chunks))

    Returns:
        The original bytes

    Raises:
        IncompleteChunkSet: If any index in [0, total_chunks) has no slice
        MalformedPayload: If more slices than total_chunks were supplied
        DecodeError: If the concatenation is not valid base64
    """
    if total_chunks is None:
        total_chunks = len(chunks)
    if total_chunks < 0:
        raise MalformedPayload(f"Negative chunk count {total_chunks}")
    if len(chunks) > total_chunks:
        raise MalformedPayload(
            f"Got {len(chunks)} chunks for a set of {total_chunks}"
        )

    missing = [
        index
        for index in range(total_chunks)
        if index >= len(chunks) or chunks[index] is None
    ]
    if missing:
        raise IncompleteChunkSet(missing)

    encoded = "".join(chunks)
    try:
        return base64.b64decode(encoded.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as error:
        raise DecodeError(f"Chunk data is not valid base64: {error}") from error
