"""Tests for splitting and reassembling encoded documents."""

import base64
import math
import os

import pytest

from claystore.core.errors import DecodeError, IncompleteChunkSet, MalformedPayload
from claystore.storage.chunking import (
    build_chunk_records,
    encoded_chunk_width,
    encoded_length,
    reassemble,
    split,
)


def test_encoded_chunk_width():
    """Byte budget converts to a base64 width aligned to 4 characters."""
    assert encoded_chunk_width(3) == 4
    assert encoded_chunk_width(4) == 8
    assert encoded_chunk_width(50_000) == 66_668
    assert encoded_chunk_width(50_000) % 4 == 0

    with pytest.raises(ValueError):
        encoded_chunk_width(0)


def test_empty_payload_round_trip():
    assert split(b"", 8) == []
    assert reassemble([], 0) == b""


def test_single_byte_round_trip():
    chunks = split(b"\x7f", 4)
    assert chunks == [base64.b64encode(b"\x7f").decode("ascii")]
    assert reassemble(chunks) == b"\x7f"


@pytest.mark.parametrize("size,width", [(1, 4), (99, 8), (1000, 12), (4096, 100)])
def test_chunk_count_matches_encoded_length(size, width):
    data = os.urandom(size)
    chunks = split(data, width)

    assert len(chunks) == math.ceil(encoded_length(data) / width)
    assert all(len(chunk) == width for chunk in chunks[:-1])
    assert 0 < len(chunks[-1]) <= width
    assert reassemble(chunks) == data


def test_multibyte_text_survives_any_cut():
    """A slice boundary inside a multi-byte character must not corrupt it."""
    text = "粘土のティーポット 🫖 " * 50
    data = text.encode("utf-8")

    # Width 6 is deliberately not a multiple of 4
    chunks = split(data, 6)

    assert reassemble(chunks).decode("utf-8") == text


def test_multi_megabyte_round_trip():
    data = os.urandom(3 * 1024 * 1024 + 17)
    width = encoded_chunk_width(50_000)

    chunks = split(data, width)

    assert len(chunks) == math.ceil(encoded_length(data) / width)
    assert reassemble(chunks) == data


def test_build_chunk_records_share_set_id():
    records = build_chunk_records(b"x" * 100, 40, "set-1")

    assert [record.chunk_index for record in records] == [0, 1, 2, 3]
    assert {record.total_chunks for record in records} == {4}
    assert {record.chunk_set_id for record in records} == {"set-1"}


def test_missing_slot_reports_index():
    chunks = split(b"a" * 30, 8)
    chunks[1] = None

    with pytest.raises(IncompleteChunkSet) as exc_info:
        reassemble(chunks)

    assert exc_info.value.missing_indices == [1]


def test_short_list_reports_tail_indices():
    chunks = split(b"a" * 30, 8)

    with pytest.raises(IncompleteChunkSet) as exc_info:
        reassemble(chunks[:2], len(chunks))

    assert exc_info.value.missing_indices == list(range(2, len(chunks)))


def test_more_chunks_than_total_is_malformed():
    with pytest.raises(MalformedPayload):
        reassemble(["AAAA", "AAAA"], 1)


def test_invalid_base64_raises_decode_error():
    with pytest.raises(DecodeError):
        reassemble(["!!!!"])
    with pytest.raises(DecodeError):
        reassemble(["abc"])


def test_split_rejects_non_positive_width():
    with pytest.raises(ValueError):
        split(b"abc", 0)
