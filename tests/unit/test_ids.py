"""
Tests for ID generation.
"""

import re
import uuid

from claystore.core.contracts import Tag
from claystore.core.ids import generate_chunk_set_id, generate_object_id, generate_project_id


def test_generate_project_id():
    """Project IDs embed the creation time and a base36 suffix."""
    project_id = generate_project_id(now_ms=1_700_000_000_000)

    assert re.fullmatch(r"clay-1700000000000-[0-9a-z]{9}", project_id)
    assert generate_project_id() != generate_project_id()


def test_generate_chunk_set_id():
    chunk_set_id = generate_chunk_set_id()

    assert uuid.UUID(chunk_set_id).version == 4
    assert chunk_set_id != generate_chunk_set_id()


def test_generate_object_id():
    """Identical writes still get distinct permanent IDs."""
    tags = [Tag("Project-ID", "p1")]

    first = generate_object_id(b"body", tags)
    second = generate_object_id(b"body", tags)

    assert len(first) == 32
    assert re.fullmatch(r"[0-9a-f]{32}", first)
    assert first != second
