"""
Identifier generation for claystore.

ID Policy:
- project id: "clay-<epoch ms>-<9 random base36 chars>", minted once when a
  project is first created client-side and kept across every save
- chunk set id: uuid4, fresh for every chunked save
- local object id: xxh3-128 digest over body, tags and a per-write nonce, so
  identical bodies written twice still get distinct permanent IDs
"""

import random
import string
import time
import uuid
from typing import Optional, Sequence

import xxhash

from claystore.core.contracts import Tag

_BASE36 = string.digits + string.ascii_lowercase


def generate_project_id(now_ms: Optional[int] = None) -> str:
    """
    Generate a stable project identifier.

    Args:
        now_ms: Creation time in epoch milliseconds (defaults to now)

    Returns:
        Identifier of the form clay-<ms>-<suffix>
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"clay-{now_ms}-{suffix}"


def generate_chunk_set_id() -> str:
    """Generate a fresh identifier grouping the chunks of one save."""
    return str(uuid.uuid4())


def generate_object_id(data: bytes, tags: Sequence[Tag]) -> str:
    """
    Generate a permanent ID for a locally written object.

    Args:
        data: Object body
        tags: Object tags

    Returns:
        32-character hex digest
    """
    hasher = xxhash.xxh3_128()
    hasher.update(data)
    for tag in tags:
        hasher.update(f"{tag.name}={tag.value}\n".encode("utf-8"))
    hasher.update(uuid.uuid4().bytes)
    return hasher.hexdigest()
