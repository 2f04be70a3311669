"""
Local directory backend for claystore.

Stores objects append-only on disk with integrity checksums, and serves the
same ObjectStore / TagIndex / Gateway interfaces as a remote backend.
"""

import json
import struct
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import xxhash

from claystore.core.contracts import IndexEntry, Tag
from claystore.core.errors import ObjectIntegrityError
from claystore.core.ids import generate_object_id
from claystore.core.logging_config import get_logger
from claystore.storage.backends import Clock, entry_matches, order_entries, system_clock

logger = get_logger(__name__)


class LocalDirectoryBackend:
    """
    Append-only object store in a directory.

    Format:
    - objects.bin: Append-only binary file with raw object bodies
    - objects.idx: Index file with explicit record schema
    - tags.jsonl: One JSON line per object with its ordered tags
    """

    # Index record format (binary struct)
    # Fields (5 total):
    # object_id (32 bytes), store_offset (Q, 8 bytes), length (I, 4 bytes),
    # checksum (I, 4 bytes unsigned), timestamp (Q, 8 bytes, epoch ms)
    # Use explicit little-endian format with no padding
    INDEX_RECORD_FORMAT = "<32sQIIQ"
    INDEX_RECORD_SIZE = struct.calcsize(INDEX_RECORD_FORMAT)

    def __init__(self, store_dir: Path, clock: Clock = system_clock):
        """
        Initialize the backend, loading any existing index.

        Args:
            store_dir: Directory containing objects.bin, objects.idx, tags.jsonl
            clock: Source of write timestamps (epoch ms)
        """
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.objects_bin_path = self.store_dir / "objects.bin"
        self.objects_idx_path = self.store_dir / "objects.idx"
        self.tags_path = self.store_dir / "tags.jsonl"
        self.clock = clock

        # In-memory index for lookups
        self.index: Dict[str, dict] = {}  # object_id -> record dict
        self.tags: Dict[str, List[Tag]] = {}  # object_id -> tags

        self.load_index()

    async def write(self, data: bytes, tags: Sequence[Tag]) -> str:
        """
        Append an object (never overwrites).

        Args:
            data: Object body
            tags: Ordered tags

        Returns:
            Permanent object ID
        """
        object_id = generate_object_id(data, tags)
        store_offset = (
            self.objects_bin_path.stat().st_size if self.objects_bin_path.exists() else 0
        )

        with open(self.objects_bin_path, "ab") as f:
            f.write(data)

        checksum = xxhash.xxh32(data).intdigest()
        timestamp = self.clock()

        # Tags first: an index record never points at an object without tags
        with open(self.tags_path, "a", encoding="utf-8") as f:
            line = {"id": object_id, "tags": [[tag.name, tag.value] for tag in tags]}
            f.write(json.dumps(line) + "\n")

        self._write_index_record(object_id, store_offset, len(data), checksum, timestamp)

        self.index[object_id] = {
            "store_offset": store_offset,
            "length": len(data),
            "checksum": checksum,
            "timestamp": timestamp,
        }
        self.tags[object_id] = list(tags)
        logger.debug("local_object_written", object_id=object_id, length=len(data))
        return object_id

    async def read(self, object_id: str) -> Optional[bytes]:
        """
        Read an object body.

        Returns:
            Body bytes, or None if the ID is unknown

        Raises:
            ObjectIntegrityError: If the stored bytes fail their checksum
        """
        record = self.index.get(object_id)
        if record is None:
            return None

        with open(self.objects_bin_path, "rb") as f:
            f.seek(record["store_offset"])
            data = f.read(record["length"])

        computed_checksum = xxhash.xxh32(data).intdigest()
        if computed_checksum != record["checksum"]:
            raise ObjectIntegrityError(f"Checksum mismatch for object {object_id}")
        return data

    async def query(
        self,
        filters: Mapping[str, Sequence[str]],
        order: str = "DESC",
        limit: int = 100,
        ids: Optional[Sequence[str]] = None,
    ) -> List[IndexEntry]:
        """Query objects by tag filters; local writes are indexed immediately."""
        entries = [
            IndexEntry(
                object_id=object_id,
                timestamp=record["timestamp"],
                tags=self.tags.get(object_id, []),
            )
            for object_id, record in self.index.items()
        ]
        matching = [entry for entry in entries if entry_matches(entry, filters, ids)]
        return order_entries(matching, order, limit)

    def _write_index_record(
        self,
        object_id: str,
        store_offset: int,
        length: int,
        checksum: int,
        timestamp: int,
    ):
        """Write a single index record to objects.idx."""
        object_id_bytes = object_id.encode("utf-8")[:32].ljust(32, b"\0")

        record = struct.pack(
            self.INDEX_RECORD_FORMAT,
            object_id_bytes,
            store_offset,
            length,
            checksum,
            timestamp,
        )

        with open(self.objects_idx_path, "ab") as f:
            f.write(record)

    def load_index(self):
        """
        Load objects.idx and tags.jsonl into memory.

        A write interrupted mid-way can leave a partial last line in
        tags.jsonl or a partial last record in objects.idx. Both are cut off
        so later appends start on a clean boundary. A bad line anywhere else
        in tags.jsonl is corruption and is not repaired.

        Raises:
            ObjectIntegrityError: If a tags.jsonl line other than the last is
                unreadable
        """
        self.index = {}
        self.tags = {}

        if self.tags_path.exists():
            self._load_tags()

        if not self.objects_idx_path.exists():
            return

        torn_at = None
        with open(self.objects_idx_path, "rb") as f:
            while True:
                record_bytes = f.read(self.INDEX_RECORD_SIZE)
                if len(record_bytes) < self.INDEX_RECORD_SIZE:
                    if record_bytes:
                        torn_at = f.tell() - len(record_bytes)
                    break

                (
                    object_id_bytes,
                    store_offset,
                    length,
                    checksum,
                    timestamp,
                ) = struct.unpack(self.INDEX_RECORD_FORMAT, record_bytes)

                object_id = object_id_bytes.rstrip(b"\0").decode("utf-8")
                self.index[object_id] = {
                    "store_offset": store_offset,
                    "length": length,
                    "checksum": checksum,
                    "timestamp": timestamp,
                }

        if torn_at is not None:
            self._truncate_torn_index_record(torn_at)

    def _load_tags(self):
        content = self.tags_path.read_bytes()
        lines = content.splitlines(keepends=True)
        offset = 0
        for number, line in enumerate(lines, start=1):
            is_last = number == len(lines)
            if line.strip():
                try:
                    raw = json.loads(line.decode("utf-8"))
                    object_id = raw["id"]
                    tags = [Tag(name, value) for name, value in raw["tags"]]
                except (ValueError, KeyError, TypeError) as e:
                    if not is_last:
                        raise ObjectIntegrityError(
                            f"Unreadable line {number} in {self.tags_path}: {e}"
                        ) from e
                    logger.warning(
                        "torn_tags_line_dropped", path=str(self.tags_path), offset=offset
                    )
                    with open(self.tags_path, "r+b") as f:
                        f.truncate(offset)
                    return
                self.tags[object_id] = tags
            offset += len(line)

        if content and not content.endswith(b"\n"):
            # Complete but unterminated last line
            with open(self.tags_path, "ab") as f:
                f.write(b"\n")

    def _truncate_torn_index_record(self, size: int):
        logger.warning(
            "torn_index_record_dropped", path=str(self.objects_idx_path), size=size
        )
        with open(self.objects_idx_path, "r+b") as f:
            f.truncate(size)

    def validate_invariants(self) -> List[str]:
        """
        Validate store invariants.

        Returns:
            List of error messages (empty if all valid)
        """
        errors = []
        bin_size = self.objects_bin_path.stat().st_size if self.objects_bin_path.exists() else 0

        for object_id, record in self.index.items():
            end = record["store_offset"] + record["length"]
            if end > bin_size:
                errors.append(
                    f"Object {object_id}: store_offset {record['store_offset']} + "
                    f"length {record['length']} exceeds objects.bin size {bin_size}"
                )
            if object_id not in self.tags:
                errors.append(f"Object {object_id}: no tags recorded")

        return errors
