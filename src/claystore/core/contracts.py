"""
Core data structures (dataclasses) for claystore.

All records exchanged between the chunker, uploader, downloader and the
reference resolver are defined here as explicit dataclasses.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from claystore.core.errors import StorageConfigError


@dataclass
class Config:
    """Configuration for saving, loading and resolving projects."""

    # Tagging
    app_name: str = "GetClayed"
    schema_version: str = "2.0"
    folder_schema_version: str = "1.0"

    # Size branch: serialized documents at or below this go out as one object
    single_object_threshold: int = 90 * 1024
    # Per-chunk payload budget, measured before base64 encoding
    chunk_payload_bytes: int = 50_000

    # Network behaviour
    request_timeout: float = 30.0  # seconds, applied to every backend call
    max_concurrent_transfers: int = 8

    # Index queries
    query_limit: int = 100
    sync_query_limit: int = 1000

    # Local reference cache
    cache_max_entries: int = 100
    cache_evict_count: int = 20

    @classmethod
    def from_env(cls) -> "Config":
        """
        Build config from CLAYSTORE_* environment variables.

        Unset variables keep their defaults.

        Returns:
            A validated Config

        Raises:
            StorageConfigError: If a value cannot be parsed or is out of range
        """
        defaults = cls()
        cache_max_entries = _env_int(
            "CLAYSTORE_CACHE_MAX_ENTRIES", defaults.cache_max_entries
        )
        config = cls(
            app_name=os.getenv("CLAYSTORE_APP_NAME", defaults.app_name),
            single_object_threshold=_env_int(
                "CLAYSTORE_SINGLE_OBJECT_THRESHOLD", defaults.single_object_threshold
            ),
            chunk_payload_bytes=_env_int(
                "CLAYSTORE_CHUNK_PAYLOAD_BYTES", defaults.chunk_payload_bytes
            ),
            request_timeout=_env_float(
                "CLAYSTORE_REQUEST_TIMEOUT", defaults.request_timeout
            ),
            max_concurrent_transfers=_env_int(
                "CLAYSTORE_MAX_CONCURRENT_TRANSFERS", defaults.max_concurrent_transfers
            ),
            query_limit=_env_int("CLAYSTORE_QUERY_LIMIT", defaults.query_limit),
            sync_query_limit=_env_int(
                "CLAYSTORE_SYNC_QUERY_LIMIT", defaults.sync_query_limit
            ),
            cache_max_entries=cache_max_entries,
            # A smaller cache shrinks the default eviction batch with it
            cache_evict_count=_env_int(
                "CLAYSTORE_CACHE_EVICT_COUNT",
                min(defaults.cache_evict_count, cache_max_entries),
            ),
        )
        config.validate()
        return config

    def validate(self):
        """Raise StorageConfigError if any numeric setting is out of range."""
        positive = {
            "single_object_threshold": self.single_object_threshold,
            "chunk_payload_bytes": self.chunk_payload_bytes,
            "request_timeout": self.request_timeout,
            "max_concurrent_transfers": self.max_concurrent_transfers,
            "query_limit": self.query_limit,
            "sync_query_limit": self.sync_query_limit,
            "cache_max_entries": self.cache_max_entries,
        }
        for name, value in positive.items():
            if value <= 0:
                raise StorageConfigError(
                    f"Invalid {name}: expected a positive value, got {value!r}."
                )
        if not 0 < self.cache_evict_count <= self.cache_max_entries:
            raise StorageConfigError(
                "Invalid cache_evict_count: must be between 1 and cache_max_entries, "
                f"got {self.cache_evict_count!r}."
            )
        if not self.app_name:
            raise StorageConfigError("Invalid app_name: must not be empty.")


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError as error:
        raise StorageConfigError(
            f"Invalid {name} value: expected integer, got '{raw_value}'."
        ) from error


def _env_float(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError as error:
        raise StorageConfigError(
            f"Invalid {name} value: expected number, got '{raw_value}'."
        ) from error


@dataclass
class Vector3:
    """Position, rotation or scale triple."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass
class ShapeRecord:
    """
    One sculpted object in a scene.

    Optional shape parameters (size, thickness, detail, controlPoints,
    vertices, dimensions, groupId, librarySourceId, librarySourceName) live in
    ``params`` and are written flat next to the required fields.
    """

    id: str
    shape: str
    color: str
    position: Vector3 = field(default_factory=Vector3)
    rotation: Vector3 = field(default_factory=Vector3)
    scale: Vector3 = field(default_factory=lambda: Vector3(1.0, 1.0, 1.0))
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ShapeGroup:
    """Named group of shapes moved together."""

    id: str
    name: str
    object_ids: List[str]
    main_object_id: str
    position: Vector3 = field(default_factory=Vector3)
    rotation: Vector3 = field(default_factory=Vector3)
    scale: Vector3 = field(default_factory=lambda: Vector3(1.0, 1.0, 1.0))


@dataclass
class ProjectDocument:
    """
    A saved scene.

    created_at / updated_at are epoch milliseconds. Shape order is preserved
    exactly through serialization.
    """

    id: str  # stable project identifier
    name: str
    author: str
    created_at: int
    updated_at: int
    shapes: List[ShapeRecord] = field(default_factory=list)
    background_color: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    description: str = ""
    groups: List[ShapeGroup] = field(default_factory=list)


@dataclass
class ChunkRecord:
    """
    One slice of an encoded document.

    Concatenating payloads for index 0..total_chunks-1 and decoding yields the
    original bytes.
    """

    chunk_set_id: str  # groups one chunking operation
    chunk_index: int  # 0-based, contiguous
    total_chunks: int
    payload: str  # base64 text slice


@dataclass
class Manifest:
    """Ordered list of chunk object IDs; list order is the reassembly order."""

    chunk_set_id: str
    total_chunks: int
    chunk_ids: List[str]
    project_id: str
    created_at: str  # ISO-8601
    project_name: str = ""


@dataclass
class MutableReference:
    """
    Stable project key -> {root, latest}.

    root_tx_id is fixed at first save; latest_tx_id only advances to a
    strictly newer updated_at (epoch milliseconds).
    """

    project_id: str
    root_tx_id: str
    latest_tx_id: str
    updated_at: int
    project_name: str = ""
    author: str = ""


@dataclass(frozen=True)
class Tag:
    """Name/value pair attached to a stored object."""

    name: str
    value: str


@dataclass
class IndexEntry:
    """Row returned by a tag index query."""

    object_id: str
    timestamp: int  # epoch milliseconds
    tags: List[Tag] = field(default_factory=list)

    def tag_map(self) -> Dict[str, str]:
        """Tags as a dict (last value wins for repeated names)."""
        return {tag.name: tag.value for tag in self.tags}


@dataclass
class SaveResult:
    """Outcome of a save; object_id is authoritative for the new version."""

    object_id: str
    root_tx_id: str
    is_update: bool
    was_chunked: bool
    total_chunks: int = 0


@dataclass
class ProjectSummary:
    """Listing row for one project."""

    project_id: str
    root_tx_id: str
    latest_tx_id: str
    name: str
    author: str
    folder: str
    timestamp: int


@dataclass
class RootAmbiguity:
    """Two or more root objects were found for one project identifier."""

    project_id: str
    chosen_root: str
    candidates: List[str]


@dataclass
class FolderListing:
    """An author's saved folder paths, stored as its own versioned object."""

    wallet_address: str  # lowercased author address
    folders: List[str]  # sorted, unique
    updated_at: int  # epoch milliseconds
