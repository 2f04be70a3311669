"""claystore exception hierarchy.

Each failure the storage layer can surface has its own type so callers can
decide on retry and messaging. Nothing here is retried internally.
"""

from typing import Iterable, List


class ClayStoreError(Exception):
    """Base exception for all claystore failures."""


class StorageConfigError(ClayStoreError):
    """Raised for invalid runtime configuration."""


class ChunkUploadFailed(ClayStoreError):
    """Raised when one chunk of a chunked save could not be written.

    The save is aborted and no manifest is published.
    """

    def __init__(self, index: int, reason: str = ""):
        self.index = index
        message = f"Upload of chunk {index} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class IncompleteChunkSet(ClayStoreError):
    """Raised when a chunk set cannot be reassembled because slots are empty."""

    def __init__(self, missing_indices: Iterable[int]):
        self.missing_indices: List[int] = sorted(missing_indices)
        super().__init__(f"Missing chunks at indices {self.missing_indices}")


class DecodeError(ClayStoreError):
    """Raised when chunk text is not valid encoded data."""


class MalformedPayload(ClayStoreError):
    """Raised when bytes do not form a document or object of the expected shape."""


class NotFound(ClayStoreError):
    """Raised when an identifier resolves to no stored object."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"No stored object found for '{identifier}'")


class RequestTimeout(ClayStoreError):
    """Raised when a backend call exceeds the configured timeout."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class ObjectIntegrityError(ClayStoreError):
    """Raised when a locally stored object fails its checksum."""
