"""
claystore - chunked project storage over an append-only, tag-indexed object store.
"""

from claystore.core import Config, ProjectDocument, SaveResult
from claystore.project_store import ProjectStore, open_local_store
from claystore.storage.backends import InMemoryBackend
from claystore.storage.local_backend import LocalDirectoryBackend
from claystore.sync.cache import ReferenceCache

__version__ = "0.1.0"

__all__ = [
    "ProjectStore",
    "open_local_store",
    "Config",
    "ProjectDocument",
    "SaveResult",
    "InMemoryBackend",
    "LocalDirectoryBackend",
    "ReferenceCache",
]
