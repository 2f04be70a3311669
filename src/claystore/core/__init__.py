"""
Core contracts, errors and ID generation for claystore.
"""

from claystore.core.contracts import (
    ChunkRecord,
    Config,
    FolderListing,
    IndexEntry,
    Manifest,
    MutableReference,
    ProjectDocument,
    ProjectSummary,
    RootAmbiguity,
    SaveResult,
    ShapeGroup,
    ShapeRecord,
    Tag,
    Vector3,
)
from claystore.core.ids import generate_chunk_set_id, generate_object_id, generate_project_id

__all__ = [
    "Config",
    "FolderListing",
    "Vector3",
    "ShapeRecord",
    "ShapeGroup",
    "ProjectDocument",
    "ChunkRecord",
    "Manifest",
    "MutableReference",
    "Tag",
    "IndexEntry",
    "SaveResult",
    "ProjectSummary",
    "RootAmbiguity",
    "generate_project_id",
    "generate_chunk_set_id",
    "generate_object_id",
]
