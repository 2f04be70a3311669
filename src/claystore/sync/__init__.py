"""
Mutable references: local cache and index-based resolution.
"""

from claystore.sync.cache import ReferenceCache
from claystore.sync.folders import FolderStructureSync, normalize_folder
from claystore.sync.resolver import FolderStructure, ReferenceResolver, select_reference

__all__ = [
    "ReferenceCache",
    "FolderStructureSync",
    "normalize_folder",
    "ReferenceResolver",
    "FolderStructure",
    "select_reference",
]
