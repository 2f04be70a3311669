"""
Tag vocabulary written to and read from the object store.
"""

from typing import Dict, List, Optional, Sequence

from claystore.core.contracts import Tag

APP_NAME = "App-Name"
CONTENT_TYPE = "Content-Type"
DATA_TYPE = "Data-Type"
PROJECT_ID = "Project-ID"
PROJECT_NAME = "Project-Name"
AUTHOR = "Author"
CHUNK_SET_ID = "Chunk-Set-ID"
CHUNK_INDEX = "Chunk-Index"
TOTAL_CHUNKS = "Total-Chunks"
ROOT_TX = "Root-TX"
FOLDER = "Folder"
CREATED_AT = "Created-At"
UPDATED_AT = "Updated-At"
VERSION = "Version"
FILE_EXTENSION = "File-Extension"
WALLET_ADDRESS = "Wallet-Address"

# Data-Type values
KIND_DOCUMENT = "clay-project"
KIND_CHUNK = "clay-project-chunk"
KIND_MANIFEST = "clay-project-manifest"
KIND_FOLDER_STRUCTURE = "folder-structure"

# Objects that stand for a whole project version (chunks never do)
PROJECT_KINDS = (KIND_DOCUMENT, KIND_MANIFEST)


def user_tag_name(position: int) -> str:
    """Tag name for the position-th free-form document tag."""
    return f"Tag-{position}"


def build_tags(pairs: Sequence[tuple]) -> List[Tag]:
    """
    Build an ordered tag list, skipping pairs whose value is None or empty.

    Args:
        pairs: (name, value) tuples in output order

    Returns:
        List of Tag objects
    """
    tags = []
    for name, value in pairs:
        if value is None or value == "":
            continue
        tags.append(Tag(name=name, value=str(value)))
    return tags


def tag_value(tags: Dict[str, str], name: str) -> Optional[str]:
    """Return a tag value, treating empty strings as absent."""
    value = tags.get(name)
    return value if value else None
