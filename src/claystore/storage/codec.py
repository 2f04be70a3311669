"""
Wire formats for stored objects.

Three body shapes are written: a whole document, a chunk envelope and a
manifest. Readers tell a document from a manifest by structure alone, so
decode_object is the only place that inspects an unknown body.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Union

from claystore.core.contracts import (
    ChunkRecord,
    FolderListing,
    Manifest,
    ProjectDocument,
    ShapeGroup,
    ShapeRecord,
    Vector3,
)
from claystore.core.errors import DecodeError, MalformedPayload

_SHAPE_FIELDS = ("id", "shape", "color", "position", "rotation", "scale")


@dataclass
class DocumentObject:
    """Decoded body holding a whole document."""

    document: ProjectDocument


@dataclass
class ManifestObject:
    """Decoded body holding a chunk manifest."""

    manifest: Manifest


DecodedObject = Union[DocumentObject, ManifestObject]


def _dumps(payload: Dict[str, Any]) -> bytes:
    # Sorted keys and compact separators keep serialization deterministic
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def _vector_to_dict(vector: Vector3) -> Dict[str, float]:
    return {"x": vector.x, "y": vector.y, "z": vector.z}


def _vector_from_dict(raw: Any, field_name: str) -> Vector3:
    if not isinstance(raw, dict):
        raise MalformedPayload(f"{field_name} must be an object")
    values = []
    for axis in ("x", "y", "z"):
        value = raw.get(axis, 0)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MalformedPayload(f"{field_name}.{axis} must be a number")
        values.append(value)
    return Vector3(*values)


def _shape_to_dict(shape: ShapeRecord) -> Dict[str, Any]:
    clashing = set(shape.params).intersection(_SHAPE_FIELDS)
    if clashing:
        raise ValueError(f"Shape {shape.id} params shadow fields {sorted(clashing)}")
    payload = dict(shape.params)
    payload.update(
        {
            "id": shape.id,
            "shape": shape.shape,
            "color": shape.color,
            "position": _vector_to_dict(shape.position),
            "rotation": _vector_to_dict(shape.rotation),
            "scale": _vector_to_dict(shape.scale),
        }
    )
    return payload


def _shape_from_dict(raw: Any) -> ShapeRecord:
    if not isinstance(raw, dict):
        raise MalformedPayload("Shape record must be an object")
    for key in ("id", "color"):
        if not isinstance(raw.get(key), str):
            raise MalformedPayload(f"Shape record field '{key}' must be a string")
    return ShapeRecord(
        id=raw["id"],
        shape=raw.get("shape") or "sphere",
        color=raw["color"],
        position=_vector_from_dict(raw.get("position", {}), "position"),
        rotation=_vector_from_dict(raw.get("rotation", {}), "rotation"),
        scale=_vector_from_dict(raw.get("scale", {"x": 1, "y": 1, "z": 1}), "scale"),
        params={k: v for k, v in raw.items() if k not in _SHAPE_FIELDS},
    )


def _group_to_dict(group: ShapeGroup) -> Dict[str, Any]:
    return {
        "id": group.id,
        "name": group.name,
        "objectIds": list(group.object_ids),
        "mainObjectId": group.main_object_id,
        "position": _vector_to_dict(group.position),
        "rotation": _vector_to_dict(group.rotation),
        "scale": _vector_to_dict(group.scale),
    }


def _group_from_dict(raw: Any) -> ShapeGroup:
    if not isinstance(raw, dict):
        raise MalformedPayload("Group record must be an object")
    object_ids = raw.get("objectIds", [])
    if not isinstance(object_ids, list):
        raise MalformedPayload("Group objectIds must be a list")
    return ShapeGroup(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", "")),
        object_ids=[str(object_id) for object_id in object_ids],
        main_object_id=str(raw.get("mainObjectId", "")),
        position=_vector_from_dict(raw.get("position", {}), "position"),
        rotation=_vector_from_dict(raw.get("rotation", {}), "rotation"),
        scale=_vector_from_dict(raw.get("scale", {"x": 1, "y": 1, "z": 1}), "scale"),
    )


def document_to_dict(document: ProjectDocument) -> Dict[str, Any]:
    """Convert a document to its JSON-ready wire form."""
    payload: Dict[str, Any] = {
        "id": document.id,
        "name": document.name,
        "description": document.description,
        "author": document.author,
        "createdAt": document.created_at,
        "updatedAt": document.updated_at,
        "clays": [_shape_to_dict(shape) for shape in document.shapes],
        "tags": list(document.tags),
    }
    if document.groups:
        payload["groups"] = [_group_to_dict(group) for group in document.groups]
    if document.background_color is not None:
        payload["backgroundColor"] = document.background_color
    return payload


def serialize_document(document: ProjectDocument) -> bytes:
    """
    Serialize a document deterministically.

    Args:
        document: Document to serialize

    Returns:
        UTF-8 JSON bytes; equal documents always give equal bytes
    """
    return _dumps(document_to_dict(document))


def document_from_dict(raw: Any) -> ProjectDocument:
    """
    Build a document from its wire form.

    Raises:
        MalformedPayload: If required fields are missing or mistyped
    """
    if not isinstance(raw, dict):
        raise MalformedPayload("Document must be a JSON object")
    for key in ("id", "name", "author"):
        if not isinstance(raw.get(key), str):
            raise MalformedPayload(f"Document field '{key}' must be a string")
    for key in ("createdAt", "updatedAt"):
        value = raw.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedPayload(f"Document field '{key}' must be an integer")
    clays = raw.get("clays")
    if not isinstance(clays, list):
        raise MalformedPayload("Document field 'clays' must be a list")
    tags = raw.get("tags") or []
    if not isinstance(tags, list):
        raise MalformedPayload("Document field 'tags' must be a list")
    groups = raw.get("groups") or []
    if not isinstance(groups, list):
        raise MalformedPayload("Document field 'groups' must be a list")

    return ProjectDocument(
        id=raw["id"],
        name=raw["name"],
        author=raw["author"],
        created_at=raw["createdAt"],
        updated_at=raw["updatedAt"],
        shapes=[_shape_from_dict(item) for item in clays],
        background_color=raw.get("backgroundColor"),
        tags=[str(tag) for tag in tags],
        description=raw.get("description") or "",
        groups=[_group_from_dict(item) for item in groups],
    )


def _loads(data: bytes, what: str) -> Any:
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise MalformedPayload(f"{what} is not valid JSON: {error}") from error


def parse_document(data: bytes) -> ProjectDocument:
    """
    Parse document bytes.

    Raises:
        MalformedPayload: If data is not a conforming document
    """
    return document_from_dict(_loads(data, "Document"))


def encode_manifest(manifest: Manifest) -> bytes:
    """Serialize a manifest body."""
    return _dumps(
        {
            "projectId": manifest.project_id,
            "projectName": manifest.project_name,
            "chunkSetId": manifest.chunk_set_id,
            "totalChunks": manifest.total_chunks,
            "chunks": list(manifest.chunk_ids),
            "createdAt": manifest.created_at,
        }
    )


def _manifest_from_dict(raw: Dict[str, Any]) -> Manifest:
    total_chunks = raw.get("totalChunks")
    if isinstance(total_chunks, bool) or not isinstance(total_chunks, int):
        raise MalformedPayload("Manifest totalChunks must be an integer")
    chunk_ids = raw["chunks"]
    if not all(isinstance(chunk_id, str) for chunk_id in chunk_ids):
        raise MalformedPayload("Manifest chunk IDs must be strings")
    return Manifest(
        chunk_set_id=str(raw["chunkSetId"]),
        total_chunks=total_chunks,
        chunk_ids=list(chunk_ids),
        project_id=str(raw.get("projectId", "")),
        created_at=str(raw.get("createdAt", "")),
        project_name=str(raw.get("projectName", "")),
    )


def looks_like_manifest(raw: Any) -> bool:
    """Structural check: a chunk-set discriminant plus an ordered chunk-ID list."""
    return (
        isinstance(raw, dict)
        and "chunkSetId" in raw
        and "totalChunks" in raw
        and isinstance(raw.get("chunks"), list)
    )


def decode_object(body: bytes) -> DecodedObject:
    """
    Decode a fetched body into a document or a manifest.

    Args:
        body: Raw object body

    Returns:
        DocumentObject or ManifestObject

    Raises:
        MalformedPayload: If the body is neither
    """
    raw = _loads(body, "Object body")
    if looks_like_manifest(raw):
        return ManifestObject(manifest=_manifest_from_dict(raw))
    return DocumentObject(document=document_from_dict(raw))


def encode_chunk(chunk: ChunkRecord, project_id: str, project_name: str) -> bytes:
    """Serialize a chunk envelope."""
    return _dumps(
        {
            "chunk": chunk.payload,
            "metadata": {
                "chunkIndex": chunk.chunk_index,
                "totalChunks": chunk.total_chunks,
                "chunkSetId": chunk.chunk_set_id,
                "projectId": project_id,
                "projectName": project_name,
            },
        }
    )


def decode_chunk(body: bytes) -> ChunkRecord:
    """
    Parse a chunk envelope.

    Raises:
        DecodeError: If the envelope is unreadable or incomplete
    """
    try:
        raw = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise DecodeError(f"Chunk envelope is not valid JSON: {error}") from error
    if not isinstance(raw, dict) or not isinstance(raw.get("chunk"), str):
        raise DecodeError("Chunk envelope has no 'chunk' text")
    metadata = raw.get("metadata")
    if not isinstance(metadata, dict):
        raise DecodeError("Chunk envelope has no metadata")
    try:
        return ChunkRecord(
            chunk_set_id=str(metadata["chunkSetId"]),
            chunk_index=int(metadata["chunkIndex"]),
            total_chunks=int(metadata["totalChunks"]),
            payload=raw["chunk"],
        )
    except (KeyError, TypeError, ValueError) as error:
        raise DecodeError(f"Chunk envelope metadata is incomplete: {error}") from error


def encode_folder_listing(listing: FolderListing) -> bytes:
    """Serialize an author's folder list."""
    return _dumps(
        {
            "walletAddress": listing.wallet_address,
            "folders": list(listing.folders),
            "updatedAt": listing.updated_at,
        }
    )


def decode_folder_listing(body: bytes) -> FolderListing:
    """
    Parse a folder list body.

    Raises:
        MalformedPayload: If the body is not a folder list
    """
    raw = _loads(body, "Folder structure")
    if not isinstance(raw, dict):
        raise MalformedPayload("Folder structure must be a JSON object")
    folders = raw.get("folders")
    if not isinstance(folders, list) or not all(isinstance(f, str) for f in folders):
        raise MalformedPayload("Folder structure 'folders' must be a list of strings")
    updated_at = raw.get("updatedAt", 0)
    if isinstance(updated_at, bool) or not isinstance(updated_at, int):
        raise MalformedPayload("Folder structure 'updatedAt' must be an integer")
    return FolderListing(
        wallet_address=str(raw.get("walletAddress", "")),
        folders=list(folders),
        updated_at=updated_at,
    )
