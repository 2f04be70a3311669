"""
Download path: resolve an identifier, fetch its body and rebuild the document.
"""

import asyncio
from typing import List, Optional, Tuple

from claystore.core.contracts import Config, Manifest, ProjectDocument
from claystore.core.errors import IncompleteChunkSet, MalformedPayload, NotFound
from claystore.core.logging_config import get_logger
from claystore.storage.backends import Gateway, with_timeout
from claystore.storage.chunking import reassemble
from claystore.storage.codec import ManifestObject, decode_chunk, decode_object, parse_document
from claystore.storage.uploader import ChunkProgress, ProgressCallback
from claystore.sync.resolver import ReferenceResolver

logger = get_logger(__name__)


class Downloader:
    """
    Fetches documents by stable project ID or by object ID.

    Callers never need to know whether a version was saved as one object or
    as chunks: the fetched body is inspected and handled accordingly.
    """

    def __init__(self, gateway: Gateway, resolver: ReferenceResolver, config: Config):
        """
        Initialize downloader.

        Args:
            gateway: Body fetcher
            resolver: Reference resolver (shares the cache with the save path)
            config: Timeout and concurrency settings
        """
        self.gateway = gateway
        self.resolver = resolver
        self.config = config

    async def _read(self, object_id: str) -> Optional[bytes]:
        return await with_timeout(
            self.gateway.read(object_id), self.config.request_timeout, f"fetch {object_id}"
        )

    async def fetch_body(self, identifier: str) -> Tuple[str, bytes]:
        """
        Resolve identifier and fetch the body of the version it points at.

        If the resolved latest ID has no body yet (alias not propagated), the
        identifier itself is fetched directly before giving up.

        Args:
            identifier: Stable project ID or object ID

        Returns:
            (object ID actually read, body)

        Raises:
            NotFound: If nothing could be fetched
        """
        resolved = await self.resolver.resolve_latest(identifier)
        candidates = [resolved] if resolved else []
        if identifier not in candidates:
            candidates.append(identifier)

        for object_id in candidates:
            body = await self._read(object_id)
            if body is not None:
                if object_id != candidates[0]:
                    logger.warning(
                        "alias_fetch_fallback", identifier=identifier, resolved=resolved
                    )
                return object_id, body

        raise NotFound(identifier)

    async def fetch_raw(
        self, identifier: str, on_progress: Optional[ProgressCallback] = None
    ) -> bytes:
        """
        Fetch the serialized document bytes for identifier.

        Manifests are expanded and reassembled; the bytes are returned exactly
        as they were saved.
        """
        _, body = await self.fetch_body(identifier)
        decoded = decode_object(body)
        if isinstance(decoded, ManifestObject):
            return await self.reassemble_manifest(decoded.manifest, on_progress)
        return body

    async def download(
        self, identifier: str, on_progress: Optional[ProgressCallback] = None
    ) -> ProjectDocument:
        """
        Download a document.

        Args:
            identifier: Stable project ID or object ID
            on_progress: Optional callback, called as each chunk arrives

        Returns:
            ProjectDocument

        Raises:
            NotFound: If the identifier resolves to nothing
            IncompleteChunkSet: If a manifest lists fewer chunks than it needs
            DecodeError: If chunk data is corrupt
            MalformedPayload: If the bytes are not a document
        """
        object_id, body = await self.fetch_body(identifier)
        decoded = decode_object(body)
        if isinstance(decoded, ManifestObject):
            manifest = decoded.manifest
            logger.info(
                "manifest_detected",
                object_id=object_id,
                chunk_set_id=manifest.chunk_set_id,
                total_chunks=manifest.total_chunks,
            )
            return parse_document(await self.reassemble_manifest(manifest, on_progress))
        return decoded.document

    async def reassemble_manifest(
        self, manifest: Manifest, on_progress: Optional[ProgressCallback] = None
    ) -> bytes:
        """
        Fetch every chunk listed in a manifest and rebuild the bytes.

        Fetches run concurrently; results are placed by manifest position. A
        shortened listing is diagnosed through each envelope's own index so
        the exact missing indices are reported.
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrent_transfers)
        completed = 0

        async def fetch_one(chunk_id: str) -> Optional[bytes]:
            nonlocal completed
            async with semaphore:
                body = await self._read(chunk_id)
            completed += 1
            if on_progress is not None:
                on_progress(ChunkProgress(completed, len(manifest.chunk_ids)))
            return body

        bodies = await asyncio.gather(
            *(fetch_one(chunk_id) for chunk_id in manifest.chunk_ids)
        )

        slots: List[Optional[str]] = [None] * manifest.total_chunks
        # With a full listing, manifest order must match envelope order
        complete_listing = len(manifest.chunk_ids) == manifest.total_chunks
        for position, (chunk_id, body) in enumerate(zip(manifest.chunk_ids, bodies)):
            if body is None:
                logger.error("chunk_missing", chunk_id=chunk_id, position=position)
                continue
            chunk = decode_chunk(body)
            if chunk.chunk_set_id != manifest.chunk_set_id:
                raise MalformedPayload(
                    f"Chunk {chunk_id} belongs to set {chunk.chunk_set_id}, "
                    f"not {manifest.chunk_set_id}"
                )
            if chunk.total_chunks != manifest.total_chunks:
                raise MalformedPayload(
                    f"Chunk {chunk_id} claims {chunk.total_chunks} chunks, "
                    f"manifest lists {manifest.total_chunks}"
                )
            if not 0 <= chunk.chunk_index < manifest.total_chunks:
                raise MalformedPayload(f"Chunk {chunk_id} has index {chunk.chunk_index}")
            if complete_listing and chunk.chunk_index != position:
                raise MalformedPayload(
                    f"Manifest position {position} holds chunk index {chunk.chunk_index}"
                )
            if slots[chunk.chunk_index] is not None:
                raise MalformedPayload(
                    f"Chunk index {chunk.chunk_index} listed twice in manifest"
                )
            slots[chunk.chunk_index] = chunk.payload

        missing = [index for index, payload in enumerate(slots) if payload is None]
        if missing:
            raise IncompleteChunkSet(missing)
        return reassemble(slots, manifest.total_chunks)
