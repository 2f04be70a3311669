"""
Upload path: single-object saves, chunk uploads and manifest publishing.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from claystore.core import tags as tagnames
from claystore.core.contracts import (
    ChunkRecord,
    Config,
    Manifest,
    ProjectDocument,
    SaveResult,
    Tag,
)
from claystore.core.errors import ChunkUploadFailed
from claystore.core.ids import generate_chunk_set_id
from claystore.core.logging_config import get_logger
from claystore.storage.backends import Clock, ObjectStore, system_clock, with_timeout
from claystore.storage.chunking import build_chunk_records, encoded_chunk_width
from claystore.storage.codec import encode_chunk, encode_manifest, serialize_document

logger = get_logger(__name__)


@dataclass
class ChunkProgress:
    """Progress of a chunked transfer, reported after each chunk lands."""

    completed: int
    total_chunks: int

    @property
    def percentage(self) -> float:
        if self.total_chunks == 0:
            return 100.0
        return self.completed / self.total_chunks * 100


ProgressCallback = Callable[[ChunkProgress], None]


def iso_timestamp(epoch_ms: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


class ManifestBuilder:
    """Builds and publishes the manifest object for a chunk set."""

    def __init__(self, store: ObjectStore, config: Config):
        self.store = store
        self.config = config

    @staticmethod
    def create_manifest(
        chunk_set_id: str,
        chunk_ids: List[Optional[str]],
        project_id: str,
        project_name: str,
        created_at_ms: int,
    ) -> Manifest:
        """
        Create a manifest from index-ordered chunk IDs.

        Args:
            chunk_set_id: Chunk set the IDs belong to
            chunk_ids: Object IDs where position i holds chunk i
            project_id: Stable project identifier
            project_name: Project display name
            created_at_ms: Creation time (epoch ms)

        Returns:
            Manifest object

        Raises:
            ValueError: If any slot is still empty
        """
        empty = [index for index, chunk_id in enumerate(chunk_ids) if chunk_id is None]
        if empty:
            raise ValueError(f"Cannot build manifest with empty chunk slots {empty}")

        return Manifest(
            chunk_set_id=chunk_set_id,
            total_chunks=len(chunk_ids),
            chunk_ids=[str(chunk_id) for chunk_id in chunk_ids],
            project_id=project_id,
            created_at=iso_timestamp(created_at_ms),
            project_name=project_name,
        )

    def manifest_tags(
        self,
        manifest: Manifest,
        author: str,
        now_ms: int,
        folder: Optional[str] = None,
        root_tx_id: Optional[str] = None,
    ) -> List[Tag]:
        """Tags for a manifest; Root-TX only appears on updates."""
        pairs = [
            (tagnames.APP_NAME, self.config.app_name),
            (tagnames.DATA_TYPE, tagnames.KIND_MANIFEST),
            (tagnames.PROJECT_ID, manifest.project_id),
            (tagnames.PROJECT_NAME, manifest.project_name),
            (tagnames.AUTHOR, author.lower()),
            (tagnames.CHUNK_SET_ID, manifest.chunk_set_id),
            (tagnames.TOTAL_CHUNKS, manifest.total_chunks),
            (tagnames.CREATED_AT, now_ms),
            (tagnames.FOLDER, folder),
        ]
        if root_tx_id:
            pairs.append((tagnames.ROOT_TX, root_tx_id))
            pairs.append((tagnames.UPDATED_AT, now_ms))
        return tagnames.build_tags(pairs)

    async def publish(
        self,
        manifest: Manifest,
        author: str,
        now_ms: int,
        folder: Optional[str] = None,
        root_tx_id: Optional[str] = None,
    ) -> str:
        """
        Write the manifest object.

        Returns:
            Manifest object ID
        """
        body = encode_manifest(manifest)
        tags = self.manifest_tags(manifest, author, now_ms, folder, root_tx_id)
        return await with_timeout(
            self.store.write(body, tags), self.config.request_timeout, "manifest upload"
        )


class ChunkUploader:
    """
    Writes documents to the object store.

    Documents whose serialized size is at or below
    Config.single_object_threshold are written as one object; larger ones are
    split into chunks plus a manifest.
    """

    def __init__(self, store: ObjectStore, config: Config, clock: Clock = system_clock):
        """
        Initialize uploader.

        Args:
            store: Object store to write into
            config: Thresholds, timeouts and tagging settings
            clock: Source of Created-At / Updated-At values (epoch ms)
        """
        self.store = store
        self.config = config
        self.clock = clock
        self.manifest_builder = ManifestBuilder(store, config)

    async def save(
        self,
        document: ProjectDocument,
        folder: Optional[str] = None,
        root_tx_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SaveResult:
        """
        Save a document, choosing the path by serialized size.

        Args:
            document: Document to save
            folder: Optional folder path tag
            root_tx_id: Root object ID when updating an existing project
            on_progress: Optional callback for chunked saves

        Returns:
            SaveResult whose object_id is the new version
        """
        data = serialize_document(document)
        if len(data) <= self.config.single_object_threshold:
            return await self.upload_document(document, folder, root_tx_id, data=data)
        return await self.upload_chunked(
            document,
            document.id,
            document.author,
            folder,
            root_tx_id,
            on_progress=on_progress,
            data=data,
        )

    def document_tags(
        self,
        document: ProjectDocument,
        now_ms: int,
        folder: Optional[str] = None,
        root_tx_id: Optional[str] = None,
    ) -> List[Tag]:
        """Tags for a single-object save."""
        pairs = [
            (tagnames.CONTENT_TYPE, "application/json"),
            (tagnames.APP_NAME, self.config.app_name),
            (tagnames.DATA_TYPE, tagnames.KIND_DOCUMENT),
            (tagnames.PROJECT_NAME, document.name),
            (tagnames.PROJECT_ID, document.id),
            (tagnames.AUTHOR, document.author.lower()),
            (tagnames.CREATED_AT, document.created_at),
            (tagnames.UPDATED_AT, now_ms),
            (tagnames.VERSION, self.config.schema_version),
            (tagnames.FILE_EXTENSION, ".clay.json"),
            (tagnames.ROOT_TX, root_tx_id),
            (tagnames.FOLDER, folder),
        ]
        for position, value in enumerate(document.tags):
            pairs.append((tagnames.user_tag_name(position), value))
        return tagnames.build_tags(pairs)

    async def upload_document(
        self,
        document: ProjectDocument,
        folder: Optional[str] = None,
        root_tx_id: Optional[str] = None,
        data: Optional[bytes] = None,
    ) -> SaveResult:
        """
        Write a document as one object.

        Args:
            document: Document to write
            folder: Optional folder path tag
            root_tx_id: Root object ID when updating
            data: Pre-serialized bytes (serialized here when omitted)

        Returns:
            SaveResult for the new object
        """
        if data is None:
            data = serialize_document(document)
        tags = self.document_tags(document, self.clock(), folder, root_tx_id)
        object_id = await with_timeout(
            self.store.write(data, tags), self.config.request_timeout, "document upload"
        )
        logger.info(
            "document_uploaded",
            project_id=document.id,
            object_id=object_id,
            size=len(data),
            is_update=bool(root_tx_id),
        )
        return SaveResult(
            object_id=object_id,
            root_tx_id=root_tx_id or object_id,
            is_update=bool(root_tx_id),
            was_chunked=False,
        )

    def chunk_tags(
        self,
        chunk: ChunkRecord,
        project_id: str,
        project_name: str,
        author: str,
        now_ms: int,
        folder: Optional[str] = None,
        root_tx_id: Optional[str] = None,
    ) -> List[Tag]:
        """Tags for one chunk object."""
        return tagnames.build_tags(
            [
                (tagnames.APP_NAME, self.config.app_name),
                (tagnames.DATA_TYPE, tagnames.KIND_CHUNK),
                (tagnames.PROJECT_ID, project_id),
                (tagnames.PROJECT_NAME, project_name),
                (tagnames.AUTHOR, author.lower()),
                (tagnames.CHUNK_SET_ID, chunk.chunk_set_id),
                (tagnames.CHUNK_INDEX, chunk.chunk_index),
                (tagnames.TOTAL_CHUNKS, chunk.total_chunks),
                (tagnames.CREATED_AT, now_ms),
                (tagnames.FOLDER, folder),
                (tagnames.ROOT_TX, root_tx_id),
            ]
        )

    async def upload_chunked(
        self,
        document: ProjectDocument,
        project_id: str,
        author: str,
        folder: Optional[str] = None,
        root_tx_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        data: Optional[bytes] = None,
    ) -> SaveResult:
        """
        Write a document as chunks plus a manifest.

        Chunk uploads run concurrently; each returned ID is stored at its
        chunk index, so completion order never affects manifest order. The
        manifest is written only after every chunk succeeded.

        Args:
            document: Document to write
            project_id: Stable project identifier
            author: Author address
            folder: Optional folder path tag
            root_tx_id: Root object ID when updating
            on_progress: Optional progress callback
            data: Pre-serialized bytes (serialized here when omitted)

        Returns:
            SaveResult whose object_id is the manifest

        Raises:
            ChunkUploadFailed: If any chunk could not be written
        """
        if data is None:
            data = serialize_document(document)
        chunk_set_id = generate_chunk_set_id()
        chunks = build_chunk_records(
            data, encoded_chunk_width(self.config.chunk_payload_bytes), chunk_set_id
        )
        total_chunks = len(chunks)
        now_ms = self.clock()

        logger.info(
            "chunked_upload_started",
            project_id=project_id,
            chunk_set_id=chunk_set_id,
            total_chunks=total_chunks,
            size=len(data),
        )

        chunk_ids: List[Optional[str]] = [None] * total_chunks
        semaphore = asyncio.Semaphore(self.config.max_concurrent_transfers)
        completed = 0

        async def upload_one(chunk: ChunkRecord):
            nonlocal completed
            body = encode_chunk(chunk, project_id, document.name)
            tags = self.chunk_tags(
                chunk, project_id, document.name, author, now_ms, folder, root_tx_id
            )
            async with semaphore:
                try:
                    object_id = await with_timeout(
                        self.store.write(body, tags),
                        self.config.request_timeout,
                        f"chunk {chunk.chunk_index} upload",
                    )
                except Exception as error:
                    logger.error(
                        "chunk_upload_failed",
                        project_id=project_id,
                        chunk_set_id=chunk_set_id,
                        chunk_index=chunk.chunk_index,
                        error=str(error),
                    )
                    raise ChunkUploadFailed(chunk.chunk_index, str(error)) from error
            chunk_ids[chunk.chunk_index] = object_id
            completed += 1
            if on_progress is not None:
                on_progress(ChunkProgress(completed, total_chunks))

        tasks = [asyncio.ensure_future(upload_one(chunk)) for chunk in chunks]
        try:
            await asyncio.gather(*tasks)
        except ChunkUploadFailed:
            # Already-written chunks stay behind as orphans; nothing is rolled back
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        manifest = ManifestBuilder.create_manifest(
            chunk_set_id, chunk_ids, project_id, document.name, now_ms
        )
        manifest_id = await self.manifest_builder.publish(
            manifest, author, now_ms, folder, root_tx_id
        )
        logger.info(
            "chunked_upload_finished",
            project_id=project_id,
            manifest_id=manifest_id,
            total_chunks=total_chunks,
        )
        return SaveResult(
            object_id=manifest_id,
            root_tx_id=root_tx_id or manifest_id,
            is_update=bool(root_tx_id),
            was_chunked=True,
            total_chunks=total_chunks,
        )
