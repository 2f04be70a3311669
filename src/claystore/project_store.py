"""
Project store: one object wiring uploader, resolver, cache and downloader.
"""

from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional

from claystore.core.contracts import (
    Config,
    MutableReference,
    ProjectDocument,
    ProjectSummary,
    SaveResult,
)
from claystore.core.logging_config import get_logger
from claystore.storage.backends import Clock, system_clock
from claystore.storage.downloader import Downloader
from claystore.storage.local_backend import LocalDirectoryBackend
from claystore.storage.uploader import ChunkUploader, ProgressCallback
from claystore.sync.cache import ReferenceCache
from claystore.sync.folders import FolderStructureSync
from claystore.sync.resolver import FolderStructure, ReferenceResolver, folder_ancestors

logger = get_logger(__name__)

CACHE_FILENAME = "refs.json"


class ProjectStore:
    """
    Save and load projects by their stable ID.

    The backend must provide write(), query() and read(). The save path and
    the read path share one ReferenceCache, so a load right after a save sees
    the new version even before the index has caught up.
    """

    def __init__(
        self,
        backend,
        config: Optional[Config] = None,
        cache: Optional[ReferenceCache] = None,
        clock: Clock = system_clock,
        cache_path: Optional[Path] = None,
    ):
        """
        Initialize store.

        Args:
            backend: Object store, tag index and gateway in one
            config: Configuration (defaults to Config())
            cache: Shared reference cache (a new one is created if omitted)
            clock: Source of timestamps (epoch ms)
            cache_path: If set, the cache is written here after every change
        """
        self.backend = backend
        self.config = config or Config()
        self.clock = clock
        self.cache = cache or ReferenceCache(
            clock=clock,
            max_entries=self.config.cache_max_entries,
            evict_count=self.config.cache_evict_count,
        )
        self.cache_path = Path(cache_path) if cache_path is not None else None
        self.uploader = ChunkUploader(backend, self.config, clock)
        self.resolver = ReferenceResolver(backend, self.cache, self.config)
        self.downloader = Downloader(backend, self.resolver, self.config)
        self.folders = FolderStructureSync(backend, self.cache, self.config, clock)

    def _persist_cache(self):
        if self.cache_path is not None:
            self.cache.save(self.cache_path)

    async def save(
        self,
        document: ProjectDocument,
        folder: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SaveResult:
        """
        Save a new version of a project.

        The first save of a project ID becomes its root; later saves are
        written as updates pointing at that root.

        Args:
            document: Document to save (its updated_at is refreshed)
            folder: Optional folder path
            on_progress: Optional callback for chunked saves

        Returns:
            SaveResult of the write
        """
        existing = await self.resolver.resolve(document.id)
        root_tx_id = existing.root_tx_id if existing is not None else None
        document = replace(document, updated_at=self.clock())

        result = await self.uploader.save(
            document, folder=folder, root_tx_id=root_tx_id, on_progress=on_progress
        )
        self.cache.record_write(
            document.id,
            result.root_tx_id,
            result.object_id,
            project_name=document.name,
            author=document.author.lower(),
        )
        self._persist_cache()
        return result

    async def load(
        self, identifier: str, on_progress: Optional[ProgressCallback] = None
    ) -> ProjectDocument:
        """Load the latest version of a project (or a specific object ID)."""
        return await self.downloader.download(identifier, on_progress=on_progress)

    async def load_raw(
        self, identifier: str, on_progress: Optional[ProgressCallback] = None
    ) -> bytes:
        """Load the serialized bytes of the latest version."""
        return await self.downloader.fetch_raw(identifier, on_progress=on_progress)

    async def resolve(
        self, project_id: str, refresh: bool = False
    ) -> Optional[MutableReference]:
        reference = await self.resolver.resolve(project_id, refresh=refresh)
        self._persist_cache()
        return reference

    async def sync(self, author: str) -> List[MutableReference]:
        """Warm the cache with every project of author."""
        references = await self.resolver.sync_all(author)
        self._persist_cache()
        return references

    async def list_projects(
        self, author: str, folder: Optional[str] = None
    ) -> List[ProjectSummary]:
        return await self.resolver.list_projects(author, folder)

    async def folder_structure(self, author: str) -> FolderStructure:
        """
        Every folder of an author: those used by projects plus the saved list.
        """
        structure = await self.resolver.folder_structure(author)
        for path in await self.folders.download_folder_structure(author):
            structure.folders.update(folder_ancestors(path))
        self._persist_cache()
        return structure

    async def save_folders(self, author: str, folders: Iterable[str]) -> SaveResult:
        """Save a new version of an author's folder list."""
        result = await self.folders.upload_folder_structure(author, folders)
        self._persist_cache()
        return result

    async def load_folders(self, author: str) -> List[str]:
        folders = await self.folders.download_folder_structure(author)
        self._persist_cache()
        return folders

    async def sync_folders(self, author: str) -> Optional[MutableReference]:
        reference = await self.folders.sync_folder_structure(author)
        self._persist_cache()
        return reference


def open_local_store(path: Path, config: Optional[Config] = None) -> ProjectStore:
    """
    Open a store kept in a local directory.

    Args:
        path: Store directory (created if missing)
        config: Configuration (defaults to Config())

    Returns:
        ProjectStore whose reference cache persists to <path>/refs.json
    """
    path = Path(path)
    config = config or Config()
    backend = LocalDirectoryBackend(path)
    cache = ReferenceCache(
        max_entries=config.cache_max_entries, evict_count=config.cache_evict_count
    )
    cache_path = path / CACHE_FILENAME
    cache.load(cache_path)
    logger.debug("local_store_opened", path=str(path), cached_references=len(cache))
    return ProjectStore(backend, config=config, cache=cache, cache_path=cache_path)
