"""
Per-author folder lists.

Folders that hold no project yet cannot be derived from project tags, so each
author's folder list is saved as its own object (Data-Type folder-structure,
keyed by Wallet-Address). Versions chain through Root-TX exactly like project
saves and are resolved with the same root/latest selection.
"""

from dataclasses import replace
from typing import Iterable, List, Optional

from claystore.core import tags as tagnames
from claystore.core.contracts import Config, FolderListing, MutableReference, SaveResult
from claystore.core.errors import NotFound
from claystore.core.logging_config import get_logger
from claystore.storage.backends import Clock, system_clock, with_timeout
from claystore.storage.codec import decode_folder_listing, encode_folder_listing
from claystore.sync.cache import ReferenceCache
from claystore.sync.resolver import select_reference

logger = get_logger(__name__)

FOLDER_KEY_PREFIX = "folders:"


def folder_reference_key(author: str) -> str:
    """Cache key of an author's folder list reference."""
    return FOLDER_KEY_PREFIX + author.lower()


def normalize_folder(path: str) -> str:
    """Normalize "a//b/" to "/a/b"; the root folder is "/"."""
    parts = [part for part in path.split("/") if part]
    return "/" + "/".join(parts)


class FolderStructureSync:
    """Uploads, downloads and syncs an author's folder list."""

    def __init__(
        self,
        backend,
        cache: ReferenceCache,
        config: Config,
        clock: Clock = system_clock,
    ):
        """
        Initialize folder sync.

        Args:
            backend: Object store, tag index and gateway in one
            cache: Shared reference cache
            config: Tagging, query limit and timeout settings
            clock: Source of updatedAt values (epoch ms)
        """
        self.backend = backend
        self.cache = cache
        self.config = config
        self.clock = clock

    async def _query_reference(self, author: str) -> Optional[MutableReference]:
        wallet = author.lower()
        filters = {
            tagnames.APP_NAME: [self.config.app_name],
            tagnames.DATA_TYPE: [tagnames.KIND_FOLDER_STRUCTURE],
            tagnames.WALLET_ADDRESS: [wallet],
        }
        entries = await with_timeout(
            self.backend.query(filters, order="DESC", limit=self.config.query_limit),
            self.config.request_timeout,
            "folder structure query",
        )
        reference, anomaly = select_reference(
            wallet,
            entries,
            key_tag=tagnames.WALLET_ADDRESS,
            kinds=(tagnames.KIND_FOLDER_STRUCTURE,),
        )
        if anomaly is not None:
            logger.warning(
                "root_ambiguity",
                wallet_address=wallet,
                chosen_root=anomaly.chosen_root,
                candidates=anomaly.candidates,
            )
        if reference is None:
            return None
        return replace(
            reference, project_id=folder_reference_key(author), project_name="", author=wallet
        )

    async def sync_folder_structure(self, author: str) -> Optional[MutableReference]:
        """
        Refresh the cached folder list reference from the index.

        Returns:
            The cached reference afterwards, or None if the author has none
        """
        reference = await self._query_reference(author)
        if reference is not None and self.cache.adopt(reference):
            logger.info(
                "folder_structure_synced",
                wallet_address=author.lower(),
                latest_tx_id=reference.latest_tx_id,
            )
        return self.cache.get(folder_reference_key(author))

    async def upload_folder_structure(
        self, author: str, folders: Iterable[str]
    ) -> SaveResult:
        """
        Save a new version of an author's folder list.

        Args:
            author: Author address
            folders: Folder paths (normalized, de-duplicated and sorted)

        Returns:
            SaveResult of the write
        """
        key = folder_reference_key(author)
        current = self.cache.get(key)
        if current is None:
            current = await self.sync_folder_structure(author)
        root_tx_id = current.root_tx_id if current is not None else None

        wallet = author.lower()
        now_ms = self.clock()
        listing = FolderListing(
            wallet_address=wallet,
            folders=sorted({normalize_folder(path) for path in folders} - {"/"}),
            updated_at=now_ms,
        )
        tags = tagnames.build_tags(
            [
                (tagnames.APP_NAME, self.config.app_name),
                (tagnames.DATA_TYPE, tagnames.KIND_FOLDER_STRUCTURE),
                (tagnames.WALLET_ADDRESS, wallet),
                (tagnames.VERSION, self.config.folder_schema_version),
                (tagnames.CONTENT_TYPE, "application/json"),
                (tagnames.ROOT_TX, root_tx_id),
            ]
        )
        object_id = await with_timeout(
            self.backend.write(encode_folder_listing(listing), tags),
            self.config.request_timeout,
            "folder structure upload",
        )
        reference = self.cache.record_write(
            key, root_tx_id or object_id, object_id, author=wallet
        )
        logger.info(
            "folder_structure_uploaded",
            wallet_address=wallet,
            object_id=object_id,
            folders=len(listing.folders),
        )
        return SaveResult(
            object_id=object_id,
            root_tx_id=reference.root_tx_id,
            is_update=root_tx_id is not None,
            was_chunked=False,
        )

    async def download_folder_structure(self, author: str) -> List[str]:
        """
        Fetch an author's saved folder list.

        Returns:
            Sorted folder paths; empty if the author never saved a list

        Raises:
            NotFound: If the list is indexed but no version can be fetched
        """
        reference = self.cache.get(folder_reference_key(author))
        if reference is None:
            reference = await self.sync_folder_structure(author)
        if reference is None:
            return []

        # The latest version may not be readable yet; the root always predates it
        for object_id in dict.fromkeys([reference.latest_tx_id, reference.root_tx_id]):
            body = await with_timeout(
                self.backend.read(object_id),
                self.config.request_timeout,
                f"fetch {object_id}",
            )
            if body is not None:
                if object_id != reference.latest_tx_id:
                    logger.warning(
                        "folder_structure_fallback",
                        wallet_address=author.lower(),
                        latest_tx_id=reference.latest_tx_id,
                    )
                return decode_folder_listing(body).folders
        raise NotFound(folder_reference_key(author))
