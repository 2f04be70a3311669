"""
Mutable reference resolution over the tag index.

Every version of a project is an immutable object tagged with its Project-ID.
The first one (no Root-TX tag) is the root; later versions carry Root-TX
pointing at it. The latest version is the newest object sharing that root.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from claystore.core import tags as tagnames
from claystore.core.contracts import (
    Config,
    IndexEntry,
    MutableReference,
    ProjectSummary,
    RootAmbiguity,
)
from claystore.core.logging_config import get_logger
from claystore.storage.backends import TagIndex, with_timeout
from claystore.sync.cache import ReferenceCache

logger = get_logger(__name__)


@dataclass
class FolderStructure:
    """Every folder path in use (ancestors included) and the projects listed."""

    folders: Set[str] = field(default_factory=lambda: {"/"})
    projects: List[ProjectSummary] = field(default_factory=list)


def _oldest_first(entry: IndexEntry) -> Tuple[int, str]:
    return (entry.timestamp, entry.object_id)


def select_reference(
    project_id: str,
    entries: Sequence[IndexEntry],
    key_tag: str = tagnames.PROJECT_ID,
    kinds: Sequence[str] = tagnames.PROJECT_KINDS,
) -> Tuple[Optional[MutableReference], Optional[RootAmbiguity]]:
    """
    Pick root and latest version from index rows of one project.

    The result does not depend on the order of entries: the earliest root
    wins (ties broken by smallest object ID) and the newest update pointing
    at that root is latest (ties broken by largest object ID).

    Args:
        project_id: Project the rows belong to
        entries: Index rows (any order)
        key_tag: Tag holding the stable key (Wallet-Address for folder lists)
        kinds: Data-Type values that count as versions

    Returns:
        (reference or None if no rows, anomaly record if several roots exist)
    """
    relevant = [
        entry
        for entry in entries
        if entry.tag_map().get(key_tag) == project_id
        and entry.tag_map().get(tagnames.DATA_TYPE, tagnames.KIND_DOCUMENT) in kinds
    ]
    if not relevant:
        return None, None

    roots = [e for e in relevant if not tagnames.tag_value(e.tag_map(), tagnames.ROOT_TX)]
    updates = [e for e in relevant if tagnames.tag_value(e.tag_map(), tagnames.ROOT_TX)]

    anomaly = None
    if roots:
        roots.sort(key=_oldest_first)
        root_entry = roots[0]
        root_tx_id = root_entry.object_id
        if len(roots) > 1:
            anomaly = RootAmbiguity(
                project_id=project_id,
                chosen_root=root_tx_id,
                candidates=[entry.object_id for entry in roots],
            )
    else:
        # Root not indexed (yet): follow the newest update's Root-TX
        newest = max(updates, key=_oldest_first)
        root_entry = None
        root_tx_id = newest.tag_map()[tagnames.ROOT_TX]

    chain = [e for e in updates if e.tag_map()[tagnames.ROOT_TX] == root_tx_id]
    if chain:
        latest_entry = max(chain, key=_oldest_first)
    else:
        latest_entry = root_entry

    latest_tags = latest_entry.tag_map()
    reference = MutableReference(
        project_id=project_id,
        root_tx_id=root_tx_id,
        latest_tx_id=latest_entry.object_id,
        updated_at=latest_entry.timestamp,
        project_name=latest_tags.get(tagnames.PROJECT_NAME, "Untitled"),
        author=latest_tags.get(tagnames.AUTHOR, ""),
    )
    return reference, anomaly


def folder_ancestors(path: str) -> List[str]:
    """Expand "/a/b" into ["/a", "/a/b"]."""
    parts = [part for part in path.split("/") if part]
    return ["/" + "/".join(parts[: depth + 1]) for depth in range(len(parts))]


class ReferenceResolver:
    """
    Resolves stable project IDs to their root and latest object IDs.

    Results are adopted by the shared ReferenceCache. The index lags behind
    writes, so right after a save the cache (fed from the write result) is
    the authority, not a fresh index lookup.
    """

    def __init__(self, index: TagIndex, cache: ReferenceCache, config: Config):
        """
        Initialize resolver.

        Args:
            index: Tag index to query
            cache: Shared reference cache
            config: Query limits, timeout and app name
        """
        self.index = index
        self.cache = cache
        self.config = config
        self.anomalies: List[RootAmbiguity] = []

    def _project_filters(self, **extra: Sequence[str]) -> Dict[str, Sequence[str]]:
        filters: Dict[str, Sequence[str]] = {
            tagnames.APP_NAME: [self.config.app_name],
            tagnames.DATA_TYPE: list(tagnames.PROJECT_KINDS),
        }
        filters.update(extra)
        return filters

    async def _query(self, filters, limit: int, ids=None) -> List[IndexEntry]:
        return await with_timeout(
            self.index.query(filters, order="DESC", limit=limit, ids=ids),
            self.config.request_timeout,
            "index query",
        )

    def _select(
        self, project_id: str, entries: Sequence[IndexEntry]
    ) -> Optional[MutableReference]:
        reference, anomaly = select_reference(project_id, entries)
        if anomaly is not None:
            self.anomalies.append(anomaly)
            logger.warning(
                "root_ambiguity",
                project_id=project_id,
                chosen_root=anomaly.chosen_root,
                candidates=anomaly.candidates,
            )
        return reference

    async def _entries_for(self, identifier: str) -> Tuple[str, List[IndexEntry]]:
        filters = self._project_filters(**{tagnames.PROJECT_ID: [identifier]})
        entries = await self._query(filters, self.config.query_limit)
        if entries:
            return identifier, entries

        # Legacy callers may pass an object ID instead of a project ID
        by_id = await self._query({}, 1, ids=[identifier])
        if not by_id:
            return identifier, []
        project_id = by_id[0].tag_map().get(tagnames.PROJECT_ID)
        if not project_id:
            return identifier, []
        logger.info("legacy_object_id_resolved", object_id=identifier, project_id=project_id)
        filters = self._project_filters(**{tagnames.PROJECT_ID: [project_id]})
        return project_id, await self._query(filters, self.config.query_limit)

    async def resolve(
        self, project_id: str, refresh: bool = False
    ) -> Optional[MutableReference]:
        """
        Resolve a project to its {root, latest} pair.

        Args:
            project_id: Stable project ID (or a legacy object ID)
            refresh: Skip the cache read and query the index

        Returns:
            MutableReference, or None if nothing is indexed for the identifier
        """
        if not refresh:
            cached = self.cache.get(project_id)
            if cached is not None:
                return cached

        actual_project_id, entries = await self._entries_for(project_id)
        reference = self._select(actual_project_id, entries)
        if reference is None:
            return None

        self.cache.adopt(reference)
        # A concurrent save may have recorded something newer meanwhile
        cached = self.cache.get(actual_project_id)
        if cached is not None and cached.root_tx_id == reference.root_tx_id:
            return cached
        return reference

    async def resolve_latest(self, project_id: str, refresh: bool = False) -> Optional[str]:
        """Return the latest object ID for a project, or None."""
        reference = await self.resolve(project_id, refresh=refresh)
        return reference.latest_tx_id if reference is not None else None

    async def _author_references(
        self, author: str, folder: Optional[str] = None
    ) -> List[Tuple[MutableReference, Dict[str, str]]]:
        extra = {tagnames.AUTHOR: [author.lower()]}
        if folder and folder != "/":
            extra[tagnames.FOLDER] = [folder]
        entries = await self._query(
            self._project_filters(**extra), self.config.sync_query_limit
        )

        grouped: Dict[str, List[IndexEntry]] = defaultdict(list)
        for entry in entries:
            project_id = entry.tag_map().get(tagnames.PROJECT_ID)
            if project_id:
                grouped[project_id].append(entry)

        results = []
        for project_id, project_entries in grouped.items():
            reference = self._select(project_id, project_entries)
            if reference is None:
                continue
            by_id = {entry.object_id: entry for entry in project_entries}
            results.append((reference, by_id[reference.latest_tx_id].tag_map()))
        return results

    async def sync_all(self, author: str) -> List[MutableReference]:
        """
        Warm the cache with every project of an author in one index query.

        Args:
            author: Author address

        Returns:
            The references selected from the index
        """
        references = [ref for ref, _ in await self._author_references(author)]
        synced = sum(1 for reference in references if self.cache.adopt(reference))
        logger.info("references_synced", author=author, found=len(references), synced=synced)
        return references

    async def list_projects(
        self, author: str, folder: Optional[str] = None
    ) -> List[ProjectSummary]:
        """
        List an author's projects, newest first.

        Args:
            author: Author address
            folder: Optional folder path filter

        Returns:
            One ProjectSummary per project
        """
        summaries = []
        for reference, latest_tags in await self._author_references(author, folder):
            summaries.append(
                ProjectSummary(
                    project_id=reference.project_id,
                    root_tx_id=reference.root_tx_id,
                    latest_tx_id=reference.latest_tx_id,
                    name=reference.project_name,
                    author=reference.author,
                    folder=latest_tags.get(tagnames.FOLDER) or "/",
                    timestamp=reference.updated_at,
                )
            )
        summaries.sort(key=lambda summary: (summary.timestamp, summary.project_id), reverse=True)
        return summaries

    async def folder_structure(self, author: str) -> FolderStructure:
        """Collect every folder used by an author's projects."""
        structure = FolderStructure(projects=await self.list_projects(author))
        for summary in structure.projects:
            structure.folders.update(folder_ancestors(summary.folder))
        return structure
