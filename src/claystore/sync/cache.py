"""
Local reference cache: project_id -> {root, latest}.

An entry is replaced only by data with a strictly newer timestamp, so a slow
lookup that finishes late cannot overwrite a fresher entry. The root of an
entry changes only through adopt(), when the index settles a duplicate-root
race on a different root.
"""

import json
import threading
from dataclasses import asdict, replace
from pathlib import Path
from typing import Dict, List, Optional

from claystore.core.contracts import MutableReference
from claystore.core.logging_config import get_logger
from claystore.storage.backends import Clock, system_clock

logger = get_logger(__name__)


class ReferenceCache:
    """Thread-safe store of MutableReference entries keyed by project ID."""

    def __init__(
        self,
        clock: Clock = system_clock,
        max_entries: int = 100,
        evict_count: int = 20,
    ):
        """
        Initialize cache.

        Args:
            clock: Source of write timestamps (epoch ms)
            max_entries: Entry count that triggers eviction
            evict_count: Number of oldest entries dropped on eviction
        """
        self.clock = clock
        self.max_entries = max_entries
        self.evict_count = evict_count
        self._entries: Dict[str, MutableReference] = {}
        self._lock = threading.Lock()

    def get(self, project_id: str) -> Optional[MutableReference]:
        with self._lock:
            return self._entries.get(project_id)

    def all(self) -> List[MutableReference]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def offer(self, reference: MutableReference) -> bool:
        """
        Store reference if it is newer than the current entry.

        Args:
            reference: Candidate entry

        Returns:
            True if the entry was stored
        """
        with self._lock:
            current = self._entries.get(reference.project_id)
            if current is not None:
                if reference.updated_at <= current.updated_at:
                    return False
                if reference.root_tx_id != current.root_tx_id:
                    logger.warning(
                        "reference_root_mismatch",
                        project_id=reference.project_id,
                        cached_root=current.root_tx_id,
                        offered_root=reference.root_tx_id,
                    )
                    return False
            else:
                self._evict_if_full()
            self._entries[reference.project_id] = reference
            return True

    def record_write(
        self,
        project_id: str,
        root_tx_id: str,
        latest_tx_id: str,
        project_name: str = "",
        author: str = "",
    ) -> MutableReference:
        """
        Record a just-completed save as the latest version.

        The write result is authoritative, so the entry is stamped strictly
        after whatever is cached for the project.

        Returns:
            The stored reference
        """
        with self._lock:
            current = self._entries.get(project_id)
            updated_at = self.clock()
            if current is not None:
                updated_at = max(updated_at, current.updated_at + 1)
                root_tx_id = current.root_tx_id
            else:
                self._evict_if_full()
            reference = MutableReference(
                project_id=project_id,
                root_tx_id=root_tx_id,
                latest_tx_id=latest_tx_id,
                updated_at=updated_at,
                project_name=project_name,
                author=author,
            )
            self._entries[project_id] = reference

        logger.info(
            "reference_recorded",
            project_id=project_id,
            root_tx_id=reference.root_tx_id,
            latest_tx_id=latest_tx_id,
        )
        return reference

    def adopt(self, reference: MutableReference) -> bool:
        """
        Merge a reference selected from the index.

        The index decides which root a project has. If the cached entry holds
        a different root (a losing duplicate from a concurrent first save),
        the entry is re-rooted so later saves chain onto the chosen root.
        Otherwise this behaves like offer().

        Args:
            reference: Reference produced by root/latest selection

        Returns:
            True if the entry changed
        """
        with self._lock:
            current = self._entries.get(reference.project_id)
            if current is None or current.root_tx_id == reference.root_tx_id:
                if current is not None and reference.updated_at <= current.updated_at:
                    return False
                if current is None:
                    self._evict_if_full()
                self._entries[reference.project_id] = reference
                return True

            rebased = replace(
                reference, updated_at=max(reference.updated_at, current.updated_at + 1)
            )
            self._entries[reference.project_id] = rebased

        logger.warning(
            "root_ambiguity",
            project_id=reference.project_id,
            cached_root=current.root_tx_id,
            chosen_root=reference.root_tx_id,
        )
        return True

    def find_by_name(self, project_name: str, author: str) -> Optional[MutableReference]:
        """Return the cached project with this name and author, if any."""
        with self._lock:
            for reference in self._entries.values():
                if reference.project_name == project_name and reference.author == author:
                    return reference
        return None

    def _evict_if_full(self):
        # Caller holds the lock
        if len(self._entries) < self.max_entries:
            return
        oldest = sorted(self._entries.values(), key=lambda ref: ref.updated_at)
        for reference in oldest[: self.evict_count]:
            del self._entries[reference.project_id]
        logger.info("reference_cache_evicted", count=min(self.evict_count, len(oldest)))

    def save(self, path: Path):
        """Write all entries to a JSON file."""
        with self._lock:
            payload = {
                project_id: asdict(reference)
                for project_id, reference in self._entries.items()
            }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)

    def load(self, path: Path):
        """Merge entries from a JSON file written by save()."""
        path = Path(path)
        if not path.exists():
            return
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        for raw in payload.values():
            self.offer(MutableReference(**raw))
