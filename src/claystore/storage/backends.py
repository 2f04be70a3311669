"""
Backend interfaces and an in-memory implementation.

The storage layer talks to three collaborators:

- ObjectStore: append-only writes returning a permanent object ID
- TagIndex: eventually-consistent query over object tags and timestamps
- Gateway: fetch an object body by ID

InMemoryBackend implements all three. It can hold writes back from the index
(``lagging=True``) and from the gateway (``alias_lag=True``) until publish()
is called, which is how index lag and alias propagation delay are exercised.
"""

import asyncio
import time
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Set,
    TypeVar,
)

from claystore.core.contracts import IndexEntry, Tag
from claystore.core.errors import RequestTimeout
from claystore.core.ids import generate_object_id

Clock = Callable[[], int]
T = TypeVar("T")


def system_clock() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await a backend call, failing outright once timeout seconds pass.

    Raises:
        RequestTimeout: If the call does not finish in time
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as error:
        raise RequestTimeout(operation, timeout) from error


class ObjectStore(Protocol):
    async def write(self, data: bytes, tags: Sequence[Tag]) -> str:
        ...


class TagIndex(Protocol):
    async def query(
        self,
        filters: Mapping[str, Sequence[str]],
        order: str = "DESC",
        limit: int = 100,
        ids: Optional[Sequence[str]] = None,
    ) -> List[IndexEntry]:
        ...


class Gateway(Protocol):
    async def read(self, object_id: str) -> Optional[bytes]:
        ...


def entry_matches(
    entry: IndexEntry,
    filters: Mapping[str, Sequence[str]],
    ids: Optional[Sequence[str]] = None,
) -> bool:
    """
    Check an entry against tag filters.

    Each filter name must be present with one of the listed values; filters
    are ANDed, values within one filter are ORed.
    """
    if ids is not None and entry.object_id not in ids:
        return False
    tags = entry.tag_map()
    for name, values in filters.items():
        if tags.get(name) not in values:
            return False
    return True


def order_entries(entries: List[IndexEntry], order: str, limit: int) -> List[IndexEntry]:
    """Sort entries by timestamp (then ID) and truncate to limit."""
    if order not in ("ASC", "DESC"):
        raise ValueError(f"Unknown order '{order}', expected ASC or DESC")
    ordered = sorted(
        entries,
        key=lambda entry: (entry.timestamp, entry.object_id),
        reverse=(order == "DESC"),
    )
    return ordered[:limit]


class InMemoryBackend:
    """
    Dict-backed object store, index and gateway.

    Args:
        clock: Source of write timestamps (epoch ms)
        lagging: Hide new writes from query() until publish()
        alias_lag: Hide new writes from read() until publish()
        write_delay: Optional callable (data, tags) -> seconds to sleep before
            a write completes, used to force out-of-order completion
        fail_writes_when: Optional predicate (data, tags) -> bool; matching
            writes raise ConnectionError
    """

    def __init__(
        self,
        clock: Clock = system_clock,
        lagging: bool = False,
        alias_lag: bool = False,
        write_delay: Optional[Callable[[bytes, Sequence[Tag]], float]] = None,
        fail_writes_when: Optional[Callable[[bytes, Sequence[Tag]], bool]] = None,
    ):
        self.clock = clock
        self.lagging = lagging
        self.alias_lag = alias_lag
        self.write_delay = write_delay
        self.fail_writes_when = fail_writes_when

        self.bodies: Dict[str, bytes] = {}
        self.entries: Dict[str, IndexEntry] = {}
        self._unindexed: Set[str] = set()
        self._unreadable: Set[str] = set()
        self.write_log: List[str] = []  # object IDs in completion order

    async def write(self, data: bytes, tags: Sequence[Tag]) -> str:
        if self.write_delay is not None:
            await asyncio.sleep(self.write_delay(data, tags))
        if self.fail_writes_when is not None and self.fail_writes_when(data, tags):
            raise ConnectionError("simulated write failure")

        object_id = generate_object_id(data, tags)
        self.bodies[object_id] = bytes(data)
        self.entries[object_id] = IndexEntry(
            object_id=object_id, timestamp=self.clock(), tags=list(tags)
        )
        if self.lagging:
            self._unindexed.add(object_id)
        if self.alias_lag:
            self._unreadable.add(object_id)
        self.write_log.append(object_id)
        return object_id

    def publish(self):
        """Make every write so far visible to query() and read()."""
        self._unindexed.clear()
        self._unreadable.clear()

    def add_entry(self, entry: IndexEntry, body: bytes = b""):
        """Insert a pre-built index row (and body) with an explicit timestamp."""
        self.entries[entry.object_id] = entry
        self.bodies[entry.object_id] = body

    async def query(
        self,
        filters: Mapping[str, Sequence[str]],
        order: str = "DESC",
        limit: int = 100,
        ids: Optional[Sequence[str]] = None,
    ) -> List[IndexEntry]:
        visible = [
            entry
            for object_id, entry in self.entries.items()
            if object_id not in self._unindexed and entry_matches(entry, filters, ids)
        ]
        return order_entries(visible, order, limit)

    async def read(self, object_id: str) -> Optional[bytes]:
        if object_id in self._unreadable:
            return None
        return self.bodies.get(object_id)
