"""
Record store contract shared by every persistence backend.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from ..core.allocator import IdentityAllocator
from ..core.errors import InvalidInputError, NotFoundError
from ..core.records import IPSet, Record, RecordPatch, validate_restore_fields
from ..core.sets import aggregate, aggregate_sorted

SEARCH_FIELDS = ("context", "description", "ip", "set_name")

RANK_EXACT = 0
RANK_PREFIX = 1
RANK_SUBSTRING = 2


def match_rank(record: Record, needle: str) -> Optional[int]:
    """Best rank of ``needle`` (already lower-cased) across the searched fields.

    Returns None when no field contains it.
    """
    best: Optional[int] = None
    for field in SEARCH_FIELDS:
        value = getattr(record, field).lower()
        if not value or needle not in value:
            continue
        if value == needle:
            return RANK_EXACT
        rank = RANK_PREFIX if value.startswith(needle) else RANK_SUBSTRING
        if best is None or rank < best:
            best = rank
    return best


def rank_search_results(records: Iterable[Record], query: str) -> List[Record]:
    """Filter and order records for a case-insensitive search.

    Exact field matches come first, then prefix matches, then plain substring
    matches; ties are ordered by id.
    """
    needle = query.lower()
    ranked = []
    for record in records:
        rank = match_rank(record, needle)
        if rank is not None:
            ranked.append((rank, record.id or 0, record))
    ranked.sort(key=lambda item: (item[0], item[1]))
    return [record for _, _, record in ranked]


def normalize_query(query: str) -> str:
    query = (query or "").strip()
    if not query:
        raise InvalidInputError("search query required", field="q")
    return query


class RecordStore(ABC):
    """
    Uniform CRUD, search and set-aggregation contract.

    Backends differ only in how they persist and resolve rows. Errors are
    raised as ``IpsetManagerError`` subclasses and never retried here.
    """

    backend_name = "abstract"

    def __init__(self, allocator: Optional[IdentityAllocator] = None):
        self.allocator = allocator or IdentityAllocator()

    @abstractmethod
    def create(self, record: Record) -> Record:
        """Assign an id, stamp both timestamps and persist the record."""
        pass

    @abstractmethod
    def get_by_id(self, record_id: int) -> Record:
        """Return the active record with this id or raise NotFoundError."""
        pass

    @abstractmethod
    def get_all(self) -> List[Record]:
        """Return every active record ordered by id."""
        pass

    @abstractmethod
    def get_by_set_name(self, set_name: str) -> List[Record]:
        """Return the active records of a set; NotFoundError if there are none."""
        pass

    @abstractmethod
    def update(self, record_id: int, patch: RecordPatch) -> Record:
        """Merge the non-empty patch fields into the stored record."""
        pass

    @abstractmethod
    def delete(self, record_id: int) -> None:
        """Remove the record and free its id."""
        pass

    @abstractmethod
    def delete_set(self, set_name: str) -> int:
        """Remove every active record of a set and return how many went."""
        pass

    @abstractmethod
    def search(self, query: str) -> List[Record]:
        """Case-insensitive ranked substring search."""
        pass

    def close(self) -> None:
        """Release connections held by the backend."""
        pass

    def get_all_sets(self) -> List[IPSet]:
        """Aggregate all active records into sets, ordered by name."""
        return aggregate_sorted(self.get_all())

    def get_set(self, set_name: str) -> IPSet:
        """Aggregate the records of one set."""
        sets = aggregate(self.get_by_set_name(set_name))
        if not sets:
            raise NotFoundError("set", set_name)
        return sets[0]

    def _validate_new(self, record: Record) -> None:
        if not record.ip.strip():
            raise InvalidInputError("ip is required", field="ip")
        if not record.context.strip():
            raise InvalidInputError("context is required", field="context")
        validate_restore_fields(record)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.backend_name})"
