"""
Record persistence backends.
"""

from typing import Optional

from ..core.allocator import IdentityAllocator
from ..core.config import StorageBackend, StorageConfig
from ..core.logging_config import get_logger
from .base import RecordStore, rank_search_results
from .snapshot import SnapshotRecordStore
from .sql import SqlRecordStore
from .versioned import RecordVersion, VersionedRecordStore, resolve_current

logger = get_logger(__name__)


def create_store(
    config: StorageConfig, allocator: Optional[IdentityAllocator] = None
) -> RecordStore:
    """Build the record store selected by ``config.backend``."""
    backend = config.backend
    if isinstance(backend, str) and not isinstance(backend, StorageBackend):
        backend = StorageBackend.from_name(backend)

    logger.debug("Opening %s record store", backend.value)
    if backend == StorageBackend.SNAPSHOT:
        return SnapshotRecordStore(config.snapshot_path, allocator=allocator)
    if backend == StorageBackend.SQL:
        return SqlRecordStore(config.database_url, allocator=allocator, echo=config.echo_sql)
    if backend == StorageBackend.VERSIONED:
        return VersionedRecordStore(
            config.versioned_database_url, allocator=allocator, echo=config.echo_sql
        )
    raise ValueError(f"Unsupported storage backend: {backend}")


__all__ = [
    "RecordStore",
    "SnapshotRecordStore",
    "SqlRecordStore",
    "VersionedRecordStore",
    "RecordVersion",
    "create_store",
    "rank_search_results",
    "resolve_current",
]
