"""
ipset-manager - numbered ipset records behind a REST API

Stores ipset memberships as records with 6-digit ids in one of three
backends, and converts them to and from ipset save/restore text.
"""

__version__ = "0.1.0"

from .codec.generator import generate, generate_script
from .codec.parser import parse
from .core.allocator import IdentityAllocator
from .core.config import AppConfig
from .core.records import IPSet, Record, RecordPatch
from .core.sets import aggregate
from .storage import (
    RecordStore,
    SnapshotRecordStore,
    SqlRecordStore,
    VersionedRecordStore,
    create_store,
)

__all__ = [
    "Record",
    "RecordPatch",
    "IPSet",
    "IdentityAllocator",
    "AppConfig",
    "RecordStore",
    "SnapshotRecordStore",
    "SqlRecordStore",
    "VersionedRecordStore",
    "create_store",
    "parse",
    "generate",
    "generate_script",
    "aggregate",
]
