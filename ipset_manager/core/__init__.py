"""
Core module for ipset-manager.
"""

from .allocator import IdentityAllocator
from .config import AppConfig, AuthConfig, ServerConfig, StorageBackend, StorageConfig
from .errors import (
    AuthenticationError,
    BackendUnavailableError,
    DuplicateConstraintError,
    IdSpaceExhaustedError,
    InvalidInputError,
    IpsetManagerError,
    NotFoundError,
    SourceUnavailableError,
)
from .records import MAX_RECORD_ID, MIN_RECORD_ID, IPSet, Record, RecordPatch
from .sets import aggregate, aggregate_sorted

__all__ = [
    "Record",
    "RecordPatch",
    "IPSet",
    "MIN_RECORD_ID",
    "MAX_RECORD_ID",
    "IdentityAllocator",
    "AppConfig",
    "StorageConfig",
    "StorageBackend",
    "AuthConfig",
    "ServerConfig",
    "IpsetManagerError",
    "NotFoundError",
    "DuplicateConstraintError",
    "IdSpaceExhaustedError",
    "InvalidInputError",
    "SourceUnavailableError",
    "BackendUnavailableError",
    "AuthenticationError",
    "aggregate",
    "aggregate_sorted",
]
