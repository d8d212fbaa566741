"""
Error types raised by the record store, the allocator and the rule codec.
"""

from typing import Optional, Union


class IpsetManagerError(Exception):
    """Base class for all ipset-manager errors."""


class NotFoundError(IpsetManagerError):
    """Raised when a record or set is absent or no longer active."""

    def __init__(self, entity_type: str, key: Union[int, str]):
        self.entity_type = entity_type
        self.key = key
        super().__init__(f"{entity_type} '{key}' not found")


class DuplicateConstraintError(IpsetManagerError):
    """Raised when an insert collides with an existing unique key."""

    def __init__(self, entity_type: str, field: str, value: Union[int, str]):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(f"{entity_type} with {field}='{value}' already exists")


class IdSpaceExhaustedError(IpsetManagerError):
    """Raised when every identifier in the 6-digit range is in use."""

    def __init__(self, low: int, high: int):
        self.low = low
        self.high = high
        super().__init__(f"no free record id in range {low}-{high}")


class InvalidInputError(IpsetManagerError):
    """Raised for out-of-range ids and missing required fields."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class SourceUnavailableError(IpsetManagerError):
    """Raised when rule text cannot be read from its source."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"cannot read {source}: {reason}")


class BackendUnavailableError(IpsetManagerError):
    """Raised when the underlying store cannot be reached or read."""

    def __init__(self, backend: str, reason: str):
        self.backend = backend
        self.reason = reason
        super().__init__(f"{backend} backend unavailable: {reason}")


class AuthenticationError(IpsetManagerError):
    """Raised when an API key or bearer token is missing, invalid or expired."""
