"""
Record model for ipset memberships and the derived set view.
"""

import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from .errors import InvalidInputError

MIN_RECORD_ID = 100000
MAX_RECORD_ID = 999999

_TEXT_FIELDS = (
    "set_name",
    "ip",
    "cidr",
    "protocol",
    "description",
    "context",
    "set_type",
    "set_options",
)

# Written as a single token into restore text and scripts
_TOKEN_FIELDS = ("set_name", "ip", "cidr")
# Written as the rest of a create line
_HEADER_FIELDS = ("set_type", "set_options")


def utc_now() -> datetime.datetime:
    """Current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Attach UTC to naive datetimes coming back from a database."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def validate_record_id(record_id: int) -> int:
    """Reject ids outside the 6-digit range."""
    if (
        isinstance(record_id, bool)
        or not isinstance(record_id, int)
        or not MIN_RECORD_ID <= record_id <= MAX_RECORD_ID
    ):
        raise InvalidInputError(
            f"invalid record id {record_id!r} (must be a 6-digit number)",
            field="id",
        )
    return record_id


def validate_token(value: str, field: str) -> str:
    """Reject whitespace and control characters in a single-token field."""
    if any(ch.isspace() or not ch.isprintable() for ch in value):
        raise InvalidInputError(
            f"{field} must not contain whitespace or control characters", field=field
        )
    return value


def validate_header_text(value: str, field: str) -> str:
    """Reject control characters in set type and options."""
    if any(ch != " " and not ch.isprintable() for ch in value):
        raise InvalidInputError(f"{field} must not contain control characters", field=field)
    return value


def is_ipv6(ip: str) -> bool:
    return ":" in ip


def validate_restore_fields(record: "Record") -> None:
    """Check every field that is written into restore text."""
    for name in _TOKEN_FIELDS + ("protocol",):
        validate_token(getattr(record, name), name)
    for name in _HEADER_FIELDS:
        validate_header_text(getattr(record, name), name)


class Record(BaseModel):
    """One ipset membership entry bound to a numeric identity."""

    id: Optional[int] = None
    set_name: str = ""
    ip: str = ""
    cidr: str = ""
    port: int = Field(default=0, ge=0, le=65535)
    protocol: str = ""
    description: str = ""
    context: str = ""
    set_type: str = ""
    set_options: str = ""
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def none_as_empty(cls, v):
        # JSON from older clients omits or nulls the optional fields
        return "" if v is None else v

    @field_validator("port", mode="before")
    @classmethod
    def none_as_zero(cls, v):
        return 0 if v is None else v

    @field_validator("protocol")
    @classmethod
    def normalize_protocol(cls, v: str) -> str:
        return validate_token(v.strip().lower(), "protocol")

    @field_validator(*_TOKEN_FIELDS)
    @classmethod
    def single_token(cls, v: str, info: ValidationInfo) -> str:
        return validate_token(v, info.field_name)

    @field_validator(*_HEADER_FIELDS)
    @classmethod
    def header_text(cls, v: str, info: ValidationInfo) -> str:
        return validate_header_text(v, info.field_name)

    @property
    def address(self) -> str:
        """IP with its prefix length, if any."""
        if self.cidr:
            return f"{self.ip}/{self.cidr}"
        return self.ip

    @property
    def entry(self) -> str:
        """The record rendered as an ipset entry."""
        if self.protocol:
            return f"{self.address},{self.protocol}:{self.port}"
        if self.port:
            # Brackets keep the port apart from an IPv6 address
            if is_ipv6(self.ip):
                return f"[{self.address}]:{self.port}"
            return f"{self.address}:{self.port}"
        return self.address

    def identity_tuple(self) -> Tuple[str, str, str, int, str]:
        """The fields that survive an export/import round trip."""
        return (self.set_name, self.ip, self.cidr, self.port, self.protocol)

    def __str__(self) -> str:
        label = self.id if self.id is not None else "new"
        return f"{label} {self.set_name or '-'} {self.entry}"


class RecordPatch(BaseModel):
    """Partial update: only non-empty strings and a non-zero port apply."""

    set_name: str = ""
    ip: str = ""
    cidr: str = ""
    port: int = Field(default=0, ge=0, le=65535)
    protocol: str = ""
    description: str = ""
    context: str = ""
    set_type: str = ""
    set_options: str = ""

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return "" if v is None else v

    @field_validator("port", mode="before")
    @classmethod
    def none_as_zero(cls, v):
        return 0 if v is None else v

    @field_validator("protocol")
    @classmethod
    def normalize_protocol(cls, v: str) -> str:
        return validate_token(v.strip().lower(), "protocol")

    @field_validator(*_TOKEN_FIELDS)
    @classmethod
    def single_token(cls, v: str, info: ValidationInfo) -> str:
        return validate_token(v, info.field_name)

    @field_validator(*_HEADER_FIELDS)
    @classmethod
    def header_text(cls, v: str, info: ValidationInfo) -> str:
        return validate_header_text(v, info.field_name)

    def changes(self) -> Dict[str, Any]:
        """Fields that will overwrite the stored record."""
        updates: Dict[str, Any] = {
            name: getattr(self, name) for name in _TEXT_FIELDS if getattr(self, name)
        }
        if self.port:
            updates["port"] = self.port
        return updates

    def is_empty(self) -> bool:
        return not self.changes()

    def apply_to(
        self, record: Record, updated_at: Optional[datetime.datetime] = None
    ) -> Record:
        """Return a copy of ``record`` with this patch merged in."""
        updates = self.changes()
        updates["updated_at"] = updated_at or utc_now()
        return record.model_copy(update=updates)


class IPSet(BaseModel):
    """All active records sharing a set name; derived on read, never stored."""

    name: str
    type: str = ""
    options: str = ""
    records: List[Record] = []
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @property
    def record_count(self) -> int:
        return len(self.records)
