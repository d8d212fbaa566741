import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..core.records import IPSet, Record, RecordPatch
from ..importer.engine import ImportReport, SetImportResult


class LoginRequest(BaseModel):
    api_key: str


class LoginResponse(BaseModel):
    token: str


class ErrorResponse(BaseModel):
    error: str


class RecordCreate(BaseModel):
    set_name: Optional[str] = ""
    ip: str
    cidr: Optional[str] = ""
    port: Optional[int] = Field(default=0, ge=0, le=65535)
    protocol: Optional[str] = ""
    description: Optional[str] = ""
    context: str
    set_type: Optional[str] = ""
    set_options: Optional[str] = ""

    def to_record(self) -> Record:
        return Record(**self.model_dump())


class RecordUpdate(BaseModel):
    set_name: Optional[str] = ""
    ip: Optional[str] = ""
    cidr: Optional[str] = ""
    port: Optional[int] = Field(default=0, ge=0, le=65535)
    protocol: Optional[str] = ""
    description: Optional[str] = ""
    context: Optional[str] = ""
    set_type: Optional[str] = ""
    set_options: Optional[str] = ""

    def to_patch(self) -> RecordPatch:
        return RecordPatch(**self.model_dump())


class ImportRequest(BaseModel):
    """Either pre-parsed records or restore-format text to parse here."""

    records: List[RecordCreate] = []
    text: Optional[str] = None
    source: str = "api"
    context_prefix: Optional[str] = None
    dry_run: bool = False


class ImportResponse(BaseModel):
    dry_run: bool
    total_succeeded: int
    total_failed: int
    sets: List[SetImportResult] = []

    @classmethod
    def from_report(cls, report: ImportReport) -> "ImportResponse":
        return cls(
            dry_run=report.dry_run,
            total_succeeded=report.total_succeeded,
            total_failed=report.total_failed,
            sets=report.sets,
        )


class SetSummary(BaseModel):
    name: str
    type: str = ""
    options: str = ""
    record_count: int
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @classmethod
    def from_ipset(cls, ipset: IPSet) -> "SetSummary":
        return cls(
            name=ipset.name,
            type=ipset.type,
            options=ipset.options,
            record_count=ipset.record_count,
            created_at=ipset.created_at,
            updated_at=ipset.updated_at,
        )


class DeleteSetResponse(BaseModel):
    set_name: str
    deleted: int
