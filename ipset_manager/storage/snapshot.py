"""
Snapshot backend: the whole record collection lives in one JSON document.

Every operation reads the document, mutates it in memory and writes it back
under a single exclusive lock, so operations on one store serialize.
"""

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from ..core.allocator import IdentityAllocator
from ..core.errors import BackendUnavailableError, DuplicateConstraintError, NotFoundError
from ..core.logging_config import get_logger
from ..core.records import (
    MIN_RECORD_ID,
    Record,
    RecordPatch,
    utc_now,
    validate_record_id,
)
from .base import RecordStore, normalize_query, rank_search_results

logger = get_logger(__name__)


class SnapshotRecordStore(RecordStore):
    """Record store persisted as a single JSON snapshot file.

    Layout::

        {"records": {"100000": {...}, ...}, "next_id": 100001}

    ``next_id`` is the id after the most recently issued one. It is kept for
    readers of the file; allocation always rescans the active ids.
    """

    backend_name = "snapshot"

    def __init__(
        self, path: Union[str, Path], allocator: Optional[IdentityAllocator] = None
    ):
        super().__init__(allocator)
        self.path = Path(path)
        self._lock = threading.Lock()

        with self._lock:
            if not self.path.exists():
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise BackendUnavailableError(self.backend_name, str(e)) from e
                self._write({}, MIN_RECORD_ID)
                logger.debug("Created empty snapshot at %s", self.path)

    def _read(self) -> Tuple[Dict[int, Record], int]:
        try:
            document = json.loads(self.path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BackendUnavailableError(self.backend_name, f"{self.path}: {e}") from e

        try:
            records = {
                int(key): Record.model_validate(value)
                for key, value in document.get("records", {}).items()
            }
            next_id = int(document.get("next_id", MIN_RECORD_ID))
        except (ValidationError, ValueError, TypeError, AttributeError) as e:
            raise BackendUnavailableError(
                self.backend_name, f"{self.path}: malformed snapshot: {e}"
            ) from e
        return records, next_id

    def _write(self, records: Dict[int, Record], next_id: int) -> None:
        document: Dict[str, Any] = {
            "records": {
                str(record_id): record.model_dump(mode="json")
                for record_id, record in sorted(records.items())
            },
            "next_id": next_id,
        }
        try:
            self.path.write_text(json.dumps(document, indent=2), "utf-8")
        except OSError as e:
            raise BackendUnavailableError(self.backend_name, f"{self.path}: {e}") from e

    def create(self, record: Record) -> Record:
        self._validate_new(record)

        # Allocation and insert share the lock, so this backend has no
        # allocate/insert race within a process.
        with self._lock:
            records, _ = self._read()
            record_id = self.allocator.allocate(records.keys())
            if record_id in records:
                raise DuplicateConstraintError("record", "id", record_id)
            now = utc_now()
            created = record.model_copy(
                update={"id": record_id, "created_at": now, "updated_at": now}
            )
            records[record_id] = created
            self._write(records, record_id + 1)

        logger.debug("Created record %s in %s", record_id, self.path)
        return created

    def get_by_id(self, record_id: int) -> Record:
        validate_record_id(record_id)
        with self._lock:
            records, _ = self._read()
        if record_id not in records:
            raise NotFoundError("record", record_id)
        return records[record_id]

    def get_all(self) -> List[Record]:
        with self._lock:
            records, _ = self._read()
        return [records[record_id] for record_id in sorted(records)]

    def get_by_set_name(self, set_name: str) -> List[Record]:
        matches = [r for r in self.get_all() if r.set_name == set_name]
        if not matches:
            raise NotFoundError("set", set_name)
        return matches

    def update(self, record_id: int, patch: RecordPatch) -> Record:
        validate_record_id(record_id)
        with self._lock:
            records, next_id = self._read()
            if record_id not in records:
                raise NotFoundError("record", record_id)
            updated = patch.apply_to(records[record_id])
            records[record_id] = updated
            self._write(records, next_id)

        logger.debug("Updated record %s", record_id)
        return updated

    def delete(self, record_id: int) -> None:
        validate_record_id(record_id)
        with self._lock:
            records, next_id = self._read()
            if records.pop(record_id, None) is None:
                raise NotFoundError("record", record_id)
            self._write(records, next_id)

        logger.debug("Deleted record %s", record_id)

    def delete_set(self, set_name: str) -> int:
        with self._lock:
            records, next_id = self._read()
            doomed = [rid for rid, r in records.items() if r.set_name == set_name]
            if not doomed:
                raise NotFoundError("set", set_name)
            for record_id in doomed:
                del records[record_id]
            self._write(records, next_id)

        logger.debug("Deleted set %s (%s records)", set_name, len(doomed))
        return len(doomed)

    def search(self, query: str) -> List[Record]:
        query = normalize_query(query)
        return rank_search_results(self.get_all(), query)
