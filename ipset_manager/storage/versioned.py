"""
Versioned backend: rows are only ever inserted.

Every mutation appends a new ``(id, version)`` row. The current state of a
record is its highest version, and a record whose highest version is a
tombstone is deleted. Nothing in this module issues UPDATE or DELETE.
"""

from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel
from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ..core.allocator import IdentityAllocator
from ..core.errors import BackendUnavailableError, DuplicateConstraintError, NotFoundError
from ..core.logging_config import get_logger
from ..core.records import Record, RecordPatch, as_utc, utc_now, validate_record_id
from .base import RecordStore, normalize_query, rank_search_results
from .models import Base, RecordVersionRow, build_engine

logger = get_logger(__name__)


class RecordVersion(BaseModel):
    """One stored version of a record."""

    version: int
    tombstone: bool = False
    record: Record


def latest_versions(rows: Iterable) -> Dict[int, object]:
    """Highest-version row per id, tombstones included.

    ``rows`` only need ``id`` and ``version`` attributes.
    """
    latest: Dict[int, object] = {}
    for row in rows:
        held = latest.get(row.id)
        if held is None or row.version > held.version:
            latest[row.id] = row
    return latest


def resolve_current(rows: Iterable) -> Dict[int, object]:
    """Current state per id: the highest version, dropped if it is a tombstone."""
    return {
        record_id: row
        for record_id, row in latest_versions(rows).items()
        if not row.tombstone
    }


class VersionedRecordStore(RecordStore):
    """Record store over the insert-only ``ipset_record_versions`` table.

    Allocation and insert are separate reads and writes. Two concurrent
    creates can pick the same id and version; the composite primary key
    rejects the second insert, which surfaces as DuplicateConstraintError.
    """

    backend_name = "versioned"

    def __init__(
        self,
        database_url: str,
        allocator: Optional[IdentityAllocator] = None,
        echo: bool = False,
        engine: Optional[Engine] = None,
    ):
        super().__init__(allocator)
        self.database_url = database_url
        self.engine = engine or build_engine(database_url, echo=echo)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

        try:
            Base.metadata.create_all(self.engine, tables=[RecordVersionRow.__table__])
        except (OperationalError, InterfaceError) as e:
            raise BackendUnavailableError(self.backend_name, str(e.orig)) from e

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (OperationalError, InterfaceError) as e:
            session.rollback()
            raise BackendUnavailableError(self.backend_name, str(e.orig)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _to_entity(row: RecordVersionRow) -> Record:
        return Record(
            id=row.id,
            set_name=row.set_name,
            ip=row.ip,
            cidr=row.cidr,
            port=row.port,
            protocol=row.protocol,
            description=row.description,
            context=row.context,
            set_type=row.set_type,
            set_options=row.set_options,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    @staticmethod
    def _to_model(record: Record, version: int, tombstone: bool = False) -> RecordVersionRow:
        return RecordVersionRow(
            id=record.id,
            version=version,
            tombstone=tombstone,
            set_name=record.set_name,
            ip=record.ip,
            cidr=record.cidr,
            port=record.port,
            protocol=record.protocol,
            description=record.description,
            context=record.context,
            set_type=record.set_type,
            set_options=record.set_options,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def _append(self, session: Session, record: Record, version: int, tombstone: bool = False):
        session.add(self._to_model(record, version, tombstone))
        try:
            session.flush()
        except IntegrityError as e:
            raise DuplicateConstraintError(
                "record version", "id,version", f"{record.id},{version}"
            ) from e

    def _current_row(self, session: Session, record_id: int) -> RecordVersionRow:
        rows = session.scalars(
            select(RecordVersionRow).where(RecordVersionRow.id == record_id)
        ).all()
        current = resolve_current(rows).get(record_id)
        if current is None:
            raise NotFoundError("record", record_id)
        return current

    def _current_rows(self, session: Session) -> List[RecordVersionRow]:
        rows = session.scalars(select(RecordVersionRow)).all()
        current = resolve_current(rows)
        return [current[record_id] for record_id in sorted(current)]

    def create(self, record: Record) -> Record:
        self._validate_new(record)

        with self._session() as session:
            heads = latest_versions(
                session.execute(
                    select(
                        RecordVersionRow.id,
                        RecordVersionRow.version,
                        RecordVersionRow.tombstone,
                    )
                ).all()
            )
            active_ids = {rid for rid, head in heads.items() if not head.tombstone}
            record_id = self.allocator.allocate(active_ids)
            if record_id in active_ids:
                raise DuplicateConstraintError("record", "id", record_id)
            # A reused id continues its own history.
            version = heads[record_id].version + 1 if record_id in heads else 1

            now = utc_now()
            created = record.model_copy(
                update={"id": record_id, "created_at": now, "updated_at": now}
            )
            self._append(session, created, version)

        logger.debug("Created record %s at version %s", record_id, version)
        return created

    def get_by_id(self, record_id: int) -> Record:
        validate_record_id(record_id)
        with self._session() as session:
            return self._to_entity(self._current_row(session, record_id))

    def get_all(self) -> List[Record]:
        with self._session() as session:
            return [self._to_entity(row) for row in self._current_rows(session)]

    def get_by_set_name(self, set_name: str) -> List[Record]:
        matches = [r for r in self.get_all() if r.set_name == set_name]
        if not matches:
            raise NotFoundError("set", set_name)
        return matches

    def update(self, record_id: int, patch: RecordPatch) -> Record:
        validate_record_id(record_id)
        with self._session() as session:
            current = self._current_row(session, record_id)
            updated = patch.apply_to(self._to_entity(current))
            self._append(session, updated, current.version + 1)

        logger.debug("Updated record %s to version %s", record_id, current.version + 1)
        return updated

    def delete(self, record_id: int) -> None:
        validate_record_id(record_id)
        with self._session() as session:
            current = self._current_row(session, record_id)
            doomed = self._to_entity(current).model_copy(update={"updated_at": utc_now()})
            self._append(session, doomed, current.version + 1, tombstone=True)
        logger.debug("Tombstoned record %s", record_id)

    def delete_set(self, set_name: str) -> int:
        with self._session() as session:
            members = [
                row for row in self._current_rows(session) if row.set_name == set_name
            ]
            if not members:
                raise NotFoundError("set", set_name)
            now = utc_now()
            for row in members:
                doomed = self._to_entity(row).model_copy(update={"updated_at": now})
                self._append(session, doomed, row.version + 1, tombstone=True)

        logger.debug("Tombstoned set %s (%s records)", set_name, len(members))
        return len(members)

    def search(self, query: str) -> List[Record]:
        query = normalize_query(query)
        return rank_search_results(self.get_all(), query)

    def history(self, record_id: int) -> List[RecordVersion]:
        """Every stored version of a record, oldest first."""
        validate_record_id(record_id)
        with self._session() as session:
            rows = session.scalars(
                select(RecordVersionRow)
                .where(RecordVersionRow.id == record_id)
                .order_by(RecordVersionRow.version)
            ).all()
            if not rows:
                raise NotFoundError("record", record_id)
            return [
                RecordVersion(
                    version=row.version,
                    tombstone=row.tombstone,
                    record=self._to_entity(row),
                )
                for row in rows
            ]

    def close(self) -> None:
        self.engine.dispose()
