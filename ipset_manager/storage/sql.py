"""
Relational backend: one mutable row per active record.
"""

from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import Engine, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ..core.allocator import IdentityAllocator
from ..core.errors import BackendUnavailableError, DuplicateConstraintError, NotFoundError
from ..core.logging_config import get_logger
from ..core.records import Record, RecordPatch, as_utc, utc_now, validate_record_id
from .base import SEARCH_FIELDS, RecordStore, normalize_query, rank_search_results
from .models import Base, RecordRow, build_engine

logger = get_logger(__name__)


class SqlRecordStore(RecordStore):
    """Record store backed by the ``ipset_records`` table.

    Each public operation runs in its own transaction. Allocation reads the
    active ids and the insert follows in the same transaction, but without
    serializable isolation two writers can still pick the same id; the
    primary key turns the loser into a DuplicateConstraintError.
    """

    backend_name = "sql"

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
            Base.metadata.create_all(self.engine, tables=[RecordRow.__table__])
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
    def _to_entity(row: RecordRow) -> Record:
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
    def _to_model(record: Record) -> RecordRow:
        return RecordRow(
            id=record.id,
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

    def create(self, record: Record) -> Record:
        self._validate_new(record)

        with self._session() as session:
            active_ids = session.scalars(select(RecordRow.id)).all()
            record_id = self.allocator.allocate(active_ids)
            now = utc_now()
            created = record.model_copy(
                update={"id": record_id, "created_at": now, "updated_at": now}
            )
            session.add(self._to_model(created))
            try:
                session.flush()
            except IntegrityError as e:
                raise DuplicateConstraintError("record", "id", record_id) from e

        logger.debug("Created record %s", record_id)
        return created

    def get_by_id(self, record_id: int) -> Record:
        validate_record_id(record_id)
        with self._session() as session:
            row = session.get(RecordRow, record_id)
            if row is None:
                raise NotFoundError("record", record_id)
            return self._to_entity(row)

    def get_all(self) -> List[Record]:
        with self._session() as session:
            rows = session.scalars(select(RecordRow).order_by(RecordRow.id)).all()
            return [self._to_entity(row) for row in rows]

    def get_by_set_name(self, set_name: str) -> List[Record]:
        with self._session() as session:
            rows = session.scalars(
                select(RecordRow)
                .where(RecordRow.set_name == set_name)
                .order_by(RecordRow.id)
            ).all()
            if not rows:
                raise NotFoundError("set", set_name)
            return [self._to_entity(row) for row in rows]

    def update(self, record_id: int, patch: RecordPatch) -> Record:
        validate_record_id(record_id)
        values = patch.changes()
        values["updated_at"] = utc_now()

        with self._session() as session:
            result = session.execute(
                update(RecordRow).where(RecordRow.id == record_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("record", record_id)
            row = session.get(RecordRow, record_id, populate_existing=True)
            updated = self._to_entity(row)

        logger.debug("Updated record %s (%s)", record_id, ", ".join(sorted(values)))
        return updated

    def delete(self, record_id: int) -> None:
        validate_record_id(record_id)
        with self._session() as session:
            result = session.execute(delete(RecordRow).where(RecordRow.id == record_id))
            if result.rowcount == 0:
                raise NotFoundError("record", record_id)
        logger.debug("Deleted record %s", record_id)

    def delete_set(self, set_name: str) -> int:
        with self._session() as session:
            result = session.execute(
                delete(RecordRow).where(RecordRow.set_name == set_name)
            )
            if result.rowcount == 0:
                raise NotFoundError("set", set_name)
            count = result.rowcount
        logger.debug("Deleted set %s (%s records)", set_name, count)
        return count

    def search(self, query: str) -> List[Record]:
        query = normalize_query(query)
        needle = query.lower()
        conditions = [
            func.lower(getattr(RecordRow, field)).contains(needle, autoescape=True)
            for field in SEARCH_FIELDS
        ]
        with self._session() as session:
            rows = session.scalars(select(RecordRow).where(or_(*conditions))).all()
            candidates = [self._to_entity(row) for row in rows]
        return rank_search_results(candidates, query)

    def close(self) -> None:
        self.engine.dispose()
