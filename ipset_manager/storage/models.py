"""
SQLAlchemy tables for the relational backends.
"""

import datetime
from pathlib import Path

from sqlalchemy import Boolean, DateTime, Engine, Index, Integer, String, Text, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for ipset-manager tables."""

    pass


class RecordRow(Base):
    """Mutable row: one per active record, updated and deleted in place."""

    __tablename__ = "ipset_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    set_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    ip: Mapped[str] = mapped_column(String(45), nullable=False)
    cidr: Mapped[str] = mapped_column(String(45), nullable=False, default="")
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    protocol: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    context: Mapped[str] = mapped_column(Text, nullable=False)
    set_type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    set_options: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("ix_ipset_records_set_name", "set_name"),
        Index("ix_ipset_records_ip", "ip"),
    )

    def __repr__(self) -> str:
        return f"<RecordRow(id={self.id}, set='{self.set_name}', ip='{self.ip}')>"


class RecordVersionRow(Base):
    """Insert-only version row; (id, version) is unique."""

    __tablename__ = "ipset_record_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    tombstone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    set_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    ip: Mapped[str] = mapped_column(String(45), nullable=False)
    cidr: Mapped[str] = mapped_column(String(45), nullable=False, default="")
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    protocol: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    context: Mapped[str] = mapped_column(Text, nullable=False)
    set_type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    set_options: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<RecordVersionRow(id={self.id}, version={self.version}, "
            f"tombstone={self.tombstone})>"
        )


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine, making the parent directory of a SQLite file."""
    url = make_url(database_url)
    if url.drivername.startswith("sqlite") and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, echo=echo)
