"""
SQLAlchemy ORM models for persistent storage.

Models mirror the dataclass models but add database persistence.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class StorageLocationDB(Base):
    """A physical place cards live in: a box or a binder."""

    __tablename__ = "storage_locations"
    __table_args__ = (
        CheckConstraint("storage_type IN ('Box', 'Binder')", name="ck_storage_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    storage_type: Mapped[str] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<StorageLocationDB(id={self.id}, name={self.name})>"


class SortingRuleDB(Base):
    """
    A sorting rule stored in the database.

    Lower priority values are evaluated first. Storage locations that are
    targeted by a rule cannot be deleted.
    """

    __tablename__ = "sorting_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    priority: Mapped[int] = mapped_column(Integer, index=True)
    expression: Mapped[str] = mapped_column(Text)
    storage_location_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("storage_locations.id", ondelete="RESTRICT"), index=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<SortingRuleDB(id={self.id}, name={self.name}, priority={self.priority})>"


class CardDB(Base):
    """
    Catalog card data keyed by Scryfall id.

    Written by the bulk data importer; read here to build evaluation contexts.
    """

    __tablename__ = "cards"

    scryfall_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    oracle_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    raw_json: Mapped[str] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<CardDB(scryfall_id={self.scryfall_id}, name={self.name})>"


class InventoryItemDB(Base):
    """
    One owned printing in one treatment.

    storage_location_id is None while the item is unassigned.
    """

    __tablename__ = "inventory"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scryfall_id: Mapped[str] = mapped_column(String(255), index=True)
    oracle_id: Mapped[str] = mapped_column(String(255), index=True)
    treatment: Mapped[str] = mapped_column(String(100), default="")
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    storage_location_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("storage_locations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<InventoryItemDB(id={self.id}, scryfall_id={self.scryfall_id})>"


class JobDB(Base):
    """
    A long-running background job.

    Progress lives in ``job_metadata`` (JSON) so each job type can report
    its own fields.
    """

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(50), index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<JobDB(id={self.id}, type={self.type}, status={self.status})>"
