from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BaseModel, BigIntPK
from src.core.documents.formatting import ResetPeriod

# scope_year of rows allocated under reset_period=never
SHARED_SCOPE = 0


class SequenceStatus(StrEnum):
    """Lifecycle of an allocated number."""

    ISSUED = "issued"
    RELEASED = "released"


class DocumentSequence(Base):
    """One allocated document number.

    Rows are never renumbered. A released number keeps its row with
    status=released so the floor of later allocations still counts it;
    only reset and repair delete rows.

    scope_year is the year for yearly numbering and SHARED_SCOPE for
    numbering that never resets, so the unique key serializes every
    allocation that draws from the same counter.
    """

    __tablename__ = "document_sequences"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    document_type: Mapped[str] = mapped_column(String(30), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    scope_year: Mapped[int] = mapped_column(Integer, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    formatted_number: Mapped[str] = mapped_column(String(30), nullable=False)
    linked_entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SequenceStatus.ISSUED.value
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "document_type",
            "scope_year",
            "sequence",
            name="uq_document_sequence_type_scope_sequence",
        ),
        UniqueConstraint("formatted_number", name="uq_document_sequence_formatted_number"),
    )

    @property
    def is_released(self) -> bool:
        return self.status == SequenceStatus.RELEASED.value


class NumberingPolicy(BaseModel):
    """Per document type numbering configuration.

    current_number_cache is advisory: allocation always takes
    max(cache, last persisted + 1, start_number). generation is bumped by
    every maintenance run so stale cache writes can be discarded.
    """

    __tablename__ = "numbering_policies"

    document_type: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    start_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    reset_period: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ResetPeriod.YEARLY.value
    )
    current_number_cache: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Year the cache value belongs to; NULL until the first allocation.
    cache_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Exclusive maintenance flag (reset/repair)
    maintenance_holder: Mapped[str | None] = mapped_column(String(100), nullable=True)
    maintenance_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
