"""Storage access for allocated document numbers.

All methods run inside a session/transaction owned by the caller. Unique
violations surface as SequenceTaken so the allocator can retry; every other
driver error becomes StorageUnavailable and is never retried here.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.documents.formatting import DocumentType
from src.core.documents.models import DocumentSequence, SequenceStatus
from src.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SequenceTaken(Exception):
    """The (type, scope, sequence) key or the formatted number already exists."""


async def guard_storage(operation: str, call: Callable[[], Awaitable[T]]) -> T:
    try:
        return await call()
    except IntegrityError:
        raise
    except DBAPIError as exc:
        logger.error("Numbering storage failure during %s: %s", operation, exc.orig)
        raise StorageUnavailable(operation, str(exc.orig)) from exc


class SequencePersistence:
    """Insert / query / delete DocumentSequence rows."""

    async def insert(
        self,
        session: AsyncSession,
        document_type: DocumentType,
        year: int,
        sequence: int,
        formatted_number: str,
        linked_entity_id: str | None = None,
        scope_year: int | None = None,
    ) -> DocumentSequence:
        """
        Insert one issued row and flush it; raises SequenceTaken on a unique violation.

        scope_year defaults to the year (yearly numbering).
        """
        row = DocumentSequence(
            document_type=document_type.value,
            year=year,
            scope_year=year if scope_year is None else scope_year,
            status=SequenceStatus.ISSUED.value,
            sequence=sequence,
            formatted_number=formatted_number,
            linked_entity_id=linked_entity_id,
        )
        session.add(row)
        try:
            await guard_storage("insert", session.flush)
        except IntegrityError as exc:
            raise SequenceTaken(formatted_number) from exc
        return row

    async def max_sequence(
        self, session: AsyncSession, document_type: DocumentType, year: int | None = None
    ) -> int:
        """
        Highest persisted sequence for the key (all years when year is None); 0 if none.

        Released rows count: their numbers are never handed out again.
        """
        stmt = select(DocumentSequence.sequence).where(
            DocumentSequence.document_type == document_type.value
        )
        if year is not None:
            stmt = stmt.where(DocumentSequence.year == year)
        stmt = stmt.order_by(DocumentSequence.sequence.desc()).limit(1)
        result = await guard_storage("max sequence query", lambda: session.execute(stmt))
        return result.scalar_one_or_none() or 0

    async def list_sequences(
        self, session: AsyncSession, document_type: DocumentType, year: int | None = None
    ) -> Sequence[DocumentSequence]:
        stmt = select(DocumentSequence).where(DocumentSequence.document_type == document_type.value)
        if year is not None:
            stmt = stmt.where(DocumentSequence.year == year)
        stmt = stmt.order_by(
            DocumentSequence.year,
            DocumentSequence.sequence,
            DocumentSequence.created_at,
            DocumentSequence.id,
        )
        result = await guard_storage("sequence scan", lambda: session.execute(stmt))
        return result.scalars().all()

    async def count(
        self, session: AsyncSession, document_type: DocumentType, year: int | None = None
    ) -> int:
        stmt = select(func.count()).select_from(DocumentSequence).where(
            DocumentSequence.document_type == document_type.value
        )
        if year is not None:
            stmt = stmt.where(DocumentSequence.year == year)
        result = await guard_storage("count", lambda: session.execute(stmt))
        return result.scalar_one()

    async def delete_for_key(
        self, session: AsyncSession, document_type: DocumentType, year: int
    ) -> int:
        stmt = delete(DocumentSequence).where(
            DocumentSequence.document_type == document_type.value,
            DocumentSequence.year == year,
        )
        result = await guard_storage("delete by key", lambda: session.execute(stmt))
        return result.rowcount

    async def delete_ids(self, session: AsyncSession, ids: list[int]) -> int:
        if not ids:
            return 0
        stmt = delete(DocumentSequence).where(DocumentSequence.id.in_(ids))
        result = await guard_storage("delete by id", lambda: session.execute(stmt))
        return result.rowcount

    async def find_by_number(
        self, session: AsyncSession, formatted_number: str
    ) -> DocumentSequence | None:
        stmt = select(DocumentSequence).where(DocumentSequence.formatted_number == formatted_number)
        result = await guard_storage("number lookup", lambda: session.execute(stmt))
        return result.scalar_one_or_none()

    async def find_by_linked_entity(
        self, session: AsyncSession, linked_entity_id: str
    ) -> DocumentSequence | None:
        stmt = (
            select(DocumentSequence)
            .where(
                DocumentSequence.linked_entity_id == linked_entity_id,
                DocumentSequence.status == SequenceStatus.ISSUED.value,
            )
            .order_by(DocumentSequence.created_at.desc(), DocumentSequence.id.desc())
            .limit(1)
        )
        result = await guard_storage("linked entity lookup", lambda: session.execute(stmt))
        return result.scalar_one_or_none()
