"""Numbering policy settings service.

Policies are cached per store instance, never in module state. Callers that
change policies from outside this process (another instance, a migration)
must call invalidate() to drop the cached snapshots.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.documents.formatting import DocumentType, ResetPeriod
from src.core.documents.models import NumberingPolicy
from src.core.documents.persistence import guard_storage
from src.core.exceptions import MaintenanceInProgress, StorageUnavailable, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_START_NUMBER = 1


class PolicyMissing(Exception):
    """The policy row for a document type does not exist (yet)."""


@dataclass(frozen=True)
class PolicySnapshot:
    """Read-only copy of a numbering_policies row."""

    id: int
    document_type: DocumentType
    start_number: int
    reset_period: ResetPeriod
    current_number_cache: int
    cache_year: int | None
    generation: int
    maintenance_holder: str | None = None
    maintenance_started_at: datetime | None = None

    def cached_floor(self, year: int) -> int:
        """Advisory cache value relevant to `year` (0 when it belongs to another year)."""
        if self.reset_period == ResetPeriod.NEVER or self.cache_year == year:
            return self.current_number_cache
        return 0


def parse_document_type(value: str | DocumentType) -> DocumentType:
    try:
        return DocumentType(str(value).upper())
    except ValueError:
        raise ValidationError(f"Unknown document type: {value}", field="document_type") from None


def parse_reset_period(value: str | ResetPeriod) -> ResetPeriod:
    raw = str(value).lower()
    if raw == "monthly":
        raise ValidationError(
            "Monthly reset is not supported: numbers are scoped by document type and year",
            field="reset_period",
        )
    try:
        return ResetPeriod(raw)
    except ValueError:
        raise ValidationError(f"Unknown reset period: {value}", field="reset_period") from None


def _snapshot(row: NumberingPolicy) -> PolicySnapshot:
    return PolicySnapshot(
        id=row.id,
        document_type=DocumentType(row.document_type),
        start_number=row.start_number,
        reset_period=ResetPeriod(row.reset_period),
        current_number_cache=row.current_number_cache,
        cache_year=row.cache_year,
        generation=row.generation,
        maintenance_holder=row.maintenance_holder,
        maintenance_started_at=row.maintenance_started_at,
    )


class NumberingPolicyStore:
    """Reads and writes numbering policies; holds the maintenance flag."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._cache: dict[DocumentType, PolicySnapshot] = {}

    def invalidate(self, document_type: DocumentType | None = None) -> None:
        """Drop cached snapshots (one type or all)."""
        if document_type is None:
            self._cache.clear()
        else:
            self._cache.pop(document_type, None)

    # --- Settings API ---

    async def get_policy(self, document_type: DocumentType) -> PolicySnapshot:
        """Cached policy snapshot; loads (and creates with defaults) on miss."""
        document_type = parse_document_type(document_type)
        cached = self._cache.get(document_type)
        if cached is not None:
            return cached
        try:
            async with self.session_factory() as session:
                row = await self._load_or_create(session, document_type)
                await session.commit()
                snapshot = _snapshot(row)
        except DBAPIError as exc:
            raise StorageUnavailable("policy read", str(exc.orig)) from exc
        self._cache[document_type] = snapshot
        return snapshot

    async def get_all_policies(self) -> list[PolicySnapshot]:
        return [await self.get_policy(doc_type) for doc_type in DocumentType]

    async def update_policy(
        self,
        document_type: DocumentType,
        start_number: int | None = None,
        reset_period: str | ResetPeriod | None = None,
    ) -> PolicySnapshot:
        """Administrator update of start number and/or reset period."""
        document_type = parse_document_type(document_type)
        if start_number is not None and start_number < 1:
            raise ValidationError("Start number must be at least 1", field="start_number")
        period = parse_reset_period(reset_period) if reset_period is not None else None

        try:
            async with self.session_factory() as session:
                row = await self._load_or_create(session, document_type)
                if start_number is not None:
                    row.start_number = start_number
                if period is not None:
                    row.reset_period = period.value
                await session.commit()
                await session.refresh(row)
                snapshot = _snapshot(row)
        except DBAPIError as exc:
            raise StorageUnavailable("policy update", str(exc.orig)) from exc

        logger.info(
            "Numbering policy for %s updated: start=%s period=%s",
            document_type,
            snapshot.start_number,
            snapshot.reset_period,
        )
        self._cache[document_type] = snapshot
        return snapshot

    # --- Operations run inside the caller's transaction ---

    async def read_policy(
        self, session: AsyncSession, document_type: DocumentType, lock: bool = False
    ) -> PolicySnapshot:
        """
        Fresh read of the policy row, bypassing the snapshot cache.

        With lock=True the row is read under a shared lock: shared locks do
        not block other allocators, but a maintenance run cannot raise the
        flag until every in-flight allocation has committed.
        """
        stmt = select(NumberingPolicy).where(NumberingPolicy.document_type == document_type.value)
        if lock:
            stmt = stmt.with_for_update(read=True)
        result = await guard_storage("policy read", lambda: session.execute(stmt))
        row = result.scalar_one_or_none()
        if row is None:
            raise PolicyMissing(document_type)
        return _snapshot(row)

    async def ensure_exists(self, document_type: DocumentType) -> None:
        """Create the default policy row if it is missing (race-safe)."""
        try:
            async with self.session_factory() as session:
                await self._load_or_create(session, document_type)
                await session.commit()
        except DBAPIError as exc:
            raise StorageUnavailable("policy create", str(exc.orig)) from exc

    async def raise_cache(
        self,
        session: AsyncSession,
        document_type: DocumentType,
        next_number: int,
        year: int,
        generation: int,
        across_years: bool = False,
    ) -> bool:
        """
        Move the advisory cache forward to next_number for `year`.

        Never moves it backwards, and is discarded when a maintenance run
        bumped the generation since the caller read the policy. With
        across_years (numbering that never resets) only the value is compared.
        """
        if across_years:
            forward = NumberingPolicy.current_number_cache < next_number
        else:
            forward = or_(
                NumberingPolicy.cache_year.is_(None),
                NumberingPolicy.cache_year < year,
                and_(
                    NumberingPolicy.cache_year == year,
                    NumberingPolicy.current_number_cache < next_number,
                ),
            )
        stmt = (
            update(NumberingPolicy)
            .where(
                NumberingPolicy.document_type == document_type.value,
                NumberingPolicy.generation == generation,
                forward,
            )
            .values(current_number_cache=next_number, cache_year=year)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        self.invalidate(document_type)
        return result.rowcount > 0

    async def set_cache(
        self, session: AsyncSession, document_type: DocumentType, value: int, year: int | None
    ) -> None:
        """Overwrite the cache. Only used while holding the maintenance flag."""
        stmt = (
            update(NumberingPolicy)
            .where(NumberingPolicy.document_type == document_type.value)
            .values(current_number_cache=value, cache_year=year)
            .execution_options(synchronize_session=False)
        )
        await guard_storage("cache update", lambda: session.execute(stmt))
        self.invalidate(document_type)

    # --- Maintenance flag ---

    async def acquire_maintenance(
        self, document_type: DocumentType, holder: str, ttl_seconds: int
    ) -> PolicySnapshot:
        """
        Raise the exclusive maintenance flag (committed, visible to every process).

        Succeeds only if the flag is free or older than ttl_seconds. Bumps
        the generation so cache writes from allocations that started before
        the flag are discarded.
        """
        await self.ensure_exists(document_type)
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=ttl_seconds)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    update(NumberingPolicy)
                    .where(
                        NumberingPolicy.document_type == document_type.value,
                        or_(
                            NumberingPolicy.maintenance_holder.is_(None),
                            NumberingPolicy.maintenance_started_at < cutoff,
                        ),
                    )
                    .values(
                        maintenance_holder=holder,
                        maintenance_started_at=now,
                        generation=NumberingPolicy.generation + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    await session.rollback()
                    current = await session.execute(
                        select(NumberingPolicy.maintenance_holder).where(
                            NumberingPolicy.document_type == document_type.value
                        )
                    )
                    raise MaintenanceInProgress(document_type.value, current.scalar_one_or_none())
                await session.commit()
                row = (
                    await session.execute(
                        select(NumberingPolicy).where(
                            NumberingPolicy.document_type == document_type.value
                        )
                    )
                ).scalar_one()
                snapshot = _snapshot(row)
        except DBAPIError as exc:
            raise StorageUnavailable("maintenance flag acquire", str(exc.orig)) from exc
        self.invalidate(document_type)
        logger.info("Maintenance flag for %s acquired by %s", document_type, holder)
        return snapshot

    async def release_maintenance(self, document_type: DocumentType, holder: str) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(NumberingPolicy)
                    .where(
                        NumberingPolicy.document_type == document_type.value,
                        NumberingPolicy.maintenance_holder == holder,
                    )
                    .values(maintenance_holder=None, maintenance_started_at=None)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except DBAPIError as exc:
            raise StorageUnavailable("maintenance flag release", str(exc.orig)) from exc
        self.invalidate(document_type)
        logger.info("Maintenance flag for %s released by %s", document_type, holder)

    # --- Helpers ---

    async def _load_or_create(
        self, session: AsyncSession, document_type: DocumentType
    ) -> NumberingPolicy:
        stmt = select(NumberingPolicy).where(NumberingPolicy.document_type == document_type.value)
        row = (await session.execute(stmt)).scalar_one_or_none()
        if row is not None:
            return row
        row = NumberingPolicy(
            document_type=document_type.value,
            start_number=DEFAULT_START_NUMBER,
            reset_period=ResetPeriod.YEARLY.value,
            current_number_cache=DEFAULT_START_NUMBER,
            cache_year=None,
            generation=0,
        )
        session.add(row)
        try:
            await session.flush()
        except IntegrityError:
            # Another process created it first
            await session.rollback()
            row = (await session.execute(stmt)).scalar_one()
        return row
