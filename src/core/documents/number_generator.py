import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.audit import AuditAction, create_audit_log
from src.core.config import settings
from src.core.documents.diagnostics import DiagnosticReport, scan_sequences
from src.core.documents.formatting import DocumentType, ResetPeriod, format_number
from src.core.documents.models import SHARED_SCOPE, SequenceStatus
from src.core.documents.persistence import SequencePersistence, SequenceTaken, guard_storage
from src.core.documents.policy_store import (
    NumberingPolicyStore,
    PolicyMissing,
    PolicySnapshot,
    parse_document_type,
)
from src.core.exceptions import (
    ConcurrencyConflict,
    MaintenanceInProgress,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResetResult:
    document_type: DocumentType
    year: int
    deleted: int
    next_number: str


class _MaintenanceBusy(Exception):
    def __init__(self, holder: str | None):
        self.holder = holder
        super().__init__(holder)


class NumberAuthority:
    """
    Allocates sequential document numbers: F <code><YYYY><NNNN>.

    Examples:
        F A20260001   (first invoice of 2026)
        F PO20260042  (42nd purchase order of 2026)

    The only serialization point between callers, in this process or any
    other, is the unique constraint on (document_type, scope_year, sequence).
    scope_year is the year for yearly numbering and one shared scope when
    numbering never resets. A caller that loses the race recomputes the
    candidate and retries with bounded exponential backoff.

    An allocated number is never handed out again. Released numbers keep
    their row, so they stay gaps; only reset and repair delete rows.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy_store: NumberingPolicyStore | None = None,
        persistence: SequencePersistence | None = None,
        max_attempts: int | None = None,
        backoff_base_ms: int | None = None,
        backoff_max_ms: int | None = None,
        maintenance_ttl_seconds: int | None = None,
    ):
        self.session_factory = session_factory
        self.policies = policy_store or NumberingPolicyStore(session_factory)
        self.persistence = persistence or SequencePersistence()
        self.max_attempts = max_attempts or settings.numbering_max_attempts
        self.backoff_base_ms = (
            backoff_base_ms if backoff_base_ms is not None else settings.numbering_backoff_base_ms
        )
        self.backoff_max_ms = (
            backoff_max_ms if backoff_max_ms is not None else settings.numbering_backoff_max_ms
        )
        self.maintenance_ttl_seconds = (
            maintenance_ttl_seconds
            if maintenance_ttl_seconds is not None
            else settings.maintenance_flag_ttl_seconds
        )
        self._known_types: set[DocumentType] = set()

    # --- Helper Methods ---

    @staticmethod
    def _year(year: int | None) -> int:
        return year if year is not None else datetime.now().year

    @staticmethod
    def _scope_year(policy: PolicySnapshot, year: int) -> int | None:
        """Year filter for the last-sequence query (None = across all years)."""
        return None if policy.reset_period == ResetPeriod.NEVER else year

    @staticmethod
    def _storage_scope(policy: PolicySnapshot, year: int) -> int:
        return SHARED_SCOPE if policy.reset_period == ResetPeriod.NEVER else year

    @staticmethod
    def _candidate(policy: PolicySnapshot, year: int, last_sequence: int) -> int:
        return max(policy.cached_floor(year), last_sequence + 1, policy.start_number)

    def _backoff_seconds(self, attempt: int) -> float:
        delay_ms = min(self.backoff_base_ms * (2 ** (attempt - 1)), self.backoff_max_ms)
        # Jitter keeps colliding callers from retrying in lockstep
        return delay_ms * random.uniform(0.5, 1.0) / 1000

    def _flag_active(self, policy: PolicySnapshot) -> bool:
        if policy.maintenance_holder is None:
            return False
        started = policy.maintenance_started_at
        if started is None:
            return True
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - started < timedelta(seconds=self.maintenance_ttl_seconds)

    @staticmethod
    def _holder(actor: str | None) -> str:
        return f"{actor or 'system'}:{uuid.uuid4().hex[:8]}"

    async def _ensure_policy(self, document_type: DocumentType) -> None:
        if document_type not in self._known_types:
            await self.policies.ensure_exists(document_type)
            self._known_types.add(document_type)

    # --- Numbering ---

    async def preview_next(self, document_type: DocumentType | str, year: int | None = None) -> str:
        """
        Number the next allocate() would try, without reserving it.

        Advisory only: another caller may take it first.
        """
        document_type = parse_document_type(document_type)
        year = self._year(year)
        policy = await self.policies.get_policy(document_type)
        async with self.session_factory() as session:
            last = await self.persistence.max_sequence(
                session, document_type, self._scope_year(policy, year)
            )
        return format_number(document_type, year, self._candidate(policy, year, last))

    async def allocate(
        self,
        document_type: DocumentType | str,
        year: int | None = None,
        linked_entity_id: str | None = None,
    ) -> str:
        """
        Allocate and persist the next number for (document_type, year).

        Raises:
            ConcurrencyConflict: every attempt collided with another caller
            MaintenanceInProgress: reset/repair held the flag for every attempt
            StorageUnavailable: the store failed (not retried)
        """
        document_type = parse_document_type(document_type)
        year = self._year(year)
        await self._ensure_policy(document_type)

        busy_holder: str | None = None
        for attempt in range(1, self.max_attempts + 1):
            busy_holder = None
            try:
                async with self.session_factory() as session:
                    policy = await self.policies.read_policy(session, document_type, lock=True)
                    if self._flag_active(policy):
                        raise _MaintenanceBusy(policy.maintenance_holder)
                    last = await self.persistence.max_sequence(
                        session, document_type, self._scope_year(policy, year)
                    )
                    sequence = self._candidate(policy, year, last)
                    formatted = format_number(document_type, year, sequence)
                    await self.persistence.insert(
                        session,
                        document_type,
                        year,
                        sequence,
                        formatted,
                        linked_entity_id,
                        scope_year=self._storage_scope(policy, year),
                    )
                    try:
                        await guard_storage("commit", session.commit)
                    except IntegrityError as exc:
                        raise SequenceTaken(formatted) from exc
            except SequenceTaken as taken:
                logger.debug(
                    "Number %s taken (attempt %d/%d)", taken, attempt, self.max_attempts
                )
            except _MaintenanceBusy as busy:
                busy_holder = busy.holder
                logger.debug(
                    "Numbering maintenance on %s by %s (attempt %d/%d)",
                    document_type,
                    busy.holder,
                    attempt,
                    self.max_attempts,
                )
            except PolicyMissing:
                # Policy row vanished; recreate and retry
                self._known_types.discard(document_type)
                await self._ensure_policy(document_type)
            else:
                await self._advance_cache(
                    document_type,
                    sequence + 1,
                    year,
                    policy.generation,
                    across_years=policy.reset_period == ResetPeriod.NEVER,
                )
                logger.info("Allocated %s (linked to %s)", formatted, linked_entity_id)
                return formatted

            if attempt < self.max_attempts:
                await asyncio.sleep(self._backoff_seconds(attempt))

        logger.warning(
            "Giving up allocating %s/%d after %d attempts", document_type, year, self.max_attempts
        )
        if busy_holder is not None:
            raise MaintenanceInProgress(
                document_type.value, busy_holder, year=year, attempts=self.max_attempts
            )
        raise ConcurrencyConflict(document_type.value, year, self.max_attempts)

    async def _advance_cache(
        self,
        document_type: DocumentType,
        next_number: int,
        year: int,
        generation: int,
        across_years: bool = False,
    ) -> None:
        """Best-effort: the number is already allocated, the cache is advisory."""
        try:
            async with self.session_factory() as session:
                await self.policies.raise_cache(
                    session, document_type, next_number, year, generation, across_years
                )
                await session.commit()
        except DBAPIError as exc:
            logger.warning("Could not advance number cache for %s: %s", document_type, exc.orig)

    async def generate_number(
        self, document_type: DocumentType | str, linked_entity_id: str | None = None
    ) -> str:
        """Allocate a number for the current year."""
        return await self.allocate(document_type, linked_entity_id=linked_entity_id)

    async def preview_number(self, document_type: DocumentType | str) -> str:
        """Preview the next number for the current year."""
        return await self.preview_next(document_type)

    # --- Lookups ---

    async def get_number_by_linked_entity(self, linked_entity_id: str) -> str | None:
        async with self.session_factory() as session:
            row = await self.persistence.find_by_linked_entity(session, linked_entity_id)
        return row.formatted_number if row else None

    async def number_exists(self, formatted_number: str) -> bool:
        """True while the number is issued; released numbers no longer count."""
        async with self.session_factory() as session:
            row = await self.persistence.find_by_number(session, formatted_number)
        return row is not None and not row.is_released

    # --- Maintenance ---

    async def release_number(self, formatted_number: str, actor: str | None = None) -> None:
        """
        Release one allocated number whose document was discarded.

        The row is kept with status=released, so later allocations in any
        year never go back to it and the gap stays.
        """
        async with self.session_factory() as session:
            row = await self.persistence.find_by_number(session, formatted_number)
            if row is None:
                raise NotFoundError("Document number", formatted_number)
            if row.is_released:
                raise ValidationError(
                    f"Number {formatted_number} is already released", field="number"
                )
            await create_audit_log(
                session,
                AuditAction.RELEASE_NUMBER,
                entity_type="DocumentSequence",
                entity_id=row.id,
                actor=actor,
                entity_identifier=formatted_number,
                old_values={
                    "document_type": row.document_type,
                    "year": row.year,
                    "sequence": row.sequence,
                    "linked_entity_id": row.linked_entity_id,
                    "status": row.status,
                },
                new_values={"status": SequenceStatus.RELEASED.value},
            )
            row.status = SequenceStatus.RELEASED.value
            row.released_at = datetime.now(timezone.utc)
            await guard_storage("commit", session.commit)
        logger.info("Released document number %s", formatted_number)

    async def reset_sequence(
        self,
        document_type: DocumentType | str,
        year: int | None = None,
        actor: str | None = None,
    ) -> ResetResult:
        """
        Delete every number of (document_type, year) and restart at the start number.

        Released numbers of that year are deleted too. The advisory cache is
        lowered only when it belongs to that year; other years keep theirs.
        Destructive and irreversible; the caller is responsible for asking
        for confirmation. Runs under the exclusive maintenance flag.
        """
        document_type = parse_document_type(document_type)
        year = self._year(year)
        holder = self._holder(actor)
        policy = await self.policies.acquire_maintenance(
            document_type, holder, self.maintenance_ttl_seconds
        )
        try:
            async with self.session_factory() as session:
                deleted = await self.persistence.delete_for_key(session, document_type, year)
                cache_reset = policy.cache_year == year
                if cache_reset:
                    await self.policies.set_cache(session, document_type, policy.start_number, year)
                last = await self.persistence.max_sequence(
                    session, document_type, self._scope_year(policy, year)
                )
                floor = policy.start_number if cache_reset else policy.cached_floor(year)
                next_sequence = max(floor, last + 1, policy.start_number)
                await create_audit_log(
                    session,
                    AuditAction.RESET_NUMBERING,
                    entity_type="NumberingPolicy",
                    entity_id=policy.id,
                    actor=actor,
                    entity_identifier=f"{document_type.value}/{year}",
                    old_values={
                        "current_number_cache": policy.current_number_cache,
                        "cache_year": policy.cache_year,
                    },
                    new_values={
                        "deleted": deleted,
                        "current_number_cache": (
                            policy.start_number if cache_reset else policy.current_number_cache
                        ),
                    },
                )
                await guard_storage("commit", session.commit)
        finally:
            await self.policies.release_maintenance(document_type, holder)

        logger.info("Numbering reset for %s/%d: %d numbers deleted", document_type, year, deleted)
        return ResetResult(
            document_type=document_type,
            year=year,
            deleted=deleted,
            next_number=format_number(document_type, year, next_sequence),
        )

    async def diagnose(self, document_type: DocumentType | str) -> DiagnosticReport:
        """Read-only scan: what repair() would report and change."""
        document_type = parse_document_type(document_type)
        await self._ensure_policy(document_type)
        async with self.session_factory() as session:
            policy = await self.policies.read_policy(session, document_type)
            rows = await self.persistence.list_sequences(session, document_type)
            scan = scan_sequences(document_type, rows, policy)
        return DiagnosticReport(
            document_type=document_type,
            dry_run=True,
            issues=scan.issues,
            notices=scan.notices,
            removed_row_ids=scan.remove_row_ids,
            cache_resynced=scan.cache_target is not None,
        )

    async def repair(
        self, document_type: DocumentType | str, actor: str | None = None
    ) -> DiagnosticReport:
        """
        Remove duplicate numbers (keeping the earliest) and resynchronize the cache.

        Gaps and numbers below the start are reported as notices; issued
        numbers are never renumbered. Runs under the exclusive maintenance flag.
        """
        document_type = parse_document_type(document_type)
        holder = self._holder(actor)
        policy = await self.policies.acquire_maintenance(
            document_type, holder, self.maintenance_ttl_seconds
        )
        try:
            async with self.session_factory() as session:
                rows = await self.persistence.list_sequences(session, document_type)
                scan = scan_sequences(document_type, rows, policy)
                removed = await self.persistence.delete_ids(session, scan.remove_row_ids)
                if scan.cache_target is not None:
                    value, cache_year = scan.cache_target
                    await self.policies.set_cache(session, document_type, value, cache_year)
                if scan.issues:
                    await create_audit_log(
                        session,
                        AuditAction.REPAIR_NUMBERING,
                        entity_type="NumberingPolicy",
                        entity_id=policy.id,
                        actor=actor,
                        entity_identifier=document_type.value,
                        old_values={
                            "current_number_cache": policy.current_number_cache,
                            "cache_year": policy.cache_year,
                        },
                        new_values={
                            "removed_row_ids": scan.remove_row_ids,
                            "cache_target": list(scan.cache_target) if scan.cache_target else None,
                        },
                        comment="; ".join(issue.message for issue in scan.issues),
                    )
                await guard_storage("commit", session.commit)
        finally:
            await self.policies.release_maintenance(document_type, holder)

        logger.info(
            "Numbering repair for %s: %d issues, %d rows removed, %d notices",
            document_type,
            len(scan.issues),
            removed,
            len(scan.notices),
        )
        return DiagnosticReport(
            document_type=document_type,
            dry_run=False,
            issues=scan.issues,
            notices=scan.notices,
            removed_row_ids=scan.remove_row_ids,
            cache_resynced=scan.cache_target is not None,
        )


async def get_document_number(
    authority: NumberAuthority,
    document_type: DocumentType | str,
    linked_entity_id: str | None = None,
    year: int | None = None,
) -> str:
    """Convenience function to allocate a document number."""
    return await authority.allocate(document_type, year=year, linked_entity_id=linked_entity_id)


async def preview_document_number(
    authority: NumberAuthority,
    document_type: DocumentType | str,
    year: int | None = None,
) -> str:
    """Convenience function to preview the next document number."""
    return await authority.preview_next(document_type, year=year)
