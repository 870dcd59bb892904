"""Consistency scan over persisted document numbers.

The scan is pure: it takes the rows and the policy and returns what is
wrong and what a repair would change. repair() applies the plan, diagnose()
only reports it.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from src.core.documents.formatting import DocumentType, ResetPeriod, format_number, parse_number
from src.core.documents.models import SHARED_SCOPE, DocumentSequence
from src.core.documents.policy_store import PolicySnapshot


class IssueKind(StrEnum):
    # Fixed by repair
    DUPLICATE_SEQUENCE = "DUPLICATE_SEQUENCE"
    DUPLICATE_NUMBER = "DUPLICATE_NUMBER"
    CACHE_OUT_OF_SYNC = "CACHE_OUT_OF_SYNC"
    # Reported only: issued numbers are never renumbered or reused
    GAP = "GAP"
    BELOW_START = "BELOW_START"
    MALFORMED_NUMBER = "MALFORMED_NUMBER"
    CACHE_AHEAD = "CACHE_AHEAD"


@dataclass
class DiagnosticIssue:
    kind: IssueKind
    message: str
    year: int | None = None
    row_ids: list[int] = field(default_factory=list)
    sequences: list[int] = field(default_factory=list)


@dataclass
class DiagnosticReport:
    """
    Result of diagnose() or repair().

    issues are the problems repair fixes; notices are permanent facts
    (gaps, numbers below the start) that repair can only report. A second
    repair in a row always returns an empty issues list.
    """

    document_type: DocumentType
    dry_run: bool
    issues: list[DiagnosticIssue] = field(default_factory=list)
    notices: list[DiagnosticIssue] = field(default_factory=list)
    removed_row_ids: list[int] = field(default_factory=list)
    cache_resynced: bool = False

    @property
    def is_clean(self) -> bool:
        return not self.issues


@dataclass
class ScanResult:
    issues: list[DiagnosticIssue]
    notices: list[DiagnosticIssue]
    remove_row_ids: list[int]
    cache_target: tuple[int, int | None] | None


def _sort_key(row: DocumentSequence) -> tuple:
    created = row.created_at or datetime.max
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc).replace(tzinfo=None)
    return (created, row.id or 0)


def _ranges(numbers: list[int]) -> list[tuple[int, int]]:
    """Compress sorted ints into inclusive (start, end) runs."""
    runs: list[tuple[int, int]] = []
    for number in numbers:
        if runs and number == runs[-1][1] + 1:
            runs[-1] = (runs[-1][0], number)
        else:
            runs.append((number, number))
    return runs


def _gap_notices(
    rows: list[DocumentSequence], start: int, year: int | None
) -> list[DiagnosticIssue]:
    """Missing and released sequences between start and the highest row."""
    top = max(row.sequence for row in rows)
    if top < start:
        return []
    present = {row.sequence for row in rows if not row.is_released}
    missing = sorted(set(range(start, top + 1)) - present)
    notices = []
    for first, last in _ranges(missing):
        label = str(first) if first == last else f"{first}-{last}"
        where = f" in {year}" if year is not None else ""
        notices.append(
            DiagnosticIssue(
                kind=IssueKind.GAP,
                message=f"Sequence{'' if first == last else 's'} {label} missing{where}",
                year=year,
                sequences=list(range(first, last + 1)),
            )
        )
    return notices


def scan_sequences(
    document_type: DocumentType,
    rows: Iterable[DocumentSequence],
    policy: PolicySnapshot,
) -> ScanResult:
    issues: list[DiagnosticIssue] = []
    notices: list[DiagnosticIssue] = []
    remove: list[int] = []

    # Duplicate (scope, sequence): keep the earliest row. Rows numbered under
    # reset_period=never share one scope across years.
    by_key: dict[tuple[int, int], list[DocumentSequence]] = defaultdict(list)
    for row in rows:
        by_key[(row.scope_year, row.sequence)].append(row)

    survivors: list[DocumentSequence] = []
    for (scope, sequence), group in sorted(by_key.items()):
        group.sort(key=_sort_key)
        survivors.append(group[0])
        if len(group) > 1:
            extra = [row.id for row in group[1:]]
            remove.extend(extra)
            where = "across years" if scope == SHARED_SCOPE else f"in {scope}"
            issues.append(
                DiagnosticIssue(
                    kind=IssueKind.DUPLICATE_SEQUENCE,
                    message=f"Sequence {sequence} allocated {len(group)} times {where}",
                    year=None if scope == SHARED_SCOPE else scope,
                    row_ids=extra,
                    sequences=[sequence],
                )
            )

    # Duplicate formatted numbers among the remaining rows
    by_number: dict[str, list[DocumentSequence]] = defaultdict(list)
    for row in survivors:
        by_number[row.formatted_number].append(row)
    for number, group in by_number.items():
        if len(group) < 2:
            continue
        group.sort(key=_sort_key)
        extra = group[1:]
        remove.extend(row.id for row in extra)
        survivors = [row for row in survivors if row not in extra]
        issues.append(
            DiagnosticIssue(
                kind=IssueKind.DUPLICATE_NUMBER,
                message=f"Number {number} stored {len(group)} times",
                year=group[0].year,
                row_ids=[row.id for row in extra],
                sequences=[row.sequence for row in extra],
            )
        )

    for row in survivors:
        parsed = parse_number(row.formatted_number)
        if parsed is None or (parsed.document_type, parsed.year, parsed.sequence) != (
            document_type,
            row.year,
            row.sequence,
        ):
            notices.append(
                DiagnosticIssue(
                    kind=IssueKind.MALFORMED_NUMBER,
                    message=(
                        f"Row {row.id} stores {row.formatted_number!r}, "
                        f"expected {format_number(document_type, row.year, row.sequence)!r}"
                    ),
                    year=row.year,
                    row_ids=[row.id],
                    sequences=[row.sequence],
                )
            )
        if row.sequence < policy.start_number:
            notices.append(
                DiagnosticIssue(
                    kind=IssueKind.BELOW_START,
                    message=f"Sequence {row.sequence} is below start number {policy.start_number}",
                    year=row.year,
                    row_ids=[row.id],
                    sequences=[row.sequence],
                )
            )

    cache_target = None
    if survivors:
        if policy.reset_period == ResetPeriod.NEVER:
            notices.extend(_gap_notices(survivors, policy.start_number, None))
            last = max(row.sequence for row in survivors)
        else:
            per_year: dict[int, list[DocumentSequence]] = defaultdict(list)
            for row in survivors:
                per_year[row.year].append(row)
            for year in sorted(per_year):
                notices.extend(_gap_notices(per_year[year], policy.start_number, year))
            last = max(row.sequence for row in per_year[max(per_year)])

        latest_year = max(row.year for row in survivors)
        expected = max(last + 1, policy.start_number)
        cached = policy.cached_floor(latest_year)
        if cached < expected:
            issues.append(
                DiagnosticIssue(
                    kind=IssueKind.CACHE_OUT_OF_SYNC,
                    message=f"Cached next number {cached} is behind {expected} for {latest_year}",
                    year=latest_year,
                )
            )
            cache_target = (expected, latest_year)
        elif cached > expected:
            # Numbers deleted outside reset; they stay skipped
            notices.append(
                DiagnosticIssue(
                    kind=IssueKind.CACHE_AHEAD,
                    message=f"Cached next number {cached} is ahead of {expected} for {latest_year}",
                    year=latest_year,
                )
            )

    return ScanResult(issues=issues, notices=notices, remove_row_ids=remove, cache_target=cache_target)
