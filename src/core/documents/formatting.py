"""Document types, numbering periods and the formatted number grammar."""

import re
from dataclasses import dataclass
from enum import StrEnum


class DocumentType(StrEnum):
    """Business document types that receive sequential numbers."""

    INVOICE = "INVOICE"
    QUOTE = "QUOTE"
    DELIVERY = "DELIVERY"
    RETURN = "RETURN"
    SALES_JOURNAL = "SALES_JOURNAL"
    PURCHASE_ORDER = "PURCHASE_ORDER"


class ResetPeriod(StrEnum):
    """When a document type's sequence starts over.

    Sequences are keyed by (document type, year) and the formatted number
    carries no month, so a monthly period cannot be represented and is
    rejected on input.
    """

    NEVER = "never"
    YEARLY = "yearly"


# One code per type. INVOICE and SALES_JOURNAL are distinct on purpose.
TYPE_CODES: dict[DocumentType, str] = {
    DocumentType.INVOICE: "A",
    DocumentType.QUOTE: "D",
    DocumentType.SALES_JOURNAL: "G",
    DocumentType.DELIVERY: "L",
    DocumentType.RETURN: "R",
    DocumentType.PURCHASE_ORDER: "PO",
}

_CODE_TO_TYPE = {code: doc_type for doc_type, code in TYPE_CODES.items()}

# Sequences beyond 9999 simply grow wider; the padding is a minimum.
_NUMBER_RE = re.compile(r"^F (?P<code>[A-Z]+?)(?P<year>\d{4})(?P<sequence>\d{4,})$")


@dataclass(frozen=True)
class ParsedNumber:
    document_type: DocumentType
    year: int
    sequence: int


def format_number(document_type: DocumentType, year: int, sequence: int) -> str:
    """
    Format a document number: "F " + type code + YYYY + NNNN.

    Examples:
        F A20260001  (invoice #1 of 2026)
        F PO20260042 (purchase order #42 of 2026)
    """
    if sequence < 1:
        raise ValueError(f"Sequence must be positive, got {sequence}")
    if not 1000 <= year <= 9999:
        raise ValueError(f"Year must have 4 digits, got {year}")
    return f"F {TYPE_CODES[DocumentType(document_type)]}{year}{sequence:04d}"


def parse_number(formatted: str) -> ParsedNumber | None:
    """Parse a formatted number back to its parts; None if it does not match."""
    match = _NUMBER_RE.match((formatted or "").strip())
    if not match:
        return None
    doc_type = _CODE_TO_TYPE.get(match.group("code"))
    if doc_type is None:
        return None
    return ParsedNumber(
        document_type=doc_type,
        year=int(match.group("year")),
        sequence=int(match.group("sequence")),
    )
