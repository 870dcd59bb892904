from src.core.documents.diagnostics import DiagnosticIssue, DiagnosticReport, IssueKind
from src.core.documents.formatting import (
    DocumentType,
    ResetPeriod,
    TYPE_CODES,
    format_number,
    parse_number,
)
from src.core.documents.models import (
    SHARED_SCOPE,
    DocumentSequence,
    NumberingPolicy,
    SequenceStatus,
)
from src.core.documents.number_generator import (
    NumberAuthority,
    ResetResult,
    get_document_number,
    preview_document_number,
)
from src.core.documents.policy_store import NumberingPolicyStore, PolicySnapshot

__all__ = [
    "DiagnosticIssue",
    "DiagnosticReport",
    "IssueKind",
    "DocumentType",
    "ResetPeriod",
    "TYPE_CODES",
    "format_number",
    "parse_number",
    "SHARED_SCOPE",
    "DocumentSequence",
    "NumberingPolicy",
    "SequenceStatus",
    "NumberAuthority",
    "ResetResult",
    "get_document_number",
    "preview_document_number",
    "NumberingPolicyStore",
    "PolicySnapshot",
]
