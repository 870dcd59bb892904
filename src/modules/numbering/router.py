from fastapi import APIRouter, Query

from src.core.documents import DiagnosticReport, PolicySnapshot, parse_number
from src.core.documents.policy_store import parse_document_type
from src.core.exceptions import ValidationError
from src.modules.numbering.dependencies import Authority
from src.modules.numbering.schemas import (
    DiagnosticIssueResponse,
    DiagnosticReportResponse,
    DocumentNumberResponse,
    GenerateNumberRequest,
    NumberLookupResponse,
    PolicyResponse,
    PolicyUpdate,
    RepairRequest,
    ResetSequenceRequest,
    ResetSequenceResponse,
)
from src.shared.schemas import SuccessResponse

router = APIRouter(prefix="/numbering", tags=["Document Numbering"])


def _policy_response(policy: PolicySnapshot) -> PolicyResponse:
    return PolicyResponse(
        document_type=policy.document_type.value,
        start_number=policy.start_number,
        reset_period=policy.reset_period.value,
        current_number_cache=policy.current_number_cache,
        cache_year=policy.cache_year,
        maintenance_holder=policy.maintenance_holder,
    )


def _report_response(report: DiagnosticReport) -> DiagnosticReportResponse:
    return DiagnosticReportResponse(
        document_type=report.document_type.value,
        dry_run=report.dry_run,
        is_clean=report.is_clean,
        issues=[DiagnosticIssueResponse.model_validate(issue) for issue in report.issues],
        notices=[DiagnosticIssueResponse.model_validate(issue) for issue in report.notices],
        removed_row_ids=report.removed_row_ids,
        cache_resynced=report.cache_resynced,
    )


# --- Policies ---

@router.get("/policies", response_model=SuccessResponse[list[PolicyResponse]])
async def list_policies(authority: Authority):
    """Numbering policy of every document type (created with defaults if missing)."""
    policies = await authority.policies.get_all_policies()
    return SuccessResponse(
        data=[_policy_response(p) for p in policies],
        message="Numbering policies retrieved",
    )


@router.get("/policies/{document_type}", response_model=SuccessResponse[PolicyResponse])
async def get_policy(document_type: str, authority: Authority):
    policy = await authority.policies.get_policy(parse_document_type(document_type))
    return SuccessResponse(data=_policy_response(policy))


@router.put("/policies/{document_type}", response_model=SuccessResponse[PolicyResponse])
async def update_policy(document_type: str, data: PolicyUpdate, authority: Authority):
    """Change start number and/or reset period. Issued numbers are not touched."""
    policy = await authority.policies.update_policy(
        parse_document_type(document_type),
        start_number=data.start_number,
        reset_period=data.reset_period,
    )
    return SuccessResponse(data=_policy_response(policy), message="Numbering policy updated")


@router.post("/policies/invalidate", response_model=SuccessResponse[None])
async def invalidate_policies(authority: Authority):
    """Drop cached policies after they were changed outside this process."""
    authority.policies.invalidate()
    return SuccessResponse(data=None, message="Numbering policy cache cleared")


# --- Numbers ---

@router.get("/numbers/lookup", response_model=SuccessResponse[NumberLookupResponse])
async def lookup_number(authority: Authority, number: str = Query(..., min_length=1)):
    exists = await authority.number_exists(number)
    return SuccessResponse(data=NumberLookupResponse(number=number, exists=exists))


@router.get(
    "/numbers/linked/{linked_entity_id}",
    response_model=SuccessResponse[DocumentNumberResponse | None],
)
async def number_for_linked_entity(linked_entity_id: str, authority: Authority):
    number = await authority.get_number_by_linked_entity(linked_entity_id)
    if number is None:
        return SuccessResponse(data=None, message="No number linked")
    parsed = parse_number(number)
    document_type = parsed.document_type.value if parsed else ""
    return SuccessResponse(data=DocumentNumberResponse(document_type=document_type, number=number))


@router.delete("/numbers", response_model=SuccessResponse[None])
async def release_number(
    authority: Authority,
    number: str = Query(..., min_length=1),
    actor: str | None = Query(None, max_length=100),
):
    """Release a number whose document was discarded. The gap is kept."""
    await authority.release_number(number, actor=actor)
    return SuccessResponse(data=None, message=f"Number {number} released")


# --- Per document type ---

@router.post(
    "/{document_type}/generate",
    response_model=SuccessResponse[DocumentNumberResponse],
    status_code=201,
)
async def generate_number(
    document_type: str,
    authority: Authority,
    data: GenerateNumberRequest | None = None,
):
    """Allocate the next number. Fails with 409 when retries are exhausted."""
    data = data or GenerateNumberRequest()
    doc_type = parse_document_type(document_type)
    number = await authority.allocate(
        doc_type, year=data.year, linked_entity_id=data.linked_entity_id
    )
    return SuccessResponse(
        data=DocumentNumberResponse(document_type=doc_type.value, number=number),
        message="Number allocated",
    )


@router.get("/{document_type}/preview", response_model=SuccessResponse[DocumentNumberResponse])
async def preview_number(
    document_type: str,
    authority: Authority,
    year: int | None = Query(None, ge=1000, le=9999),
):
    """Next number as of now. Advisory: nothing is reserved."""
    doc_type = parse_document_type(document_type)
    number = await authority.preview_next(doc_type, year=year)
    return SuccessResponse(data=DocumentNumberResponse(document_type=doc_type.value, number=number))


@router.post("/{document_type}/reset", response_model=SuccessResponse[ResetSequenceResponse])
async def reset_sequence(document_type: str, data: ResetSequenceRequest, authority: Authority):
    """
    Delete every number of the type for the year and restart at the start number.

    Irreversible. Requires "confirm": true.
    """
    if not data.confirm:
        raise ValidationError("Reset deletes issued numbers; send confirm=true", field="confirm")
    result = await authority.reset_sequence(document_type, year=data.year, actor=data.actor)
    return SuccessResponse(
        data=ResetSequenceResponse(
            document_type=result.document_type.value,
            year=result.year,
            deleted=result.deleted,
            next_number=result.next_number,
        ),
        message=f"{result.deleted} number(s) deleted",
    )


@router.get("/{document_type}/diagnose", response_model=SuccessResponse[DiagnosticReportResponse])
async def diagnose(document_type: str, authority: Authority):
    """Read-only consistency scan."""
    report = await authority.diagnose(document_type)
    return SuccessResponse(data=_report_response(report))


@router.post("/{document_type}/repair", response_model=SuccessResponse[DiagnosticReportResponse])
async def repair(document_type: str, authority: Authority, data: RepairRequest | None = None):
    """Remove duplicates and resync the cache. Gaps are reported, never filled."""
    report = await authority.repair(document_type, actor=data.actor if data else None)
    return SuccessResponse(data=_report_response(report), message="Repair completed")
