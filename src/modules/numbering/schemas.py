from pydantic import BaseModel, Field

from src.core.documents import IssueKind
from src.shared.schemas.base import BaseSchema


class GenerateNumberRequest(BaseModel):
    linked_entity_id: str | None = Field(None, max_length=100)
    year: int | None = Field(None, ge=1000, le=9999)


class DocumentNumberResponse(BaseSchema):
    document_type: str
    number: str


class ResetSequenceRequest(BaseModel):
    """Reset is destructive: confirm must be sent explicitly as true."""

    year: int | None = Field(None, ge=1000, le=9999)
    confirm: bool = False
    actor: str | None = Field(None, max_length=100)


class ResetSequenceResponse(BaseSchema):
    document_type: str
    year: int
    deleted: int
    next_number: str


class RepairRequest(BaseModel):
    actor: str | None = Field(None, max_length=100)


class DiagnosticIssueResponse(BaseSchema):
    kind: IssueKind
    message: str
    year: int | None = None
    row_ids: list[int] = []
    sequences: list[int] = []


class DiagnosticReportResponse(BaseSchema):
    document_type: str
    dry_run: bool
    is_clean: bool
    issues: list[DiagnosticIssueResponse]
    notices: list[DiagnosticIssueResponse]
    removed_row_ids: list[int]
    cache_resynced: bool


class PolicyResponse(BaseSchema):
    document_type: str
    start_number: int
    reset_period: str
    current_number_cache: int
    cache_year: int | None = None
    maintenance_holder: str | None = None


class PolicyUpdate(BaseModel):
    start_number: int | None = Field(None, ge=1)
    reset_period: str | None = Field(None, description="never | yearly")


class NumberLookupResponse(BaseSchema):
    number: str
    exists: bool

