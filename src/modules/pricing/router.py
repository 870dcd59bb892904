"""API for line and document totals."""

from fastapi import APIRouter

from src.modules.pricing.schemas import (
    DocumentTotals,
    DocumentTotalsRequest,
    LineItemInput,
    LineTotals,
)
from src.modules.pricing.service import compute_document_totals, compute_line_totals
from src.shared.schemas import SuccessResponse

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.post("/line-totals", response_model=SuccessResponse[LineTotals])
async def line_totals(data: LineItemInput):
    """TTC, HT and tax amount of a single line."""
    return SuccessResponse(data=compute_line_totals(data))


@router.post("/document-totals", response_model=SuccessResponse[DocumentTotals])
async def document_totals(data: DocumentTotalsRequest):
    """Document totals with tax breakdown; reconciled when a reference total is given."""
    totals = compute_document_totals(data.lines, data.reference_total)
    message = "; ".join(totals.warnings) if totals.warnings else None
    return SuccessResponse(data=totals, message=message)
