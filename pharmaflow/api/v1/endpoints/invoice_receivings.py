"""API endpoints for Invoice Receivings (goods receipt against a PO) and QC."""
from typing import Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Body, status

from pharmaflow.api.deps import DB, CurrentSession
from pharmaflow.schemas.purchase import ReconciliationResponse
from pharmaflow.schemas.receiving import (
    FinalizeQCRequest,
    InvoiceReceivingCreate,
    InvoiceReceivingResponse,
    InvoiceReceivingUpdate,
    LineQCUpdate,
    ReceivingResultResponse,
)
from pharmaflow.services.events import ReceivingResult
from pharmaflow.services.invoice_receiving_service import InvoiceReceivingService


logger = logging.getLogger(__name__)

router = APIRouter()


def to_response(result: ReceivingResult) -> ReceivingResultResponse:
    po = result.purchase_order
    return ReceivingResultResponse(
        receiving=(
            InvoiceReceivingResponse.model_validate(result.receiving)
            if result.receiving is not None else None
        ),
        purchase_order_id=po.id,
        purchase_order_status=po.status,
        po_version=po.version,
        reconciliation=(
            ReconciliationResponse.model_validate(result.reconciliation)
            if result.reconciliation is not None else None
        ),
        warnings=result.warnings,
        events=[event.to_dict() for event in result.events],
    )


@router.post("", response_model=ReceivingResultResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice_receiving(
    data: InvoiceReceivingCreate,
    db: DB,
    session: CurrentSession,
):
    """
    Record goods received against a purchase order.

    `poVersion` must match the PO's current version, otherwise 409.
    """
    result = await InvoiceReceivingService(db, session).create_receiving(data)
    await db.commit()
    return to_response(result)


@router.get("/{receiving_id}", response_model=InvoiceReceivingResponse)
async def get_invoice_receiving(
    receiving_id: UUID,
    db: DB,
    session: CurrentSession,
):
    return await InvoiceReceivingService(db, session).get_receiving(receiving_id)


@router.put("/{receiving_id}", response_model=ReceivingResultResponse)
async def update_invoice_receiving(
    receiving_id: UUID,
    data: InvoiceReceivingUpdate,
    db: DB,
    session: CurrentSession,
):
    """Edit a draft receiving. Given lines/documents replace the existing ones."""
    result = await InvoiceReceivingService(db, session).update_receiving(receiving_id, data)
    await db.commit()
    return to_response(result)


@router.delete("/{receiving_id}", response_model=ReceivingResultResponse)
async def delete_invoice_receiving(
    receiving_id: UUID,
    db: DB,
    session: CurrentSession,
):
    """Delete a receiving and return the PO's reconciled state."""
    result = await InvoiceReceivingService(db, session).delete_receiving(receiving_id)
    await db.commit()
    return to_response(result)


@router.post("/{receiving_id}/submit", response_model=ReceivingResultResponse)
async def submit_invoice_receiving(
    receiving_id: UUID,
    db: DB,
    session: CurrentSession,
):
    result = await InvoiceReceivingService(db, session).submit(receiving_id)
    await db.commit()
    return to_response(result)


@router.post("/{receiving_id}/submit-qc", response_model=ReceivingResultResponse)
async def submit_invoice_receiving_to_qc(
    receiving_id: UUID,
    db: DB,
    session: CurrentSession,
):
    """Send a draft receiving to QC."""
    result = await InvoiceReceivingService(db, session).submit_to_qc(receiving_id)
    await db.commit()
    return to_response(result)


@router.put("/{receiving_id}/products/{index}/qc", response_model=ReceivingResultResponse)
async def update_line_qc(
    receiving_id: UUID,
    index: int,
    data: LineQCUpdate,
    db: DB,
    session: CurrentSession,
):
    """Set the QC result of one received line (0-based index)."""
    result = await InvoiceReceivingService(db, session).update_line_qc(
        receiving_id, index, data.qc_status, remarks=data.qc_remarks,
    )
    await db.commit()
    return to_response(result)


@router.post("/{receiving_id}/finalize-qc", response_model=ReceivingResultResponse)
async def finalize_qc(
    receiving_id: UUID,
    db: DB,
    session: CurrentSession,
    data: Optional[FinalizeQCRequest] = Body(None),
):
    """Close QC: passed completes the receiving, failed rejects it."""
    result = await InvoiceReceivingService(db, session).finalize_qc(receiving_id, remarks=data.remarks if data else None)
    await db.commit()
    return to_response(result)
