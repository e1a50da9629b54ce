"""API endpoints for Purchase Orders and their approval workflow."""
from typing import Annotated, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Body, Depends, status

from pharmaflow.api.deps import DB, CurrentSession, Mailer, require_permissions
from pharmaflow.schemas.purchase import (
    AllowedActionsResponse,
    ApproveAction,
    CancelAction,
    CompleteAction,
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    PurchaseOrderUpdate,
    RejectAction,
    ReconciliationResponse,
    SendAction,
    SubmitAction,
    WorkflowAction,
    WorkflowResponse,
)
from pharmaflow.services import po_state_machine as sm
from pharmaflow.services.events import WorkflowResult
from pharmaflow.services.purchase_order_service import PurchaseOrderService, load_purchase_order


logger = logging.getLogger(__name__)

router = APIRouter()


def to_response(result: WorkflowResult) -> WorkflowResponse:
    po_response = PurchaseOrderResponse.model_validate(result.purchase_order)
    if result.reconciliation is not None:
        po_response.reconciliation = ReconciliationResponse.model_validate(result.reconciliation)
    return WorkflowResponse(
        purchase_order=po_response,
        warnings=result.warnings,
        events=[event.to_dict() for event in result.events],
    )


# ==================== CRUD ====================

@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase_order(
    data: PurchaseOrderCreate,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
):
    """Create a draft purchase order. The PO number is allocated here."""
    result = await PurchaseOrderService(db, session, mailer).create_purchase_order(data)
    await db.commit()
    return to_response(result)


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
):
    """Get a purchase order with received/backlog quantities recomputed."""
    result = await PurchaseOrderService(db, session, mailer).get_purchase_order(po_id)
    await db.commit()
    return to_response(result).purchase_order


@router.put("/{po_id}", response_model=WorkflowResponse)
async def update_purchase_order(
    po_id: UUID,
    data: PurchaseOrderUpdate,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
):
    """Edit a draft purchase order."""
    result = await PurchaseOrderService(db, session, mailer).update_purchase_order(po_id, data)
    await db.commit()
    return to_response(result)


@router.delete("/{po_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_purchase_order(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
):
    """Delete a draft purchase order."""
    await PurchaseOrderService(db, session, mailer).delete_purchase_order(po_id)
    await db.commit()


# ==================== Workflow ====================

@router.get(
    "/{po_id}/allowed-actions",
    response_model=AllowedActionsResponse,
    dependencies=[Depends(require_permissions("purchase_orders:view"))],
)
async def get_allowed_actions(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
):
    """Workflow actions the current user can take on this PO right now."""
    po = await load_purchase_order(db, po_id)
    return AllowedActionsResponse(
        status=po.status,
        allowed_actions=PurchaseOrderService(db, session, mailer).allowed_actions(po),
        can_edit=sm.can_edit(po.status),
        is_terminal=sm.is_terminal(po.status),
    )


async def run_action(po_id: UUID, request, db, session, mailer) -> WorkflowResponse:
    result = await PurchaseOrderService(db, session, mailer).take_action(po_id, request)
    await db.commit()
    return to_response(result)


@router.post("/{po_id}/actions", response_model=WorkflowResponse)
async def take_workflow_action(
    po_id: UUID,
    request: Annotated[WorkflowAction, Body(discriminator="action")],
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
):
    """Run any workflow action; the body's `action` selects which."""
    return await run_action(po_id, request, db, session, mailer)


@router.post("/{po_id}/submit", response_model=WorkflowResponse)
async def submit_purchase_order(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
    request: Optional[SubmitAction] = Body(None),
):
    return await run_action(po_id, request or SubmitAction(), db, session, mailer)


@router.post("/{po_id}/approve", response_model=WorkflowResponse)
async def approve_purchase_order(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
    request: Optional[ApproveAction] = Body(None),
):
    return await run_action(po_id, request or ApproveAction(), db, session, mailer)


@router.post("/{po_id}/reject", response_model=WorkflowResponse)
async def reject_purchase_order(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
    request: Optional[RejectAction] = Body(None),
):
    """Reject a purchase order. Remarks are required."""
    return await run_action(po_id, request or RejectAction(), db, session, mailer)


@router.post("/{po_id}/cancel", response_model=WorkflowResponse)
async def cancel_purchase_order(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
    request: Optional[CancelAction] = Body(None),
):
    return await run_action(po_id, request or CancelAction(), db, session, mailer)


@router.post("/{po_id}/send", response_model=WorkflowResponse)
async def send_purchase_order(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
    request: Optional[SendAction] = Body(None),
):
    """Mark the PO ordered and email it to the principal. Email failures come back as warnings."""
    return await run_action(po_id, request or SendAction(), db, session, mailer)


@router.post("/{po_id}/complete", response_model=WorkflowResponse)
async def complete_purchase_order(
    po_id: UUID,
    db: DB,
    session: CurrentSession,
    mailer: Mailer,
    request: Optional[CompleteAction] = Body(None),
):
    return await run_action(po_id, request or CompleteAction(), db, session, mailer)
