"""Purchase Order schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional, Union
from uuid import UUID

from pydantic import EmailStr, Field

from pharmaflow.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema


DiscountTypeField = Literal["percentage", "amount"]
TaxTypeField = Literal["IGST", "CGST_SGST"]


# ==================== Address snapshot ====================

class AddressSnapshot(BaseCreateSchema):
    """Bill-to / ship-to address as printed on the PO."""
    branch_warehouse: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    gstin: Optional[str] = Field(None, max_length=15)
    drug_license: Optional[str] = None
    phone: Optional[str] = None


# ==================== PO Items ====================

class POItemCreate(BaseCreateSchema):
    product_id: UUID
    quantity: int = Field(..., ge=0)
    foc: int = Field(0, ge=0, description="Free-of-charge units, cannot exceed quantity")
    unit: str = "PCS"
    unit_price: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    discount_type: DiscountTypeField = "amount"
    gst_rate: Optional[Decimal] = Field(None, ge=0, le=28)
    description: Optional[str] = None
    remarks: Optional[str] = None


class POItemResponse(BaseResponseSchema):
    id: UUID
    line_number: int
    product_id: UUID
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    description: Optional[str] = None
    quantity: int
    foc: int
    unit: str
    unit_price: Decimal
    discount: Decimal
    discount_type: str
    gst_rate: Decimal
    total_cost: Decimal
    received_qty: int
    backlog_qty: int
    is_over_received: bool
    remarks: Optional[str] = None


# ==================== Purchase Order ====================

class PurchaseOrderBase(BaseCreateSchema):
    bill_to: Optional[AddressSnapshot] = None
    ship_to: Optional[AddressSnapshot] = None
    additional_discount_type: DiscountTypeField = "amount"
    additional_discount_value: Decimal = Field(Decimal("0"), ge=0)
    tax_type: TaxTypeField = "IGST"
    gst_rate: Optional[Decimal] = Field(None, ge=0, le=28, description="Defaults to DEFAULT_PO_GST_RATE")
    shipping_charge_type: DiscountTypeField = "amount"
    shipping_charge_value: Decimal = Field(Decimal("0"), ge=0)
    to_emails: Optional[List[EmailStr]] = None
    cc_emails: Optional[List[EmailStr]] = None
    from_email: Optional[EmailStr] = None
    terms: Optional[str] = None
    notes: Optional[str] = None


class PurchaseOrderCreate(PurchaseOrderBase):
    principal_id: UUID
    po_date: Optional[date] = None
    items: List[POItemCreate] = Field(..., min_length=1)


class PurchaseOrderUpdate(BaseUpdateSchema):
    """Draft-only edit. `items`, when given, replaces every line."""
    version: Optional[int] = Field(None, description="Version the client loaded")
    po_date: Optional[date] = None
    bill_to: Optional[AddressSnapshot] = None
    ship_to: Optional[AddressSnapshot] = None
    additional_discount_type: Optional[DiscountTypeField] = None
    additional_discount_value: Optional[Decimal] = Field(None, ge=0)
    tax_type: Optional[TaxTypeField] = None
    gst_rate: Optional[Decimal] = Field(None, ge=0, le=28)
    shipping_charge_type: Optional[DiscountTypeField] = None
    shipping_charge_value: Optional[Decimal] = Field(None, ge=0)
    to_emails: Optional[List[EmailStr]] = None
    cc_emails: Optional[List[EmailStr]] = None
    from_email: Optional[EmailStr] = None
    terms: Optional[str] = None
    notes: Optional[str] = None
    items: Optional[List[POItemCreate]] = Field(None, min_length=1)


class POWorkflowHistoryResponse(BaseResponseSchema):
    sequence: int
    action: str
    from_status: Optional[str] = None
    to_status: str
    action_by: UUID
    action_by_name: Optional[str] = None
    action_date: datetime
    remarks: Optional[str] = None
    changes: Optional[dict] = None


class ReconciliationLineResponse(BaseResponseSchema):
    product_id: UUID
    ordered_qty: int
    received_qty: int
    backlog_qty: int
    excess_qty: int
    over_received: bool


class ReconciliationResponse(BaseResponseSchema):
    lines: List[ReconciliationLineResponse] = []
    total_ordered: int = 0
    total_received: int = 0
    total_backlog: int = 0
    fully_received: bool = False
    over_received_lines: List[ReconciliationLineResponse] = []


class PurchaseOrderResponse(BaseResponseSchema):
    id: UUID
    po_number: str
    po_date: date
    status: str
    principal_id: UUID
    bill_to: Optional[dict] = None
    ship_to: Optional[dict] = None

    sub_total: Decimal
    product_level_discount: Decimal
    additional_discount_type: str
    additional_discount_value: Decimal
    tax_type: str
    gst_rate: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    shipping_charge_type: str
    shipping_charge_value: Decimal
    grand_total: Decimal

    to_emails: Optional[List[str]] = None
    cc_emails: Optional[List[str]] = None
    from_email: Optional[str] = None
    terms: Optional[str] = None
    notes: Optional[str] = None

    created_by: UUID
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime

    items: List[POItemResponse] = []
    workflow_history: List[POWorkflowHistoryResponse] = []
    reconciliation: Optional[ReconciliationResponse] = None


class AllowedActionsResponse(BaseResponseSchema):
    status: str
    allowed_actions: List[str]
    can_edit: bool
    is_terminal: bool


# ==================== Workflow actions ====================

class SubmitAction(BaseCreateSchema):
    action: Literal["submit"] = "submit"
    remarks: Optional[str] = None


class ApproveAction(BaseCreateSchema):
    action: Literal["approve"] = "approve"
    remarks: Optional[str] = None


class RejectAction(BaseCreateSchema):
    action: Literal["reject"] = "reject"
    remarks: Optional[str] = None


class CancelAction(BaseCreateSchema):
    action: Literal["cancel"] = "cancel"
    remarks: Optional[str] = None


class SendAction(BaseCreateSchema):
    action: Literal["send"] = "send"
    remarks: Optional[str] = None
    to_emails: Optional[List[EmailStr]] = Field(None, description="Overrides the PO recipients")
    cc_emails: Optional[List[EmailStr]] = None


class CompleteAction(BaseCreateSchema):
    action: Literal["complete"] = "complete"
    remarks: Optional[str] = None


WorkflowAction = Union[SubmitAction, ApproveAction, RejectAction, CancelAction, SendAction, CompleteAction]


class DomainEventResponse(BaseResponseSchema):
    kind: str
    aggregate_id: Optional[str] = None
    payload: dict = {}
    occurred_at: str


class WorkflowResponse(BaseResponseSchema):
    purchase_order: PurchaseOrderResponse
    warnings: List[str] = []
    events: List[DomainEventResponse] = []
