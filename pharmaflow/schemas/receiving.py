"""Invoice Receiving schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import Field, field_validator

from pharmaflow.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema
from pharmaflow.schemas.purchase import DomainEventResponse, ReconciliationResponse


# ==================== Received lines ====================

class ReceivedLineCreate(BaseCreateSchema):
    """
    One batch entry. Quantity bounds, dates and batch length are checked by
    the receiving validator so every problem is reported together.

    Ordered / already-received / remaining quantities are computed by the
    server at write time; values sent by the client are ignored.
    """
    product_id: UUID
    received_qty: int = 0
    foc: int = 0
    unit_price: Optional[Decimal] = Field(None, ge=0, description="Defaults to the PO line price")
    batch_number: Optional[str] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    remarks: Optional[str] = None


class ReceivedLineResponse(BaseResponseSchema):
    id: UUID
    line_number: int
    product_id: UUID
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    ordered_qty: int
    already_received: int
    remaining_quantity: int
    received_qty: int
    foc: int
    unit_price: Decimal
    batch_number: Optional[str] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    qc_status: str
    qc_remarks: Optional[str] = None
    qc_by: Optional[UUID] = None
    qc_date: Optional[datetime] = None
    remarks: Optional[str] = None


# ==================== Documents ====================

class ReceivingDocumentCreate(BaseCreateSchema):
    name: str
    document_type: Optional[str] = Field(None, description="Invoice, Delivery Challan, Packing List, ...")
    custom_type: Optional[str] = Field(None, description="Required when document type is Other")
    filename: Optional[str] = None
    mimetype: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)


class ReceivingDocumentResponse(BaseResponseSchema):
    id: UUID
    name: str
    document_type: Optional[str] = None
    custom_type: Optional[str] = None
    filename: Optional[str] = None
    mimetype: Optional[str] = None
    size: Optional[int] = None
    uploaded_by: Optional[UUID] = None
    uploaded_at: datetime


# ==================== Receiving ====================

class InvoiceReceivingCreate(BaseCreateSchema):
    purchase_order_id: UUID
    po_version: int = Field(..., description="Version of the PO the client loaded")
    invoice_number: str = ""
    invoice_date: Optional[date] = None
    invoice_amount: Optional[Decimal] = Field(None, ge=0)
    received_date: Optional[date] = None
    qc_required: bool = True
    zero_receiving_acknowledged: bool = False
    notes: Optional[str] = None
    received_products: List[ReceivedLineCreate] = []
    documents: List[ReceivingDocumentCreate] = []


class InvoiceReceivingUpdate(BaseUpdateSchema):
    """Draft-only edit. `received_products` / `documents`, when given, replace the existing ones."""
    po_version: int = Field(..., description="Version of the PO the client loaded")
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    invoice_amount: Optional[Decimal] = Field(None, ge=0)
    received_date: Optional[date] = None
    qc_required: Optional[bool] = None
    zero_receiving_acknowledged: Optional[bool] = None
    notes: Optional[str] = None
    received_products: Optional[List[ReceivedLineCreate]] = None
    documents: Optional[List[ReceivingDocumentCreate]] = None

    @field_validator(
        "invoice_number", "received_date", "qc_required", "zero_receiving_acknowledged",
        "received_products", "documents",
    )
    @classmethod
    def reject_explicit_null(cls, v):
        """These may be left out, but not cleared."""
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v


class InvoiceReceivingResponse(BaseResponseSchema):
    id: UUID
    purchase_order_id: UUID
    invoice_number: str
    invoice_date: Optional[date] = None
    invoice_amount: Decimal
    received_date: date
    received_by: UUID
    received_by_name: Optional[str] = None
    status: str
    zero_receiving_acknowledged: bool
    qc_required: bool
    qc_status: str
    qc_by: Optional[UUID] = None
    qc_date: Optional[datetime] = None
    qc_remarks: Optional[str] = None
    notes: Optional[str] = None
    total_received_qty: int
    created_at: datetime
    updated_at: datetime
    received_products: List[ReceivedLineResponse] = []
    documents: List[ReceivingDocumentResponse] = []


class LineQCUpdate(BaseUpdateSchema):
    qc_status: str = Field(..., description="pending, passed or failed")
    qc_remarks: Optional[str] = None


class FinalizeQCRequest(BaseUpdateSchema):
    remarks: Optional[str] = None


class ReceivingResultResponse(BaseResponseSchema):
    receiving: Optional[InvoiceReceivingResponse] = None
    purchase_order_id: UUID
    purchase_order_status: str
    po_version: int
    reconciliation: Optional[ReconciliationResponse] = None
    warnings: List[str] = []
    events: List[DomainEventResponse] = []
