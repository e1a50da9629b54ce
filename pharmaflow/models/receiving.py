"""Invoice Receiving models.

An invoice receiving records goods delivered against an ordered PO. Each
received line carries batch, manufacturing/expiry dates and its own QC
status; several lines may share a product (one per batch).
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List, Dict
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Numeric, Date, Boolean, Uuid
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmaflow.database import Base

if TYPE_CHECKING:
    from pharmaflow.models.purchase import PurchaseOrder


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReceivingStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    QC_PENDING = "qc_pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class QCStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class DocumentType(str, Enum):
    INVOICE = "Invoice"
    DELIVERY_CHALLAN = "Delivery Challan"
    PACKING_LIST = "Packing List"
    CERTIFICATE_OF_ANALYSIS = "Certificate of Analysis"
    E_WAY_BILL = "E-Way Bill"
    OTHER = "Other"


class InvoiceReceiving(Base):
    """
    Invoice Receiving against a Purchase Order.

    Receivings in every status except `rejected` count towards the PO's
    received quantities.
    """
    __tablename__ = "invoice_receivings"
    __table_args__ = (
        Index("ix_receiving_po_status", "purchase_order_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Invoice
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    invoice_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    invoice_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # Receipt
    received_date: Mapped[date] = mapped_column(Date, default=date.today, nullable=False)
    received_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    received_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ReceivingStatus.DRAFT.value,
        nullable=False,
        index=True
    )
    zero_receiving_acknowledged: Mapped[bool] = mapped_column(Boolean, default=False)

    # Quality Control
    qc_required: Mapped[bool] = mapped_column(Boolean, default=True)
    qc_status: Mapped[str] = mapped_column(
        String(20),
        default=QCStatus.PENDING.value,
        comment="Derived from line QC: pending, passed, failed"
    )
    qc_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    qc_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    qc_remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    # Relationships
    purchase_order: Mapped["PurchaseOrder"] = relationship("PurchaseOrder")
    received_products: Mapped[List["ReceivedProductLine"]] = relationship(
        "ReceivedProductLine",
        back_populates="receiving",
        cascade="all, delete-orphan",
        order_by="ReceivedProductLine.line_number",
    )
    documents: Mapped[List["ReceivingDocument"]] = relationship(
        "ReceivingDocument",
        back_populates="receiving",
        cascade="all, delete-orphan",
    )

    @property
    def total_received_qty(self) -> int:
        return sum(line.received_qty or 0 for line in self.received_products)

    @property
    def counts_towards_po(self) -> bool:
        return self.status != ReceivingStatus.REJECTED.value

    def __repr__(self) -> str:
        return f"<InvoiceReceiving(invoice='{self.invoice_number}', status='{self.status}')>"


class ReceivedProductLine(Base):
    """One batch entry of a product received on an invoice."""
    __tablename__ = "received_product_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    receiving_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoice_receivings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, default=0)

    # Product
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    product_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Snapshot taken at write time from the PO and committed receivings
    ordered_qty: Mapped[int] = mapped_column(Integer, default=0)
    already_received: Mapped[int] = mapped_column(Integer, default=0)
    remaining_quantity: Mapped[int] = mapped_column(Integer, default=0)

    received_qty: Mapped[int] = mapped_column(Integer, default=0)
    foc: Mapped[int] = mapped_column(Integer, default=0)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    # Batch details
    batch_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    manufacturing_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # QC
    qc_status: Mapped[str] = mapped_column(String(20), default=QCStatus.PENDING.value)
    qc_remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qc_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    qc_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    receiving: Mapped["InvoiceReceiving"] = relationship(
        "InvoiceReceiving",
        back_populates="received_products"
    )


class ReceivingDocument(Base):
    """Metadata of a document attached to a receiving. Content is stored elsewhere."""
    __tablename__ = "receiving_documents"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    receiving_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoice_receivings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    document_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    custom_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mimetype: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )

    receiving: Mapped["InvoiceReceiving"] = relationship(
        "InvoiceReceiving",
        back_populates="documents"
    )


def group_batches_by_product(lines: List[ReceivedProductLine]) -> Dict[uuid.UUID, List[ReceivedProductLine]]:
    """Group batch entries by product, keeping first-seen product order."""
    grouped: Dict[uuid.UUID, List[ReceivedProductLine]] = {}
    for line in lines:
        grouped.setdefault(line.product_id, []).append(line)
    return grouped
