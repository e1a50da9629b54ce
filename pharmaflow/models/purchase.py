"""Purchase Order models for the procure-to-receive cycle.

Supports:
- Purchase Order (header, totals, workflow status)
- Purchase Order lines with received/backlog tracking
- Append-only workflow history
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Numeric, Date, JSON, Uuid
from sqlalchemy import UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import inspect as sa_inspect

from pharmaflow.database import Base

if TYPE_CHECKING:
    from pharmaflow.models.principal import Principal
    from pharmaflow.models.product import Product


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== Enums ====================

class POStatus(str, Enum):
    """Purchase Order status."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    ORDERED = "ordered"
    PARTIAL_RECEIVED = "partial_received"
    RECEIVED = "received"
    QC_PENDING = "qc_pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class TaxType(str, Enum):
    """IGST for inter-state supply, CGST+SGST for intra-state."""
    IGST = "IGST"
    CGST_SGST = "CGST_SGST"


# ==================== Purchase Order ====================

class PurchaseOrder(Base):
    """
    Purchase Order model.
    Official order placed with a principal.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        Index("ix_po_principal_date", "principal_id", "po_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification
    po_number: Mapped[str] = mapped_column(
        String(40),
        unique=True,
        nullable=False,
        index=True,
        comment="PO/<PRINCIPAL>/YYYYMMDD/NNNN"
    )
    po_date: Mapped[date] = mapped_column(Date, default=date.today, nullable=False)

    # Status
    status: Mapped[str] = mapped_column(
        String(30),
        default=POStatus.DRAFT.value,
        nullable=False,
        index=True,
    )

    # Principal
    principal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("principals.id", ondelete="RESTRICT"),
        nullable=False
    )

    # Address snapshots {branch_warehouse, name, address, gstin, drug_license, phone}
    bill_to: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ship_to: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Financials
    sub_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    product_level_discount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    additional_discount_type: Mapped[str] = mapped_column(String(20), default=DiscountType.AMOUNT.value)
    additional_discount_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    tax_type: Mapped[str] = mapped_column(String(20), default=TaxType.IGST.value)
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("5"))
    cgst: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    sgst: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    igst: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    shipping_charge_type: Mapped[str] = mapped_column(String(20), default=DiscountType.AMOUNT.value)
    shipping_charge_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    grand_total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # Communication
    to_emails: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    cc_emails: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    from_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Audit
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency token, bumped by every UPDATE of this row
    version: Mapped[int] = mapped_column(Integer, nullable=False)

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

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    principal: Mapped["Principal"] = relationship("Principal")
    items: Mapped[List["PurchaseOrderItem"]] = relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.line_number",
    )
    workflow_history: Mapped[List["POWorkflowHistory"]] = relationship(
        "POWorkflowHistory",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="POWorkflowHistory.sequence",
    )

    @property
    def total_received_qty(self) -> int:
        return sum(item.received_qty or 0 for item in self.items)

    @property
    def total_backlog_qty(self) -> int:
        return sum(item.backlog_qty or 0 for item in self.items)

    @property
    def is_fully_received(self) -> bool:
        return bool(self.items) and all(
            (item.received_qty or 0) >= (item.quantity or 0) for item in self.items
        )

    def item_for_product(self, product_id: uuid.UUID) -> Optional["PurchaseOrderItem"]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def __repr__(self) -> str:
        try:
            if sa_inspect(self).detached:
                return f"<PurchaseOrder(id={self.id})>"
            return f"<PurchaseOrder(number='{self.po_number}', status='{self.status}')>"
        except Exception:
            return f"<PurchaseOrder(id={getattr(self, 'id', 'unknown')})>"


class PurchaseOrderItem(Base):
    """Line items in a Purchase Order."""
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        UniqueConstraint("purchase_order_id", "product_id", name="uq_po_item_product"),
        CheckConstraint("quantity >= 0", name="ck_po_item_quantity"),
        CheckConstraint("foc >= 0 AND foc <= quantity", name="ck_po_item_foc"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )

    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, default=1)

    # Product (snapshot of code/name at order time)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    product_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Quantity
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    foc: Mapped[int] = mapped_column(Integer, default=0, comment="Free-of-charge units")
    unit: Mapped[str] = mapped_column(String(20), default="PCS")

    # Pricing
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    discount_type: Mapped[str] = mapped_column(String(20), default=DiscountType.AMOUNT.value)
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("18"))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    # Receiving (derived by reconciliation)
    received_qty: Mapped[int] = mapped_column(Integer, default=0)
    backlog_qty: Mapped[int] = mapped_column(Integer, default=0)

    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    purchase_order: Mapped["PurchaseOrder"] = relationship(
        "PurchaseOrder",
        back_populates="items"
    )
    product: Mapped["Product"] = relationship("Product")

    @property
    def billable_qty(self) -> int:
        return (self.quantity or 0) - (self.foc or 0)

    @property
    def is_over_received(self) -> bool:
        return (self.received_qty or 0) > (self.quantity or 0)


class POWorkflowHistory(Base):
    """Append-only audit trail of workflow actions on a PO."""
    __tablename__ = "po_workflow_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    action_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    action_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    purchase_order: Mapped["PurchaseOrder"] = relationship(
        "PurchaseOrder",
        back_populates="workflow_history"
    )
