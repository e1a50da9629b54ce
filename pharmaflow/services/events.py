"""Domain events emitted by the procurement services.

Services collect events on their result objects; the caller publishes them
after the transaction commits.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from pharmaflow.models.purchase import PurchaseOrder
    from pharmaflow.models.receiving import InvoiceReceiving
    from pharmaflow.services.reconciliation import ReconciliationSummary


class EventKind:
    PO_CREATED = "purchase_order.created"
    PO_UPDATED = "purchase_order.updated"
    PO_DELETED = "purchase_order.deleted"
    PO_TRANSITIONED = "purchase_order.transitioned"
    PO_RECONCILED = "purchase_order.reconciled"
    PO_EMAIL_FAILED = "purchase_order.email_failed"
    RECEIVING_CREATED = "invoice_receiving.created"
    RECEIVING_UPDATED = "invoice_receiving.updated"
    RECEIVING_DELETED = "invoice_receiving.deleted"
    RECEIVING_SUBMITTED = "invoice_receiving.submitted"
    RECEIVING_QC_UPDATED = "invoice_receiving.qc_updated"
    RECEIVING_QC_FINALIZED = "invoice_receiving.qc_finalized"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    kind: str
    aggregate_id: Optional[uuid.UUID]
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "aggregate_id": str(self.aggregate_id) if self.aggregate_id else None,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass
class WorkflowResult:
    """Outcome of a purchase order operation."""
    purchase_order: "PurchaseOrder"
    events: List[DomainEvent] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    reconciliation: Optional["ReconciliationSummary"] = None


@dataclass
class ReceivingResult:
    """Outcome of an invoice receiving operation."""
    receiving: Optional["InvoiceReceiving"]
    purchase_order: "PurchaseOrder"
    events: List[DomainEvent] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    reconciliation: Optional["ReconciliationSummary"] = None
