"""
Reconciliation of received and backlog quantities.

Received quantity of a PO line is the sum of `received_qty` over every
received line for that product, across all receivings of the PO that are
not rejected. Backlog is what is still owed. Received quantities are never
clamped: an over-received line reports its excess instead.
"""
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from pharmaflow.models.purchase import PurchaseOrder, PurchaseOrderItem
from pharmaflow.models.receiving import InvoiceReceiving


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineReconciliation:
    product_id: uuid.UUID
    ordered_qty: int
    received_qty: int
    backlog_qty: int
    excess_qty: int
    over_received: bool

    def to_dict(self) -> dict:
        return {
            "product_id": str(self.product_id),
            "ordered_qty": self.ordered_qty,
            "received_qty": self.received_qty,
            "backlog_qty": self.backlog_qty,
            "excess_qty": self.excess_qty,
            "over_received": self.over_received,
        }


@dataclass
class ReconciliationSummary:
    lines: List[LineReconciliation] = field(default_factory=list)

    @property
    def total_ordered(self) -> int:
        return sum(line.ordered_qty for line in self.lines)

    @property
    def total_received(self) -> int:
        return sum(line.received_qty for line in self.lines)

    @property
    def total_backlog(self) -> int:
        return sum(line.backlog_qty for line in self.lines)

    @property
    def over_received_lines(self) -> List[LineReconciliation]:
        return [line for line in self.lines if line.over_received]

    @property
    def fully_received(self) -> bool:
        return bool(self.lines) and all(line.backlog_qty == 0 for line in self.lines)


def received_by_product(
    receivings: Iterable[InvoiceReceiving],
    exclude_receiving_id: Optional[uuid.UUID] = None,
) -> Dict[uuid.UUID, int]:
    """
    Sum received quantities per product over counted receivings.

    Args:
        receivings: Receivings of one PO
        exclude_receiving_id: Leave one receiving out (used when editing it)
    """
    totals: Dict[uuid.UUID, int] = defaultdict(int)
    for receiving in receivings:
        if not receiving.counts_towards_po:
            continue
        if exclude_receiving_id is not None and receiving.id == exclude_receiving_id:
            continue
        for line in receiving.received_products:
            totals[line.product_id] += line.received_qty or 0
    return dict(totals)


def reconcile_line(item: PurchaseOrderItem, received_qty: int) -> LineReconciliation:
    ordered = item.quantity or 0
    return LineReconciliation(
        product_id=item.product_id,
        ordered_qty=ordered,
        received_qty=received_qty,
        backlog_qty=max(0, ordered - received_qty),
        excess_qty=max(0, received_qty - ordered),
        over_received=received_qty > ordered,
    )


def reconcile(
    po_lines: Iterable[PurchaseOrderItem],
    receivings: Iterable[InvoiceReceiving],
) -> List[LineReconciliation]:
    """Compute received/backlog figures for every PO line."""
    received = received_by_product(receivings)
    return [reconcile_line(item, received.get(item.product_id, 0)) for item in po_lines]


def apply_reconciliation(po: PurchaseOrder, results: List[LineReconciliation]) -> ReconciliationSummary:
    """Write reconciled figures back onto the PO lines."""
    by_product = {result.product_id: result for result in results}
    for item in po.items:
        result = by_product.get(item.product_id)
        if result is None:
            continue
        item.received_qty = result.received_qty
        item.backlog_qty = result.backlog_qty

    summary = ReconciliationSummary(lines=list(results))
    for line in summary.over_received_lines:
        logger.warning(
            f"PO {po.po_number}: product {line.product_id} over-received "
            f"({line.received_qty} received against {line.ordered_qty} ordered)"
        )
    return summary


def reconcile_po(po: PurchaseOrder, receivings: Iterable[InvoiceReceiving]) -> ReconciliationSummary:
    """Reconcile and apply in one step."""
    summary = apply_reconciliation(po, reconcile(po.items, receivings))
    logger.info(
        f"Reconciled PO {po.po_number}: received {summary.total_received}/"
        f"{summary.total_ordered}, backlog {summary.total_backlog}"
    )
    return summary
