"""Invoice Receiving service.

Every create / update / delete of a receiving, and every QC rejection,
re-runs reconciliation on the purchase order and moves the PO between
ordered / partial_received / received.

Writes carry the PO version the client loaded. The quantity snapshot on
each line (ordered, already received, remaining) is recomputed from
committed receivings at write time, so validation always runs against the
version that was checked.
"""
import logging
import uuid
from decimal import Decimal
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from pharmaflow.core.exceptions import InvalidTransition, NotFound
from pharmaflow.core.permissions import INVOICE_RECEIVING, UserSession, require_permission
from pharmaflow.models.purchase import PurchaseOrder
from pharmaflow.models.receiving import (
    InvoiceReceiving,
    QCStatus,
    ReceivedProductLine,
    ReceivingDocument,
    ReceivingStatus,
)
from pharmaflow.schemas.receiving import (
    InvoiceReceivingCreate,
    InvoiceReceivingUpdate,
    ReceivedLineCreate,
    ReceivingDocumentCreate,
)
from pharmaflow.services import po_state_machine as sm
from pharmaflow.services import qc_service
from pharmaflow.services.events import DomainEvent, EventKind, ReceivingResult
from pharmaflow.services.purchase_order_service import (
    check_version,
    flush_purchase_order,
    load_purchase_order,
    load_receivings,
    summarize,
    touch,
    transition_event,
)
from pharmaflow.services.reconciliation import received_by_product
from pharmaflow.services.receiving_validator import ensure_valid_receiving


logger = logging.getLogger(__name__)

RECEIVING_ENTITY = "invoice receiving"
EDITABLE_STATUSES = [ReceivingStatus.DRAFT.value]
UNDELETABLE_STATUSES = [ReceivingStatus.COMPLETED.value]


def fill_snapshot(
    line: ReceivedProductLine,
    po: PurchaseOrder,
    already_received: Dict[uuid.UUID, int],
) -> None:
    """Set ordered / already received / remaining on a line from committed data."""
    item = po.item_for_product(line.product_id)
    ordered = item.quantity if item else 0
    already = already_received.get(line.product_id, 0)

    line.ordered_qty = ordered
    line.already_received = already
    line.remaining_quantity = max(0, ordered - already)
    if item:
        line.product_code = item.product_code
        line.product_name = item.product_name


def compute_invoice_amount(receiving: InvoiceReceiving) -> Decimal:
    return sum(
        (Decimal(line.received_qty or 0) * Decimal(str(line.unit_price or 0)) for line in receiving.received_products),
        Decimal("0"),
    )


class InvoiceReceivingService:
    """Service for invoice receivings against purchase orders."""

    def __init__(self, db: AsyncSession, session: UserSession):
        self.db = db
        self.session = session

    # ==================== Loading ====================

    async def _get_receiving(self, receiving_id: uuid.UUID) -> InvoiceReceiving:
        result = await self.db.execute(
            select(InvoiceReceiving)
            .options(
                selectinload(InvoiceReceiving.received_products),
                selectinload(InvoiceReceiving.documents),
            )
            .where(InvoiceReceiving.id == receiving_id)
        )
        receiving = result.scalar_one_or_none()
        if not receiving:
            raise NotFound("Invoice receiving", receiving_id)
        return receiving

    async def _load_context(self, receiving_id: uuid.UUID):
        """Receiving, its PO (locked) and all of the PO's receivings."""
        receiving = await self._get_receiving(receiving_id)
        po = await load_purchase_order(self.db, receiving.purchase_order_id, for_update=True)
        receivings = await load_receivings(self.db, po.id)
        return receiving, po, receivings

    async def get_receiving(self, receiving_id: uuid.UUID) -> InvoiceReceiving:
        require_permission(self.session, INVOICE_RECEIVING, "view")
        return await self._get_receiving(receiving_id)

    # ==================== Building ====================

    def _build_line(self, index: int, data: ReceivedLineCreate, po: PurchaseOrder) -> ReceivedProductLine:
        item = po.item_for_product(data.product_id)
        unit_price = data.unit_price
        if unit_price is None:
            unit_price = item.unit_price if item else Decimal("0")
        return ReceivedProductLine(
            line_number=index,
            product_id=data.product_id,
            received_qty=data.received_qty,
            foc=data.foc,
            unit_price=unit_price,
            batch_number=data.batch_number,
            manufacturing_date=data.manufacturing_date,
            expiry_date=data.expiry_date,
            qc_status=QCStatus.PENDING.value,
            remarks=data.remarks,
        )

    def _build_document(self, data: ReceivingDocumentCreate) -> ReceivingDocument:
        return ReceivingDocument(
            name=data.name,
            document_type=data.document_type,
            custom_type=data.custom_type,
            filename=data.filename,
            mimetype=data.mimetype,
            size=data.size,
            uploaded_by=self.session.user_id,
        )

    def _validate(self, receiving: InvoiceReceiving, po: PurchaseOrder) -> None:
        ensure_valid_receiving(
            receiving,
            ordered_products={item.product_id for item in po.items},
        )

    def _reconcile(
        self,
        po: PurchaseOrder,
        receivings: List[InvoiceReceiving],
        result: ReceivingResult,
        check_permission: bool = True,
    ) -> None:
        """Reconcile the PO, move its receipt status and record events."""
        summary, event = summarize(po, receivings)
        result.reconciliation = summary
        result.events.append(event)

        from_status = po.status
        entry = sm.sync_receipt_status(po, self.session, check_permission=check_permission)
        if entry:
            result.events.append(transition_event(po, sm.POAction.RECEIVE, from_status))
            logger.info(f"PO {po.po_number}: {from_status} -> {po.status} after receiving")

        for line in summary.over_received_lines:
            result.warnings.append(
                f"Product {line.product_id} is over-received by {line.excess_qty} "
                f"({line.received_qty} received, {line.ordered_qty} ordered)"
            )
        touch(po, self.session)

    # ==================== Create / Update / Delete ====================

    async def create_receiving(self, data: InvoiceReceivingCreate) -> ReceivingResult:
        """Record goods received against an ordered PO."""
        require_permission(self.session, INVOICE_RECEIVING, "create")

        po = await load_purchase_order(self.db, data.purchase_order_id, for_update=True)
        if not sm.can_receive_goods(po.status):
            raise InvalidTransition(po.status, "receive", reason="goods can only be received on ordered purchase orders")
        check_version(po, data.po_version)

        receivings = await load_receivings(self.db, po.id)
        already = received_by_product(receivings)

        receiving = InvoiceReceiving(
            purchase_order_id=po.id,
            invoice_number=(data.invoice_number or "").strip(),
            invoice_date=data.invoice_date,
            received_date=data.received_date or date.today(),
            received_by=self.session.user_id,
            received_by_name=self.session.name or None,
            status=ReceivingStatus.DRAFT.value,
            zero_receiving_acknowledged=data.zero_receiving_acknowledged,
            qc_required=data.qc_required,
            qc_status=QCStatus.PENDING.value,
            notes=data.notes,
        )
        receiving.received_products = [
            self._build_line(index, line, po) for index, line in enumerate(data.received_products)
        ]
        receiving.documents = [self._build_document(doc) for doc in data.documents]
        for line in receiving.received_products:
            fill_snapshot(line, po, already)
        receiving.invoice_amount = (
            data.invoice_amount if data.invoice_amount is not None else compute_invoice_amount(receiving)
        )
        qc_service.refresh_qc_status(receiving)

        self._validate(receiving, po)

        self.db.add(receiving)
        result = ReceivingResult(receiving=receiving, purchase_order=po)
        self._reconcile(po, receivings + [receiving], result)
        await flush_purchase_order(self.db, po, data.po_version)

        result.events.insert(0, DomainEvent(
            kind=EventKind.RECEIVING_CREATED,
            aggregate_id=receiving.id,
            payload={"po_number": po.po_number, "invoice_number": receiving.invoice_number},
        ))
        logger.info(
            f"Receiving {receiving.invoice_number} recorded on PO {po.po_number} "
            f"({receiving.total_received_qty} units)"
        )
        return result

    async def update_receiving(self, receiving_id: uuid.UUID, data: InvoiceReceivingUpdate) -> ReceivingResult:
        """Edit a draft receiving and re-reconcile its PO."""
        require_permission(self.session, INVOICE_RECEIVING, "update")

        receiving, po, receivings = await self._load_context(receiving_id)
        if receiving.status not in EDITABLE_STATUSES:
            raise InvalidTransition(receiving.status, "update", entity=RECEIVING_ENTITY)
        check_version(po, data.po_version)

        already = received_by_product(receivings, exclude_receiving_id=receiving.id)

        update_data = data.model_dump(
            exclude_unset=True, exclude={"po_version", "received_products", "documents"}
        )
        for field, value in update_data.items():
            if field == "invoice_number" and value is not None:
                value = value.strip()
            setattr(receiving, field, value)

        if data.received_products is not None:
            receiving.received_products = [
                self._build_line(index, line, po) for index, line in enumerate(data.received_products)
            ]
        if data.documents is not None:
            receiving.documents = [self._build_document(doc) for doc in data.documents]

        for line in receiving.received_products:
            fill_snapshot(line, po, already)
        if "invoice_amount" not in data.model_fields_set or data.invoice_amount is None:
            receiving.invoice_amount = compute_invoice_amount(receiving)
        qc_service.refresh_qc_status(receiving)

        self._validate(receiving, po)

        result = ReceivingResult(receiving=receiving, purchase_order=po)
        self._reconcile(po, receivings, result)
        await flush_purchase_order(self.db, po, data.po_version)

        result.events.insert(0, DomainEvent(
            kind=EventKind.RECEIVING_UPDATED,
            aggregate_id=receiving.id,
            payload={"po_number": po.po_number, "invoice_number": receiving.invoice_number},
        ))
        logger.info(f"Receiving {receiving.invoice_number} on PO {po.po_number} updated")
        return result

    async def delete_receiving(self, receiving_id: uuid.UUID) -> ReceivingResult:
        """Delete a receiving; its quantities stop counting towards the PO."""
        require_permission(self.session, INVOICE_RECEIVING, "delete")

        receiving, po, receivings = await self._load_context(receiving_id)
        if receiving.status in UNDELETABLE_STATUSES:
            raise InvalidTransition(receiving.status, "delete", entity=RECEIVING_ENTITY)
        if sm.is_terminal(po.status):
            raise InvalidTransition(po.status, "delete receiving")

        await self.db.delete(receiving)
        remaining = [r for r in receivings if r.id != receiving.id]

        result = ReceivingResult(receiving=None, purchase_order=po)
        self._reconcile(po, remaining, result, check_permission=False)
        await flush_purchase_order(self.db, po)

        result.events.insert(0, DomainEvent(
            kind=EventKind.RECEIVING_DELETED,
            aggregate_id=receiving.id,
            payload={"po_number": po.po_number, "invoice_number": receiving.invoice_number},
        ))
        logger.info(f"Receiving {receiving.invoice_number} deleted from PO {po.po_number}")
        return result

    # ==================== Submission and QC ====================

    async def submit(self, receiving_id: uuid.UUID) -> ReceivingResult:
        """Submit a receiving that needs no QC."""
        receiving, po, _ = await self._load_context(receiving_id)
        qc_service.submit_receiving(receiving, self.session)

        result = ReceivingResult(receiving=receiving, purchase_order=po)
        result.events.append(DomainEvent(
            kind=EventKind.RECEIVING_SUBMITTED,
            aggregate_id=receiving.id,
            payload={"po_number": po.po_number, "status": receiving.status},
        ))
        await self.db.flush()
        return result

    async def submit_to_qc(self, receiving_id: uuid.UUID) -> ReceivingResult:
        """Send a draft receiving to QC and move the PO into QC when it is receiving goods."""
        receiving, po, _ = await self._load_context(receiving_id)
        qc_service.submit_to_qc(receiving, self.session)

        result = ReceivingResult(receiving=receiving, purchase_order=po)
        result.events.append(DomainEvent(
            kind=EventKind.RECEIVING_SUBMITTED,
            aggregate_id=receiving.id,
            payload={"po_number": po.po_number, "status": receiving.status},
        ))

        if sm.can_take_action(po.status, sm.POAction.SUBMIT_TO_QC):
            from_status = po.status
            sm.transition_po(po, sm.POAction.SUBMIT_TO_QC, self.session)
            touch(po, self.session)
            result.events.append(transition_event(po, sm.POAction.SUBMIT_TO_QC, from_status))

        await flush_purchase_order(self.db, po)
        logger.info(f"Receiving {receiving.invoice_number} submitted to QC (PO {po.po_number} is {po.status})")
        return result

    async def update_line_qc(
        self,
        receiving_id: uuid.UUID,
        index: int,
        status: str,
        remarks: Optional[str] = None,
    ) -> ReceivingResult:
        receiving, po, _ = await self._load_context(receiving_id)
        qc_service.update_line_qc(receiving, index, status, self.session, remarks=remarks)

        result = ReceivingResult(receiving=receiving, purchase_order=po)
        result.events.append(DomainEvent(
            kind=EventKind.RECEIVING_QC_UPDATED,
            aggregate_id=receiving.id,
            payload={"line": index, "qc_status": status, "receiving_qc_status": receiving.qc_status},
        ))
        await self.db.flush()
        return result

    async def finalize_qc(self, receiving_id: uuid.UUID, remarks: Optional[str] = None) -> ReceivingResult:
        """
        Close QC on a receiving.

        A rejected receiving drops out of reconciliation. A passed one
        completes the PO once it is fully received and all QC has passed.
        """
        receiving, po, receivings = await self._load_context(receiving_id)
        new_status = qc_service.finalize_qc(receiving, self.session, remarks=remarks)

        result = ReceivingResult(receiving=receiving, purchase_order=po)
        result.events.append(DomainEvent(
            kind=EventKind.RECEIVING_QC_FINALIZED,
            aggregate_id=receiving.id,
            payload={"po_number": po.po_number, "status": new_status, "qc_status": receiving.qc_status},
        ))

        if new_status == ReceivingStatus.REJECTED.value:
            self._reconcile(po, receivings, result, check_permission=False)
        elif (
            sm.can_take_action(po.status, sm.POAction.COMPLETE)
            and sm.check_completion(po, receivings) is None
        ):
            from_status = po.status
            sm.transition_po(po, sm.POAction.COMPLETE, self.session, receivings=receivings)
            touch(po, self.session)
            result.events.append(transition_event(po, sm.POAction.COMPLETE, from_status))

        await flush_purchase_order(self.db, po)
        logger.info(f"QC finalized on receiving {receiving.invoice_number}: {new_status} (PO {po.po_number} is {po.status})")
        return result
