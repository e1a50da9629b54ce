"""Purchase Order service.

Creates and edits draft POs, runs workflow actions through the state
machine and keeps received/backlog figures reconciled on every read.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from pharmaflow.config import settings
from pharmaflow.core.exceptions import (
    ErrorKind,
    InvalidTransition,
    NotFound,
    ValidationFailed,
    VersionConflict,
    Violation,
)
from pharmaflow.core.permissions import PURCHASE_ORDERS, UserSession, has_permission, require_permission
from pharmaflow.models.principal import Principal
from pharmaflow.models.product import Product
from pharmaflow.models.purchase import DiscountType, POStatus, PurchaseOrder, PurchaseOrderItem
from pharmaflow.models.receiving import InvoiceReceiving
from pharmaflow.schemas.purchase import (
    POItemCreate,
    PurchaseOrderCreate,
    PurchaseOrderUpdate,
    SendAction,
)
from pharmaflow.services import po_state_machine as sm
from pharmaflow.services.document_sequence_service import DocumentSequenceService
from pharmaflow.services.email_service import EmailService, build_purchase_order_email, get_email_service
from pharmaflow.services.events import DomainEvent, EventKind, WorkflowResult
from pharmaflow.services.po_totals import calculate_totals
from pharmaflow.services.reconciliation import ReconciliationSummary, reconcile_po


logger = logging.getLogger(__name__)

EDITABLE_HEADER_FIELDS = [
    "po_date", "additional_discount_type", "additional_discount_value", "tax_type",
    "gst_rate", "shipping_charge_type", "shipping_charge_value", "to_emails",
    "cc_emails", "from_email", "terms", "notes",
]


# ==================== Loading helpers ====================

async def load_purchase_order(
    db: AsyncSession,
    po_id: uuid.UUID,
    for_update: bool = False,
) -> PurchaseOrder:
    """Load a PO with its lines and history, or raise NotFound."""
    query = (
        select(PurchaseOrder)
        .options(
            selectinload(PurchaseOrder.items),
            selectinload(PurchaseOrder.workflow_history),
            selectinload(PurchaseOrder.principal),
        )
        .where(PurchaseOrder.id == po_id)
    )
    if for_update:
        query = query.with_for_update()

    result = await db.execute(query)
    po = result.scalar_one_or_none()
    if not po:
        raise NotFound("Purchase order", po_id)
    return po


async def load_receivings(db: AsyncSession, po_id: uuid.UUID) -> List[InvoiceReceiving]:
    """All receivings of a PO (every status) with their lines and documents."""
    result = await db.execute(
        select(InvoiceReceiving)
        .options(
            selectinload(InvoiceReceiving.received_products),
            selectinload(InvoiceReceiving.documents),
        )
        .where(InvoiceReceiving.purchase_order_id == po_id)
        .order_by(InvoiceReceiving.created_at)
    )
    return list(result.scalars().all())


async def flush_purchase_order(db: AsyncSession, po: PurchaseOrder, expected_version: Optional[int] = None) -> None:
    """Flush pending changes, reporting a lost optimistic-lock race as VersionConflict."""
    try:
        await db.flush()
    except StaleDataError:
        logger.warning(f"Concurrent update detected on PO {po.po_number}")
        raise VersionConflict(po.po_number, expected_version, None)


def check_version(po: PurchaseOrder, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != po.version:
        logger.warning(
            f"Version conflict on PO {po.po_number}: client has {expected_version}, current is {po.version}"
        )
        raise VersionConflict(po.po_number, expected_version, po.version)


def touch(po: PurchaseOrder, session: UserSession) -> None:
    """Mark the PO row itself as changed so its version is bumped on flush."""
    po.updated_at = datetime.now(timezone.utc)
    po.updated_by = session.user_id


def transition_event(po: PurchaseOrder, action: str, from_status: str) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.PO_TRANSITIONED,
        aggregate_id=po.id,
        payload={
            "po_number": po.po_number,
            "action": action,
            "from_status": from_status,
            "to_status": po.status,
        },
    )


def reconciliation_event(po: PurchaseOrder, summary: ReconciliationSummary) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.PO_RECONCILED,
        aggregate_id=po.id,
        payload={
            "po_number": po.po_number,
            "lines": [line.to_dict() for line in summary.lines],
            "over_received": [str(line.product_id) for line in summary.over_received_lines],
        },
    )


# ==================== Service ====================

class PurchaseOrderService:
    """Service for purchase order creation, edits and workflow actions."""

    def __init__(
        self,
        db: AsyncSession,
        session: UserSession,
        email_service: Optional[EmailService] = None,
    ):
        self.db = db
        self.session = session
        self.email_service = email_service or get_email_service()

    # ==================== Line validation ====================

    async def _load_products(self, items: List[POItemCreate]) -> dict:
        product_ids = {item.product_id for item in items}
        result = await self.db.execute(select(Product).where(Product.id.in_(product_ids)))
        return {product.id: product for product in result.scalars().all()}

    def _validate_items(self, items: List[POItemCreate], products: dict) -> None:
        violations = []
        seen = set()

        for index, item in enumerate(items):
            path = f"items[{index}]"
            if item.product_id not in products:
                violations.append(Violation(
                    f"{path}.productId", f"Line {index + 1}: product not found", ErrorKind.NOT_FOUND
                ))
            if item.product_id in seen:
                violations.append(Violation(
                    f"{path}.productId",
                    f"Line {index + 1}: product is already on this purchase order",
                    ErrorKind.DUPLICATE_PRODUCT,
                ))
            seen.add(item.product_id)

            if item.foc > item.quantity:
                violations.append(Violation(
                    f"{path}.foc",
                    f"Line {index + 1}: FOC ({item.foc}) cannot exceed quantity ({item.quantity})",
                    ErrorKind.INVALID_FOC,
                ))
            if item.discount_type == DiscountType.PERCENTAGE.value and item.discount > 100:
                violations.append(Violation(
                    f"{path}.discount",
                    f"Line {index + 1}: discount cannot exceed 100%",
                    ErrorKind.VALIDATION,
                ))

        if violations:
            raise ValidationFailed(violations, message="Purchase order lines are invalid")

    def _build_items(
        self,
        items: List[POItemCreate],
        products: dict,
        existing: Optional[List[PurchaseOrderItem]] = None,
    ) -> List[PurchaseOrderItem]:
        """
        Build PO lines, reusing existing rows for products already on the PO
        so the (po, product) uniqueness holds while lines are replaced.
        """
        by_product = {item.product_id: item for item in (existing or [])}
        lines = []
        for index, data in enumerate(items, start=1):
            product = products[data.product_id]
            line = by_product.get(data.product_id) or PurchaseOrderItem(
                product_id=data.product_id,
                received_qty=0,
                backlog_qty=data.quantity,
            )
            line.line_number = index
            line.product_code = product.code
            line.product_name = product.name
            line.description = data.description
            line.quantity = data.quantity
            line.foc = data.foc
            line.unit = data.unit or product.unit
            line.unit_price = data.unit_price
            line.discount = data.discount
            line.discount_type = data.discount_type
            line.gst_rate = data.gst_rate if data.gst_rate is not None else product.gst_rate
            line.remarks = data.remarks
            lines.append(line)
        return lines

    # ==================== Create / Read / Update ====================

    async def create_purchase_order(self, data: PurchaseOrderCreate) -> WorkflowResult:
        """Create a draft PO with a freshly allocated PO number."""
        require_permission(self.session, PURCHASE_ORDERS, "create")

        principal = await self.db.get(Principal, data.principal_id)
        if not principal or not principal.is_active:
            raise NotFound("Principal", data.principal_id)

        products = await self._load_products(data.items)
        self._validate_items(data.items, products)

        po_date = data.po_date or datetime.now(timezone.utc).date()
        po_number = await DocumentSequenceService(self.db).get_next_po_number(principal, po_date)

        po = PurchaseOrder(
            po_number=po_number,
            po_date=po_date,
            status=POStatus.DRAFT.value,
            principal_id=principal.id,
            bill_to=data.bill_to.model_dump() if data.bill_to else None,
            ship_to=data.ship_to.model_dump() if data.ship_to else None,
            additional_discount_type=data.additional_discount_type,
            additional_discount_value=data.additional_discount_value,
            tax_type=data.tax_type,
            gst_rate=data.gst_rate if data.gst_rate is not None else Decimal(str(settings.DEFAULT_PO_GST_RATE)),
            shipping_charge_type=data.shipping_charge_type,
            shipping_charge_value=data.shipping_charge_value,
            to_emails=list(data.to_emails) if data.to_emails else ([principal.email] if principal.email else []),
            cc_emails=list(data.cc_emails) if data.cc_emails else list(principal.cc_emails or []),
            from_email=data.from_email,
            terms=data.terms,
            notes=data.notes,
            created_by=self.session.user_id,
        )
        po.items = self._build_items(data.items, products)
        calculate_totals(po)
        sm.record_history(po, sm.POAction.CREATED, self.session, None, po.status)

        self.db.add(po)
        await self.db.flush()

        logger.info(f"Created PO {po.po_number} ({len(po.items)} lines, total {po.grand_total})")
        return WorkflowResult(
            purchase_order=po,
            events=[DomainEvent(
                kind=EventKind.PO_CREATED,
                aggregate_id=po.id,
                payload={"po_number": po.po_number, "grand_total": str(po.grand_total)},
            )],
        )

    async def get_purchase_order(self, po_id: uuid.UUID) -> WorkflowResult:
        """Load a PO with received/backlog figures recomputed from its receivings."""
        require_permission(self.session, PURCHASE_ORDERS, "view")

        po = await load_purchase_order(self.db, po_id)
        summary = reconcile_po(po, await load_receivings(self.db, po.id))
        return WorkflowResult(purchase_order=po, reconciliation=summary)

    async def update_purchase_order(self, po_id: uuid.UUID, data: PurchaseOrderUpdate) -> WorkflowResult:
        """Edit a draft PO. Totals are recalculated and an `updated` entry recorded."""
        require_permission(self.session, PURCHASE_ORDERS, "update")

        po = await load_purchase_order(self.db, po_id, for_update=True)
        if not sm.can_edit(po.status):
            raise InvalidTransition(po.status, "update", reason="only draft purchase orders can be edited")
        check_version(po, data.version)

        changed = []
        update_data = data.model_dump(exclude_unset=True, exclude={"version", "items", "bill_to", "ship_to"})
        for field in EDITABLE_HEADER_FIELDS:
            if field in update_data and getattr(po, field) != update_data[field]:
                setattr(po, field, update_data[field])
                changed.append(field)

        for field in ("bill_to", "ship_to"):
            if field in data.model_fields_set:
                value = getattr(data, field)
                setattr(po, field, value.model_dump() if value else None)
                changed.append(field)

        if data.items is not None:
            products = await self._load_products(data.items)
            self._validate_items(data.items, products)
            po.items = self._build_items(data.items, products, existing=po.items)
            changed.append("items")

        calculate_totals(po)
        touch(po, self.session)
        sm.record_history(
            po, sm.POAction.UPDATED, self.session, po.status, po.status,
            changes={"fields": changed},
        )
        await flush_purchase_order(self.db, po, data.version)

        logger.info(f"Updated PO {po.po_number}: {', '.join(changed) or 'no field changes'}")
        return WorkflowResult(
            purchase_order=po,
            events=[DomainEvent(
                kind=EventKind.PO_UPDATED,
                aggregate_id=po.id,
                payload={"po_number": po.po_number, "fields": changed},
            )],
        )

    async def delete_purchase_order(self, po_id: uuid.UUID) -> DomainEvent:
        """Delete a draft PO."""
        require_permission(self.session, PURCHASE_ORDERS, "delete")

        po = await load_purchase_order(self.db, po_id, for_update=True)
        if not sm.can_delete(po.status):
            raise InvalidTransition(po.status, "delete", reason="only draft purchase orders can be deleted")

        await self.db.delete(po)
        await self.db.flush()
        logger.info(f"Deleted draft PO {po.po_number}")
        return DomainEvent(kind=EventKind.PO_DELETED, aggregate_id=po.id, payload={"po_number": po.po_number})

    # ==================== Workflow ====================

    def allowed_actions(self, po: PurchaseOrder) -> List[str]:
        """Actions legal from the PO's status that the session may take."""
        actions = []
        for action in sm.get_allowed_actions(po.status):
            if action == sm.POAction.RECEIVE:
                continue
            resource, permission_action = sm.ACTION_PERMISSIONS[action]
            if has_permission(self.session, resource, permission_action):
                actions.append(action)
        return actions

    async def take_action(self, po_id: uuid.UUID, request) -> WorkflowResult:
        """
        Run one workflow action (submit, approve, reject, cancel, send, complete).

        Email dispatch failures on send are returned as warnings; the
        transition itself stands.
        """
        action = request.action
        remarks = request.remarks

        # Remarks are checked before the PO is even loaded
        sm.require_remarks(action, remarks)

        po = await load_purchase_order(self.db, po_id, for_update=True)
        from_status = po.status

        receivings: Optional[List[InvoiceReceiving]] = None
        summary = None
        if action == sm.POAction.COMPLETE:
            receivings = await load_receivings(self.db, po.id)
            summary = reconcile_po(po, receivings)

        sm.transition_po(po, action, self.session, remarks=remarks, receivings=receivings)
        touch(po, self.session)

        result = WorkflowResult(purchase_order=po, reconciliation=summary)
        result.events.append(transition_event(po, action, from_status))

        await flush_purchase_order(self.db, po)

        # Only mail the principal once the transition has been written
        if action == sm.POAction.SEND:
            warning = self._dispatch_email(po, request)
            if warning:
                result.warnings.append(warning)
                result.events.append(DomainEvent(
                    kind=EventKind.PO_EMAIL_FAILED,
                    aggregate_id=po.id,
                    payload={"po_number": po.po_number, "reason": warning},
                ))

        logger.info(f"PO {po.po_number}: {action} by {self.session.user_id} ({from_status} -> {po.status})")
        return result

    def _dispatch_email(self, po: PurchaseOrder, request: SendAction) -> Optional[str]:
        """Send the PO to the principal. Returns a warning message on failure."""
        to = list(request.to_emails or po.to_emails or [])
        cc = list(request.cc_emails or po.cc_emails or [])
        if not to and po.principal and po.principal.email:
            to = [po.principal.email]
        if not to:
            logger.warning(f"PO {po.po_number} sent without email: no recipients")
            return "Purchase order was sent but no email recipients are configured"

        message = build_purchase_order_email(
            po, to, cc,
            principal_name=po.principal.name if po.principal else "",
            attachment_dir=settings.PO_ATTACHMENT_DIR,
        )
        if self.email_service.send_purchase_order(message):
            return None

        logger.warning(f"Email dispatch failed for PO {po.po_number}")
        return f"Purchase order was sent but the email to {', '.join(to)} could not be delivered"


def summarize(po: PurchaseOrder, receivings: List[InvoiceReceiving]) -> Tuple[ReconciliationSummary, DomainEvent]:
    """Reconcile a PO and build the matching event."""
    summary = reconcile_po(po, receivings)
    return summary, reconciliation_event(po, summary)
