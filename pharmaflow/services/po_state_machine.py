"""
Purchase Order State Machine

This module is the SINGLE SOURCE OF TRUTH for all PO status transitions.
All status changes must go through `transition_po`.

Each action names its legal source states, its target state and the
permission the acting user must hold. A transition appends exactly one
workflow history entry and sets the status in the same aggregate mutation.
"""

from typing import Optional, List, Dict, Tuple, Iterable
from datetime import datetime, timezone

from pharmaflow.core.exceptions import (
    ErrorKind,
    InvalidTransition,
    ValidationFailed,
    Violation,
)
from pharmaflow.core.permissions import (
    INVOICE_RECEIVING,
    PURCHASE_ORDERS,
    QUALITY_CONTROL,
    UserSession,
    require_permission,
)
from pharmaflow.models.purchase import POStatus, PurchaseOrder, POWorkflowHistory
from pharmaflow.models.receiving import QCStatus, ReceivingStatus


# =============================================================================
# ACTION DEFINITIONS
# =============================================================================

class POAction:
    """Workflow actions - use these instead of strings."""
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    SEND = "send"
    RECEIVE = "receive"
    SUBMIT_TO_QC = "submit_to_qc"
    COMPLETE = "complete"

    # History-only entries (no status change)
    CREATED = "created"
    UPDATED = "updated"

    @classmethod
    def all(cls) -> List[str]:
        return [
            cls.SUBMIT, cls.APPROVE, cls.REJECT, cls.CANCEL, cls.SEND,
            cls.RECEIVE, cls.SUBMIT_TO_QC, cls.COMPLETE,
        ]


RECEIVING_STATES = [
    POStatus.ORDERED.value,
    POStatus.PARTIAL_RECEIVED.value,
    POStatus.RECEIVED.value,
    POStatus.QC_PENDING.value,
]

TERMINAL_STATES = [
    POStatus.COMPLETED.value,
    POStatus.CANCELLED.value,
    POStatus.REJECTED.value,
]


# =============================================================================
# TRANSITION RULES
# =============================================================================

# action -> states it may be taken from
ACTION_SOURCES: Dict[str, List[str]] = {
    POAction.SUBMIT: [POStatus.DRAFT.value],
    POAction.APPROVE: [POStatus.PENDING_APPROVAL.value],
    POAction.REJECT: [POStatus.PENDING_APPROVAL.value, POStatus.APPROVED.value],
    POAction.CANCEL: [POStatus.DRAFT.value, POStatus.PENDING_APPROVAL.value],
    POAction.SEND: [POStatus.APPROVED.value],
    POAction.RECEIVE: RECEIVING_STATES,
    POAction.SUBMIT_TO_QC: [POStatus.PARTIAL_RECEIVED.value, POStatus.RECEIVED.value],
    POAction.COMPLETE: [POStatus.RECEIVED.value, POStatus.QC_PENDING.value],
}

# action -> target state (None = computed from received quantities)
ACTION_TARGETS: Dict[str, Optional[str]] = {
    POAction.SUBMIT: POStatus.PENDING_APPROVAL.value,
    POAction.APPROVE: POStatus.APPROVED.value,
    POAction.REJECT: POStatus.REJECTED.value,
    POAction.CANCEL: POStatus.CANCELLED.value,
    POAction.SEND: POStatus.ORDERED.value,
    POAction.RECEIVE: None,
    POAction.SUBMIT_TO_QC: POStatus.QC_PENDING.value,
    POAction.COMPLETE: POStatus.COMPLETED.value,
}

# action -> (resource, permission action)
ACTION_PERMISSIONS: Dict[str, Tuple[str, str]] = {
    POAction.SUBMIT: (PURCHASE_ORDERS, "submit"),
    POAction.APPROVE: (PURCHASE_ORDERS, "approve_level1"),
    POAction.REJECT: (PURCHASE_ORDERS, "reject"),
    POAction.CANCEL: (PURCHASE_ORDERS, "cancel"),
    POAction.SEND: (PURCHASE_ORDERS, "send"),
    POAction.RECEIVE: (INVOICE_RECEIVING, "create"),
    POAction.SUBMIT_TO_QC: (INVOICE_RECEIVING, "submit_qc"),
    POAction.COMPLETE: (QUALITY_CONTROL, "approve"),
}

# Human-readable action names
ACTION_LABELS: Dict[str, str] = {
    POAction.SUBMIT: "Submit for Approval",
    POAction.APPROVE: "Approve",
    POAction.REJECT: "Reject",
    POAction.CANCEL: "Cancel",
    POAction.SEND: "Send to Principal",
    POAction.RECEIVE: "Receive Goods",
    POAction.SUBMIT_TO_QC: "Submit to QC",
    POAction.COMPLETE: "Complete",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_take_action(current_status: str, action: str) -> bool:
    """Check if an action is legal from the current status."""
    return current_status in ACTION_SOURCES.get(action, [])


def get_allowed_actions(current_status: str) -> List[str]:
    """Get list of actions that can be taken from the current status."""
    return [action for action in POAction.all() if can_take_action(current_status, action)]


def get_action_label(action: str) -> str:
    return ACTION_LABELS.get(action, action)


def can_edit(status: str) -> bool:
    """Can this PO's header and lines be edited?"""
    return status == POStatus.DRAFT.value


def can_delete(status: str) -> bool:
    return status == POStatus.DRAFT.value


def can_receive_goods(status: str) -> bool:
    """Can invoice receivings be recorded against this PO?"""
    return status in RECEIVING_STATES


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return status in TERMINAL_STATES


def compute_receipt_status(po: PurchaseOrder) -> str:
    """
    Status implied by the PO's reconciled quantities.

    received if every line is fully received, partial_received if anything
    has been received, otherwise ordered.
    """
    if po.is_fully_received:
        return POStatus.RECEIVED.value
    if po.total_received_qty > 0:
        return POStatus.PARTIAL_RECEIVED.value
    return POStatus.ORDERED.value


def check_completion(po: PurchaseOrder, receivings: Optional[Iterable] = None) -> Optional[str]:
    """
    Return the reason a PO cannot be completed, or None if it can.

    Every line must be fully received and every counted receiving that
    requires QC must have passed it and had its QC finalized.
    """
    if not po.is_fully_received:
        return "not every line has been fully received"

    pending = [
        r for r in (receivings or [])
        if r.status != ReceivingStatus.REJECTED.value
        and r.qc_required
        and (r.status != ReceivingStatus.COMPLETED.value or r.qc_status != QCStatus.PASSED.value)
    ]
    if pending:
        return f"{len(pending)} receiving(s) have not passed QC"
    return None


def require_remarks(action: str, remarks: Optional[str]) -> None:
    """Reject needs non-empty remarks, whatever the PO's status."""
    if action == POAction.REJECT and not (remarks or "").strip():
        raise ValidationFailed(
            [Violation("remarks", "Remarks are required to reject a purchase order", ErrorKind.REMARKS_REQUIRED)],
            message="Remarks are required to reject a purchase order",
        )


def _next_sequence(po: PurchaseOrder) -> int:
    return max((entry.sequence for entry in po.workflow_history), default=0) + 1


def record_history(
    po: PurchaseOrder,
    action: str,
    session: UserSession,
    from_status: Optional[str],
    to_status: str,
    remarks: Optional[str] = None,
    changes: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> POWorkflowHistory:
    """Append one entry to the PO's workflow history."""
    entry = POWorkflowHistory(
        sequence=_next_sequence(po),
        action=action,
        from_status=from_status,
        to_status=to_status,
        action_by=session.user_id,
        action_by_name=session.name or None,
        action_date=now or datetime.now(timezone.utc),
        remarks=remarks,
        changes=changes,
    )
    po.workflow_history.append(entry)
    return entry


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_po(
    po: PurchaseOrder,
    action: str,
    session: UserSession,
    remarks: Optional[str] = None,
    receivings: Optional[Iterable] = None,
    check_permission: bool = True,
    now: Optional[datetime] = None,
) -> POWorkflowHistory:
    """
    Take a workflow action on a PO.

    This function:
    1. Requires remarks for reject (before any other check)
    2. Validates the action is legal from the current status
    3. Checks the acting user's permission
    4. Sets the status and audit fields and appends one history entry

    Args:
        po: PurchaseOrder model instance
        action: One of POAction
        session: Acting user
        remarks: Optional remarks (required for reject)
        receivings: Receivings of the PO, consulted by complete
        check_permission: False for system-driven receive updates whose
            triggering operation was already authorized
        now: Timestamp override

    Raises:
        ValidationFailed: reject without remarks
        InvalidTransition: action not legal from the current status, or
            complete before the PO is fully received and QC passed
        PermissionDenied: the action is legal but the user lacks its
            permission (HTTP 403). A missing permission is never reported
            as InvalidTransition; an illegal action is InvalidTransition
            whatever the user's permissions.
    """
    require_remarks(action, remarks)

    current_status = po.status
    if action not in ACTION_TARGETS:
        raise InvalidTransition(current_status, action, reason="unknown action")

    if not can_take_action(current_status, action):
        allowed = get_allowed_actions(current_status)
        reason = "terminal state" if not allowed else f"allowed actions: {', '.join(allowed)}"
        raise InvalidTransition(current_status, action, reason=reason)

    if check_permission:
        resource, permission_action = ACTION_PERMISSIONS[action]
        require_permission(session, resource, permission_action)

    if action == POAction.COMPLETE:
        reason = check_completion(po, receivings)
        if reason:
            raise InvalidTransition(current_status, action, reason=reason)

    target = ACTION_TARGETS[action]
    if target is None:
        target = compute_receipt_status(po)

    now = now or datetime.now(timezone.utc)

    po.status = target
    po.updated_by = session.user_id

    if action == POAction.APPROVE:
        po.approved_by = session.user_id
        po.approved_at = now
    elif action == POAction.SEND:
        po.sent_at = now
    elif action == POAction.COMPLETE:
        po.completed_at = now

    return record_history(po, action, session, current_status, target, remarks=remarks, now=now)


def sync_receipt_status(
    po: PurchaseOrder,
    session: UserSession,
    check_permission: bool = True,
) -> Optional[POWorkflowHistory]:
    """
    Move a PO between ordered/partial_received/received after reconciliation.

    Returns the history entry, or None when the status is unchanged. A PO
    already in QC keeps that status while it stays fully received.
    """
    if not can_receive_goods(po.status):
        return None

    target = compute_receipt_status(po)
    if target == po.status:
        return None
    if po.status == POStatus.QC_PENDING.value and target == POStatus.RECEIVED.value:
        return None

    return transition_po(po, POAction.RECEIVE, session, check_permission=check_permission)


# =============================================================================
# VISUALIZATION (for debugging/documentation)
# =============================================================================

def describe_state_machine() -> str:
    """Text representation of the state machine."""
    lines = ["=== PO State Machine ===", ""]
    for status in POStatus:
        actions = get_allowed_actions(status.value)
        if not actions:
            lines.append(f"{status.value}: [TERMINAL STATE]")
            continue
        lines.append(f"{status.value}:")
        for action in actions:
            target = ACTION_TARGETS[action] or "ordered|partial_received|received"
            resource, permission_action = ACTION_PERMISSIONS[action]
            lines.append(
                f"  --{action}--> {target} ({get_action_label(action)}; {resource}:{permission_action})"
            )
    return "\n".join(lines)


if __name__ == "__main__":
    # Run this file directly to see the state diagram
    print(describe_state_machine())
