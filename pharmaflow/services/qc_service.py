"""
Quality control of invoice receivings.

QC status is recorded per received line by a reviewer. The receiving-level
`qc_status` is derived from the lines:

    failed   if any line failed
    passed   if every required line passed
    pending  otherwise

A line with nothing received is not required.

Receiving lifecycle:

    draft --submit_to_qc--> qc_pending --finalize--> completed | rejected
    draft --submit--------> submitted          (receivings without QC)
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from pharmaflow.core.exceptions import ErrorKind, InvalidTransition, ValidationFailed, Violation
from pharmaflow.core.permissions import (
    INVOICE_RECEIVING,
    QUALITY_CONTROL,
    UserSession,
    require_permission,
)
from pharmaflow.models.receiving import (
    InvoiceReceiving,
    QCStatus,
    ReceivedProductLine,
    ReceivingStatus,
)


logger = logging.getLogger(__name__)

RECEIVING_ENTITY = "invoice receiving"
QC_STATUSES = [status.value for status in QCStatus]


def is_qc_required(line: ReceivedProductLine) -> bool:
    return (line.received_qty or 0) > 0


def aggregate_qc_status(lines: Iterable[ReceivedProductLine]) -> str:
    """Derive the receiving-level QC status from its lines."""
    lines = list(lines)
    if any(line.qc_status == QCStatus.FAILED.value for line in lines):
        return QCStatus.FAILED.value

    required = [line for line in lines if is_qc_required(line)]
    if all(line.qc_status == QCStatus.PASSED.value for line in required):
        return QCStatus.PASSED.value
    return QCStatus.PENDING.value


def refresh_qc_status(receiving: InvoiceReceiving) -> str:
    """Recompute the denormalized receiving `qc_status`."""
    receiving.qc_status = aggregate_qc_status(receiving.received_products)
    return receiving.qc_status


def update_line_qc(
    receiving: InvoiceReceiving,
    index: int,
    status: str,
    session: UserSession,
    remarks: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ReceivedProductLine:
    """
    Record a reviewer's QC result on one received line.

    Raises:
        PermissionDenied: user lacks quality_control:update
        InvalidTransition: receiving is not awaiting QC
        ValidationFailed: bad line index or status
    """
    require_permission(session, QUALITY_CONTROL, "update")

    if receiving.status != ReceivingStatus.QC_PENDING.value:
        raise InvalidTransition(
            receiving.status, "update_qc", reason="receiving is not awaiting QC", entity=RECEIVING_ENTITY
        )

    violations = []
    if status not in QC_STATUSES:
        violations.append(Violation(
            "qcStatus", f"QC status must be one of: {', '.join(QC_STATUSES)}", ErrorKind.VALIDATION
        ))
    lines = receiving.received_products
    if index < 0 or index >= len(lines):
        violations.append(Violation(
            f"receivedProducts[{index}]", f"Receiving has no line {index}", ErrorKind.VALIDATION
        ))
    if violations:
        raise ValidationFailed(violations)

    line = lines[index]
    line.qc_status = status
    line.qc_remarks = remarks
    line.qc_by = session.user_id
    line.qc_date = now or datetime.now(timezone.utc)

    refresh_qc_status(receiving)
    logger.info(
        f"QC {status} recorded on line {index} of receiving {receiving.invoice_number} "
        f"by {session.user_id}; receiving QC is {receiving.qc_status}"
    )
    return line


def submit_to_qc(receiving: InvoiceReceiving, session: UserSession) -> None:
    """
    Hand a draft receiving over to QC.

    Every line's QC result is reset to pending.
    """
    require_permission(session, INVOICE_RECEIVING, "submit_qc")

    if receiving.status != ReceivingStatus.DRAFT.value:
        raise InvalidTransition(receiving.status, "submit_to_qc", entity=RECEIVING_ENTITY)
    if not receiving.qc_required:
        raise InvalidTransition(
            receiving.status, "submit_to_qc", reason="QC is not required for this receiving",
            entity=RECEIVING_ENTITY,
        )

    for line in receiving.received_products:
        line.qc_status = QCStatus.PENDING.value
        line.qc_remarks = None
        line.qc_by = None
        line.qc_date = None

    receiving.status = ReceivingStatus.QC_PENDING.value
    receiving.qc_status = QCStatus.PENDING.value


def submit_receiving(receiving: InvoiceReceiving, session: UserSession) -> None:
    """Submit a draft receiving that does not require QC."""
    require_permission(session, INVOICE_RECEIVING, "submit")

    if receiving.status != ReceivingStatus.DRAFT.value:
        raise InvalidTransition(receiving.status, "submit", entity=RECEIVING_ENTITY)
    if receiving.qc_required:
        raise InvalidTransition(
            receiving.status, "submit", reason="QC is required, submit it to QC instead",
            entity=RECEIVING_ENTITY,
        )

    receiving.status = ReceivingStatus.SUBMITTED.value


def finalize_qc(
    receiving: InvoiceReceiving,
    session: UserSession,
    remarks: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Close QC on a receiving.

    Passed receivings are completed; failed receivings are rejected and stop
    counting towards the PO's received quantities.

    Returns:
        The receiving's new status
    """
    require_permission(session, QUALITY_CONTROL, "approve")

    if receiving.status != ReceivingStatus.QC_PENDING.value:
        raise InvalidTransition(receiving.status, "finalize_qc", entity=RECEIVING_ENTITY)

    qc_status = refresh_qc_status(receiving)
    if qc_status == QCStatus.PENDING.value:
        raise InvalidTransition(
            receiving.status, "finalize_qc", reason="QC is still pending on some lines",
            entity=RECEIVING_ENTITY,
        )

    receiving.status = (
        ReceivingStatus.COMPLETED.value
        if qc_status == QCStatus.PASSED.value
        else ReceivingStatus.REJECTED.value
    )
    receiving.qc_by = session.user_id
    receiving.qc_date = now or datetime.now(timezone.utc)
    receiving.qc_remarks = remarks

    logger.info(f"Receiving {receiving.invoice_number} QC {qc_status}: now {receiving.status}")
    return receiving.status
