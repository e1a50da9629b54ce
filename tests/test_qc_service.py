import uuid

import pytest

from pharmaflow.core.exceptions import InvalidTransition, PermissionDenied, ValidationFailed
from pharmaflow.models import InvoiceReceiving, QCStatus, ReceivedProductLine, ReceivingStatus
from pharmaflow.services import qc_service
from tests.conftest import make_session


def make_line(received_qty=10, qc_status="pending") -> ReceivedProductLine:
    return ReceivedProductLine(product_id=uuid.uuid4(), received_qty=received_qty, qc_status=qc_status)


def make_receiving(*lines, status="qc_pending", qc_required=True) -> InvoiceReceiving:
    return InvoiceReceiving(
        id=uuid.uuid4(),
        invoice_number="INV-1001",
        status=status,
        qc_required=qc_required,
        qc_status="pending",
        received_products=list(lines) or [make_line()],
    )


@pytest.mark.parametrize("statuses,quantities,expected", [
    (["passed", "passed"], [5, 5], "passed"),
    (["passed", "failed"], [5, 5], "failed"),
    (["failed", "pending"], [5, 5], "failed"),
    (["passed", "pending"], [5, 5], "pending"),
    # Nothing received on the second line, so it needs no QC
    (["passed", "pending"], [5, 0], "passed"),
    (["pending"], [0], "passed"),
])
def test_aggregate_qc_status(statuses, quantities, expected):
    lines = [make_line(qty, status) for status, qty in zip(statuses, quantities)]
    assert qc_service.aggregate_qc_status(lines) == expected


def test_submit_to_qc_resets_line_results():
    line = make_line(qc_status="failed")
    line.qc_remarks = "old"
    receiving = make_receiving(line, status="draft")

    qc_service.submit_to_qc(receiving, make_session())

    assert receiving.status == ReceivingStatus.QC_PENDING.value
    assert receiving.qc_status == QCStatus.PENDING.value
    assert line.qc_status == QCStatus.PENDING.value
    assert line.qc_remarks is None


def test_submit_to_qc_needs_draft_and_qc_required():
    with pytest.raises(InvalidTransition):
        qc_service.submit_to_qc(make_receiving(status="qc_pending"), make_session())

    with pytest.raises(InvalidTransition, match="not required"):
        qc_service.submit_to_qc(make_receiving(status="draft", qc_required=False), make_session())


def test_submit_receiving_without_qc():
    receiving = make_receiving(status="draft", qc_required=False)
    qc_service.submit_receiving(receiving, make_session())
    assert receiving.status == ReceivingStatus.SUBMITTED.value

    with pytest.raises(InvalidTransition, match="invoice receiving"):
        qc_service.submit_receiving(make_receiving(status="draft", qc_required=True), make_session())


def test_update_line_qc_stamps_reviewer_and_refreshes():
    first, second = make_line(), make_line()
    receiving = make_receiving(first, second)
    reviewer = make_session()

    qc_service.update_line_qc(receiving, 0, "passed", reviewer, remarks="Looks fine")
    assert first.qc_status == "passed"
    assert first.qc_by == reviewer.user_id
    assert first.qc_date is not None
    assert first.qc_remarks == "Looks fine"
    assert receiving.qc_status == "pending"

    qc_service.update_line_qc(receiving, 1, "passed", reviewer)
    assert receiving.qc_status == "passed"


def test_update_line_qc_validation():
    receiving = make_receiving(make_line())

    with pytest.raises(ValidationFailed) as exc_info:
        qc_service.update_line_qc(receiving, 3, "great", make_session())

    assert [v.path for v in exc_info.value.violations] == ["qcStatus", "receivedProducts[3]"]


def test_update_line_qc_requires_qc_pending_receiving():
    with pytest.raises(InvalidTransition, match="not awaiting QC"):
        qc_service.update_line_qc(make_receiving(status="draft"), 0, "passed", make_session())


def test_update_line_qc_requires_permission():
    clerk = make_session(permissions=["invoice_receiving:*"])
    with pytest.raises(PermissionDenied):
        qc_service.update_line_qc(make_receiving(), 0, "passed", clerk)


def test_finalize_passed_completes_receiving():
    receiving = make_receiving(make_line(qc_status="passed"))
    reviewer = make_session()

    assert qc_service.finalize_qc(receiving, reviewer, remarks="OK") == ReceivingStatus.COMPLETED.value
    assert receiving.qc_status == QCStatus.PASSED.value
    assert receiving.qc_by == reviewer.user_id
    assert receiving.qc_remarks == "OK"


def test_finalize_failed_rejects_receiving():
    receiving = make_receiving(make_line(qc_status="passed"), make_line(qc_status="failed"))
    assert qc_service.finalize_qc(receiving, make_session()) == ReceivingStatus.REJECTED.value
    assert receiving.counts_towards_po is False


def test_finalize_with_pending_lines_is_refused():
    receiving = make_receiving(make_line(qc_status="passed"), make_line(qc_status="pending"))

    with pytest.raises(InvalidTransition, match="still pending"):
        qc_service.finalize_qc(receiving, make_session())
    assert receiving.status == ReceivingStatus.QC_PENDING.value


def test_finalize_requires_approve_permission():
    receiving = make_receiving(make_line(qc_status="passed"))
    with pytest.raises(PermissionDenied):
        qc_service.finalize_qc(receiving, make_session(permissions=["quality_control:update"]))
