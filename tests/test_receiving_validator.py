import uuid
from datetime import date, timedelta

import pytest

from pharmaflow.core.exceptions import ErrorKind, ValidationFailed
from pharmaflow.models import InvoiceReceiving, ReceivedProductLine, ReceivingDocument
from pharmaflow.services.receiving_validator import (
    ensure_valid_receiving,
    quantity_ceiling,
    tolerance_allowance,
    validate_receiving,
)


TODAY = date(2024, 3, 1)
PARACETAMOL = uuid.uuid4()
AMOXICILLIN = uuid.uuid4()


def make_line(**overrides) -> ReceivedProductLine:
    values = dict(
        product_id=PARACETAMOL,
        product_name="Paracetamol 500mg",
        ordered_qty=100,
        already_received=60,
        remaining_quantity=40,
        received_qty=10,
        foc=0,
        batch_number="B-001",
        manufacturing_date=date(2024, 1, 1),
        expiry_date=date(2026, 1, 1),
    )
    values.update(overrides)
    return ReceivedProductLine(**values)


def make_receiving(lines=None, documents=None, **overrides) -> InvoiceReceiving:
    values = dict(
        invoice_number="INV-1001",
        invoice_date=TODAY,
        received_date=TODAY,
        zero_receiving_acknowledged=False,
        received_products=lines if lines is not None else [make_line()],
        documents=documents or [],
    )
    values.update(overrides)
    return InvoiceReceiving(**values)


def check(receiving, tolerance_percent=0.0):
    return validate_receiving(
        receiving,
        ordered_products={PARACETAMOL, AMOXICILLIN},
        today=TODAY,
        tolerance_percent=tolerance_percent,
        max_batch_length=50,
    )


def test_valid_receiving_has_no_violations():
    assert check(make_receiving()) == []


def test_quantity_up_to_remaining_is_accepted():
    assert check(make_receiving([make_line(received_qty=40)])) == []


def test_quantity_over_remaining_is_rejected_with_path():
    violations = check(make_receiving([make_line(received_qty=41)]))

    assert len(violations) == 1
    assert violations[0].kind == ErrorKind.QUANTITY_OUT_OF_RANGE
    assert violations[0].path == "receivedProducts[0].receivedQty"
    assert "between 0 and 40" in violations[0].message


def test_negative_quantity_is_rejected():
    violations = check(make_receiving([make_line(received_qty=-1), make_line(product_id=AMOXICILLIN)]))
    assert [v.kind for v in violations] == [ErrorKind.QUANTITY_OUT_OF_RANGE]


def test_tolerance_widens_the_ceiling():
    assert tolerance_allowance(100, 10) == 10
    assert tolerance_allowance(15, 10) == 1
    assert tolerance_allowance(100, 0) == 0
    assert quantity_ceiling(make_line(), 10) == 50

    assert check(make_receiving([make_line(received_qty=50)]), tolerance_percent=10) == []
    violations = check(make_receiving([make_line(received_qty=51)]), tolerance_percent=10)
    assert [v.kind for v in violations] == [ErrorKind.QUANTITY_OUT_OF_RANGE]


def test_expired_product_with_quantity_is_rejected():
    yesterday = TODAY - timedelta(days=1)
    violations = check(make_receiving([make_line(received_qty=5, expiry_date=yesterday)]))

    assert [v.kind for v in violations] == [ErrorKind.EXPIRED_PRODUCT]
    assert violations[0].path == "receivedProducts[0].expiryDate"


def test_expired_product_with_zero_quantity_is_allowed():
    yesterday = TODAY - timedelta(days=1)
    lines = [make_line(received_qty=0, expiry_date=yesterday), make_line(product_id=AMOXICILLIN)]

    assert check(make_receiving(lines)) == []


def test_expiring_today_is_not_expired():
    assert check(make_receiving([make_line(expiry_date=TODAY)])) == []


def test_manufacturing_date_must_precede_expiry():
    line = make_line(manufacturing_date=date(2025, 1, 1), expiry_date=date(2025, 1, 1))
    violations = check(make_receiving([line]))

    assert [v.kind for v in violations] == [ErrorKind.INVALID_DATE_RANGE]
    assert violations[0].path == "receivedProducts[0].manufacturingDate"


def test_all_zero_receiving_needs_acknowledgement():
    lines = [make_line(received_qty=0)]

    violations = check(make_receiving(lines))
    assert [v.kind for v in violations] == [ErrorKind.EMPTY_RECEIVING]

    assert check(make_receiving(lines, zero_receiving_acknowledged=True)) == []


def test_receiving_without_lines_is_empty():
    assert [v.kind for v in check(make_receiving([]))] == [ErrorKind.EMPTY_RECEIVING]


def test_product_not_on_order():
    violations = check(make_receiving([make_line(product_id=uuid.uuid4())]))
    assert [v.kind for v in violations] == [ErrorKind.PRODUCT_NOT_ON_ORDER]


def test_negative_foc_is_rejected():
    violations = check(make_receiving([make_line(foc=-2)]))
    assert [v.path for v in violations] == ["receivedProducts[0].foc"]


def test_batch_number_length():
    violations = check(make_receiving([make_line(batch_number="B" * 51)]))
    assert [v.path for v in violations] == ["receivedProducts[0].batchNumber"]


def test_batches_of_one_product_share_the_remaining_quantity():
    lines = [
        make_line(batch_number="B-001", received_qty=25),
        make_line(batch_number="B-002", received_qty=20),
    ]
    violations = check(make_receiving(lines))

    assert len(violations) == 1
    assert violations[0].kind == ErrorKind.QUANTITY_OUT_OF_RANGE
    assert violations[0].path == "receivedProducts"
    assert "Paracetamol 500mg" in violations[0].message


def test_batches_within_remaining_are_accepted():
    lines = [
        make_line(batch_number="B-001", received_qty=25),
        make_line(batch_number="B-002", received_qty=15),
    ]
    assert check(make_receiving(lines)) == []


@pytest.mark.parametrize("overrides,path", [
    ({"invoice_number": "  "}, "invoiceNumber"),
    ({"invoice_date": TODAY + timedelta(days=1)}, "invoiceDate"),
    ({"received_date": TODAY + timedelta(days=1)}, "receivedDate"),
])
def test_header_rules(overrides, path):
    violations = check(make_receiving(**overrides))

    assert [v.path for v in violations] == [path]
    assert violations[0].kind == ErrorKind.INVALID_RECEIVING_HEADER


def test_documents_need_a_type():
    documents = [
        ReceivingDocument(name="invoice.pdf", document_type="Invoice"),
        ReceivingDocument(name="scan.jpg", document_type=None),
        ReceivingDocument(name="misc.pdf", document_type="Other"),
        ReceivingDocument(name="coa.pdf", document_type="Other", custom_type="Stability report"),
        ReceivingDocument(name="x.pdf", document_type="Receipt"),
    ]
    violations = check(make_receiving(documents=documents))

    assert [v.path for v in violations] == [
        "documents[1].documentType",
        "documents[2].customType",
        "documents[4].documentType",
    ]
    assert {v.kind for v in violations} == {ErrorKind.MISSING_DOCUMENT_TYPE}


def test_every_violation_is_collected():
    yesterday = TODAY - timedelta(days=1)
    lines = [
        make_line(received_qty=41),
        make_line(product_id=AMOXICILLIN, received_qty=5, expiry_date=yesterday, manufacturing_date=None),
    ]
    receiving = make_receiving(lines, documents=[ReceivingDocument(name="scan.jpg")], invoice_number="")

    with pytest.raises(ValidationFailed) as exc_info:
        ensure_valid_receiving(
            receiving,
            ordered_products={PARACETAMOL, AMOXICILLIN},
            today=TODAY,
            tolerance_percent=0,
        )

    error = exc_info.value
    assert set(error.kinds) == {
        ErrorKind.INVALID_RECEIVING_HEADER,
        ErrorKind.QUANTITY_OUT_OF_RANGE,
        ErrorKind.EXPIRED_PRODUCT,
        ErrorKind.MISSING_DOCUMENT_TYPE,
    }
    assert error.kind == ErrorKind.VALIDATION
    assert error.to_dict()["errors"][0]["path"] == "invoiceNumber"
