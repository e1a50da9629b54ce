"""
Invoice receiving validation.

Every rule is checked and every violation collected, so a caller can show
all problems at once. Nothing here touches the database; the receiving
service fills in the quantity snapshot (ordered / already received /
remaining) from committed data before calling `validate_receiving`.
"""
import math
from datetime import date
from typing import Iterable, List, Optional

from pharmaflow.config import settings
from pharmaflow.core.exceptions import ErrorKind, ValidationFailed, Violation
from pharmaflow.models.receiving import (
    DocumentType,
    InvoiceReceiving,
    ReceivedProductLine,
    group_batches_by_product,
)


DOCUMENT_TYPES = [doc_type.value for doc_type in DocumentType]


def tolerance_allowance(ordered_qty: int, tolerance_percent: float) -> int:
    """Extra units a line may be over-received by under the configured tolerance."""
    if not tolerance_percent or tolerance_percent <= 0:
        return 0
    return math.floor((ordered_qty or 0) * tolerance_percent / 100)


def quantity_ceiling(line: ReceivedProductLine, tolerance_percent: float = 0.0) -> int:
    remaining = max(0, line.remaining_quantity or 0)
    return remaining + tolerance_allowance(line.ordered_qty or 0, tolerance_percent)


def validate_header(receiving: InvoiceReceiving, today: date) -> List[Violation]:
    violations = []

    if not (receiving.invoice_number or "").strip():
        violations.append(Violation(
            "invoiceNumber", "Invoice number is required", ErrorKind.INVALID_RECEIVING_HEADER
        ))
    if receiving.invoice_date and receiving.invoice_date > today:
        violations.append(Violation(
            "invoiceDate", "Invoice date cannot be in the future", ErrorKind.INVALID_RECEIVING_HEADER
        ))
    if receiving.received_date and receiving.received_date > today:
        violations.append(Violation(
            "receivedDate", "Received date cannot be in the future", ErrorKind.INVALID_RECEIVING_HEADER
        ))

    return violations


def validate_line(
    index: int,
    line: ReceivedProductLine,
    today: date,
    tolerance_percent: float = 0.0,
    max_batch_length: int = 50,
    ordered_products: Optional[set] = None,
) -> List[Violation]:
    """Validate one received line. `index` is its position in the receiving."""
    path = f"receivedProducts[{index}]"
    violations = []
    qty = line.received_qty or 0

    if ordered_products is not None and line.product_id not in ordered_products:
        violations.append(Violation(
            f"{path}.product",
            f"Line {index + 1}: product is not on the purchase order",
            ErrorKind.PRODUCT_NOT_ON_ORDER,
        ))

    ceiling = quantity_ceiling(line, tolerance_percent)
    if qty < 0 or qty > ceiling:
        violations.append(Violation(
            f"{path}.receivedQty",
            f"Line {index + 1}: received quantity {qty} must be between 0 and {ceiling}",
            ErrorKind.QUANTITY_OUT_OF_RANGE,
        ))

    if (line.foc or 0) < 0:
        violations.append(Violation(
            f"{path}.foc", f"Line {index + 1}: FOC cannot be negative", ErrorKind.INVALID_FOC
        ))

    if line.expiry_date and qty > 0 and line.expiry_date < today:
        violations.append(Violation(
            f"{path}.expiryDate",
            f"Line {index + 1}: product expired on {line.expiry_date.isoformat()}",
            ErrorKind.EXPIRED_PRODUCT,
        ))

    if line.manufacturing_date and line.expiry_date and line.manufacturing_date >= line.expiry_date:
        violations.append(Violation(
            f"{path}.manufacturingDate",
            f"Line {index + 1}: manufacturing date must be before expiry date",
            ErrorKind.INVALID_DATE_RANGE,
        ))

    if line.batch_number and len(line.batch_number) > max_batch_length:
        violations.append(Violation(
            f"{path}.batchNumber",
            f"Line {index + 1}: batch number cannot exceed {max_batch_length} characters",
            ErrorKind.INVALID_RECEIVING_HEADER,
        ))

    return violations


def validate_batch_groups(
    lines: List[ReceivedProductLine],
    tolerance_percent: float = 0.0,
) -> List[Violation]:
    """Batch entries of one product must together fit its remaining quantity."""
    violations = []
    for product_id, batch_lines in group_batches_by_product(lines).items():
        if len(batch_lines) < 2:
            continue
        total = sum(line.received_qty or 0 for line in batch_lines)
        ceiling = quantity_ceiling(batch_lines[0], tolerance_percent)
        if total > ceiling:
            name = batch_lines[0].product_name or batch_lines[0].product_code or str(product_id)
            violations.append(Violation(
                "receivedProducts",
                f"{name}: batch quantities total {total}, more than the {ceiling} remaining",
                ErrorKind.QUANTITY_OUT_OF_RANGE,
            ))
    return violations


def validate_documents(documents: Iterable) -> List[Violation]:
    violations = []
    for index, document in enumerate(documents):
        path = f"documents[{index}].documentType"
        doc_type = (document.document_type or "").strip()
        if not doc_type or doc_type not in DOCUMENT_TYPES:
            violations.append(Violation(
                path,
                f"Document {index + 1}: select a document type ({', '.join(DOCUMENT_TYPES)})",
                ErrorKind.MISSING_DOCUMENT_TYPE,
            ))
        elif doc_type == DocumentType.OTHER.value and not (document.custom_type or "").strip():
            violations.append(Violation(
                f"documents[{index}].customType",
                f"Document {index + 1}: specify the document type",
                ErrorKind.MISSING_DOCUMENT_TYPE,
            ))
    return violations


def validate_receiving(
    receiving: InvoiceReceiving,
    ordered_products: Optional[set] = None,
    today: Optional[date] = None,
    tolerance_percent: Optional[float] = None,
    max_batch_length: Optional[int] = None,
) -> List[Violation]:
    """
    Collect every violation of a receiving.

    Args:
        receiving: Receiving with its lines' quantity snapshot filled in
        ordered_products: Product ids on the PO; lines outside it are rejected
        today: Date used for expiry and future-date checks
        tolerance_percent: Over-receiving tolerance, defaults to settings
        max_batch_length: Maximum batch number length, defaults to settings
    """
    today = today or date.today()
    if tolerance_percent is None:
        tolerance_percent = settings.OVER_RECEIVING_TOLERANCE_PERCENT
    if max_batch_length is None:
        max_batch_length = settings.MAX_BATCH_NUMBER_LENGTH

    lines = list(receiving.received_products)
    violations = validate_header(receiving, today)

    for index, line in enumerate(lines):
        violations.extend(validate_line(
            index, line, today,
            tolerance_percent=tolerance_percent,
            max_batch_length=max_batch_length,
            ordered_products=ordered_products,
        ))

    violations.extend(validate_batch_groups(lines, tolerance_percent))

    if not any((line.received_qty or 0) > 0 for line in lines) and not receiving.zero_receiving_acknowledged:
        violations.append(Violation(
            "receivedProducts",
            "At least one product must have a received quantity, or acknowledge a zero receiving",
            ErrorKind.EMPTY_RECEIVING,
        ))

    violations.extend(validate_documents(receiving.documents))
    return violations


def ensure_valid_receiving(receiving: InvoiceReceiving, **kwargs) -> None:
    """Raise ValidationFailed with every violation, if there are any."""
    violations = validate_receiving(receiving, **kwargs)
    if violations:
        raise ValidationFailed(violations, message="Invoice receiving is invalid")
