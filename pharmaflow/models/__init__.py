"""Database models."""
from pharmaflow.models.principal import Principal
from pharmaflow.models.product import Product
from pharmaflow.models.document_sequence import PONumberSequence
from pharmaflow.models.purchase import (
    POStatus,
    DiscountType,
    TaxType,
    PurchaseOrder,
    PurchaseOrderItem,
    POWorkflowHistory,
)
from pharmaflow.models.receiving import (
    ReceivingStatus,
    QCStatus,
    DocumentType,
    InvoiceReceiving,
    ReceivedProductLine,
    ReceivingDocument,
)

__all__ = [
    "Principal",
    "Product",
    "PONumberSequence",
    "POStatus",
    "DiscountType",
    "TaxType",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "POWorkflowHistory",
    "ReceivingStatus",
    "QCStatus",
    "DocumentType",
    "InvoiceReceiving",
    "ReceivedProductLine",
    "ReceivingDocument",
]
