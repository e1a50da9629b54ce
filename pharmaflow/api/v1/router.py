from fastapi import APIRouter

from pharmaflow.api.v1.endpoints import (
    purchase_orders,
    invoice_receivings,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Procurement ====================
api_router.include_router(
    purchase_orders.router,
    prefix="/purchase-orders",
    tags=["Purchase Orders"]
)

# ==================== Goods Receipt & QC ====================
api_router.include_router(
    invoice_receivings.router,
    prefix="/invoice-receivings",
    tags=["Invoice Receiving"]
)
