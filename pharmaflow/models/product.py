"""Product master (minimal, referenced by PO and receiving lines)."""
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Boolean, ForeignKey, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pharmaflow.database import Base


class Product(Base):
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    principal_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("principals.id", ondelete="SET NULL"),
        nullable=True
    )
    unit: Mapped[str] = mapped_column(String(20), default="PCS")
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("12"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<Product(code='{self.code}')>"
