"""Principal (manufacturer / supplier) model."""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pharmaflow.database import Base


class Principal(Base):
    """
    A manufacturer or supplier that purchase orders are raised against.

    The `code` is embedded in every PO number issued to the principal.
    """
    __tablename__ = "principals"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True,
        comment="Short code used in PO numbers, e.g. ACME"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cc_emails: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    gstin: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Principal(code='{self.code}', name='{self.name}')>"
