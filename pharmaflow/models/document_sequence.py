"""
PO number sequence model.

Numbers are issued per principal code per calendar day:

    PO/<PRINCIPAL_CODE>/<YYYYMMDD>/<NNNN>   e.g. PO/ACME/20240115/0003

One row per (normalized principal code, day) holds the last issued sequence.
Principals whose codes normalize to the same string ("Acme", "AC-ME") share
a row, so the number embedded in the PO stays unique. Rows are locked with
SELECT ... FOR UPDATE while incrementing.
"""
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import String, Integer, Date, DateTime, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pharmaflow.database import Base


class PONumberSequence(Base):
    __tablename__ = "po_number_sequences"
    __table_args__ = (
        UniqueConstraint("principal_code", "sequence_date", name="uq_po_sequence_code_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    principal_code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="Normalized code as it appears in the PO number"
    )
    sequence_date: Mapped[date] = mapped_column(Date, nullable=False)
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
