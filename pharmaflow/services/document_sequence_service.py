"""
PO Number Sequence Service

FORMAT:
    PO/<PRINCIPAL_CODE>/<YYYYMMDD>/<NNNN>
    e.g. PO/ACME/20240115/0003  (third PO for principal ACME on 15 Jan 2024)

Sequences restart every day for each normalized principal code. Numbers are allocated with
SELECT FOR UPDATE on the (code, day) row so concurrent requests never
receive the same number.

USAGE:
    from pharmaflow.services.document_sequence_service import DocumentSequenceService

    async def create_po(db: AsyncSession, principal: Principal):
        service = DocumentSequenceService(db)
        po_number = await service.get_next_po_number(principal)
"""
import re
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pharmaflow.models.document_sequence import PONumberSequence
from pharmaflow.models.principal import Principal


PO_PREFIX = "PO"
SEQUENCE_PADDING = 4
SEPARATOR = "/"


def normalize_principal_code(code: str) -> str:
    """Upper-case and strip everything but letters and digits."""
    normalized = re.sub(r"[^A-Za-z0-9]", "", code or "").upper()
    if not normalized:
        raise ValueError(f"Principal code '{code}' has no usable characters")
    return normalized


def format_po_number(principal_code: str, on_date: date, sequence: int) -> str:
    """
    Build a PO number.

    >>> format_po_number("Acme", date(2024, 1, 15), 3)
    'PO/ACME/20240115/0003'
    """
    if sequence < 1:
        raise ValueError("Sequence numbers start at 1")
    return SEPARATOR.join([
        PO_PREFIX,
        normalize_principal_code(principal_code),
        on_date.strftime("%Y%m%d"),
        str(sequence).zfill(SEQUENCE_PADDING),
    ])


class DocumentSequenceService:
    """
    Service for generating atomic PO numbers.

    Uses database-level locking (SELECT FOR UPDATE) to ensure no duplicate
    numbers are generated even under concurrent load.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_next_po_number(self, principal: Principal, on_date: Optional[date] = None) -> str:
        """
        Allocate the next PO number for a principal.

        NOTE: The increment is flushed, not committed. The caller's
        transaction owns it.
        """
        on_date = on_date or date.today()
        sequence = await self._get_or_create_sequence(principal, on_date)
        sequence.current_number += 1
        await self.db.flush()
        return format_po_number(sequence.principal_code, on_date, sequence.current_number)

    async def preview_next_po_number(self, principal: Principal, on_date: Optional[date] = None) -> str:
        """What the next number would be, without allocating it."""
        on_date = on_date or date.today()
        code = normalize_principal_code(principal.code)
        result = await self.db.execute(
            select(PONumberSequence.current_number)
            .where(
                PONumberSequence.principal_code == code,
                PONumberSequence.sequence_date == on_date,
            )
        )
        current = result.scalar_one_or_none() or 0
        return format_po_number(code, on_date, current + 1)

    async def _get_or_create_sequence(self, principal: Principal, on_date: date) -> PONumberSequence:
        """Get the (code, day) sequence row locked for update, creating it if needed."""
        code = normalize_principal_code(principal.code)
        result = await self.db.execute(
            select(PONumberSequence)
            .where(
                PONumberSequence.principal_code == code,
                PONumberSequence.sequence_date == on_date,
            )
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()
        if sequence:
            return sequence

        sequence = PONumberSequence(
            principal_code=code,
            sequence_date=on_date,
            current_number=0,
        )
        self.db.add(sequence)
        await self.db.flush()

        # Re-fetch with lock to ensure atomicity
        result = await self.db.execute(
            select(PONumberSequence)
            .where(PONumberSequence.id == sequence.id)
            .with_for_update()
        )
        return result.scalar_one()
