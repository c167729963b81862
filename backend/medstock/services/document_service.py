# Overview: Document number allocation (purchase order numbers).

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import today
from .concurrency import insert_first_writer


def _bump(org_id: int, document_type: str, period: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(org_id=org_id, document_type=document_type, period=period)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    org_id: int,
    document_type: str,
    period: str = "",
) -> int:
    """
    Atomically allocate the next number for an org/type/period.

    Runs inside the caller's transaction (no commit): the number is only
    consumed if the document that uses it commits too. The counter row is
    bumped with a single UPDATE so two writers can never read the same value.
    """
    next_num = _bump(org_id, document_type, period)
    if next_num is not None:
        return next_num

    # First number of the period. A concurrent writer creating the same row
    # wins; the retried unit then finds the row and bumps it.
    insert_first_writer(
        DocumentSequence(org_id=org_id, document_type=document_type, period=period, next_number=2)
    )
    return 1


def next_po_number(org_id: int) -> str:
    """PO-YYYYMMDD-NNNNN, restarting at 00001 every day per organization."""
    day = today().strftime("%Y%m%d")
    number = next_document_number(org_id=org_id, document_type="PURCHASE_ORDER", period=day)
    return f"PO-{day}-{number:05d}"
