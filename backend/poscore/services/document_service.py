# Overview: Service-layer operations for per-store document numbering.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence

DOCUMENT_PREFIXES = {
    "SALES_INVOICE": "INV",
    "PURCHASE_INVOICE": "PUR",
    "STOCK_TRANSFER": "TRF",
}


class DocumentSequenceError(Exception):
    """Raised for document sequence errors."""


def next_document_number(*, store_id: int, document_type: str, pad: int = 6) -> str:
    """
    Allocate the next document number for a store/type.

    Runs inside the caller's write transaction so a rolled-back document
    gives its number back. The UPDATE takes the row lock; the first number
    for a store/type inserts the sequence row instead.
    """
    if not store_id:
        raise DocumentSequenceError("store_id is required")
    prefix = DOCUMENT_PREFIXES.get(document_type)
    if prefix is None:
        raise DocumentSequenceError(f"Unknown document type {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(store_id=store_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(DocumentSequence(store_id=store_id, document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{store_id:03d}-{next_num:0{pad}d}"
