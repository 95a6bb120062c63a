# Overview: Service-layer operations for document numbering; allocates human-readable numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


PREFIXES = {
    "QUOTE": "Q",
    "ORDER": "ORD",
    "PAYMENT": "PAY",
    "INVOICE": "INV",
}


def next_document_number(document_type: str, *, pad: int = 6) -> str:
    """
    Allocate the next number for a document type inside the caller's transaction.

    The UPDATE takes a row lock on the sequence, so concurrent allocations
    serialize until the surrounding transaction commits. The first allocation
    for a type races on the unique constraint; the loser falls back to the
    UPDATE path under a SAVEPOINT so the caller's work is kept.
    """
    prefix = PREFIXES.get(document_type)
    if prefix is None:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return f"{prefix}-{1:0{pad}d}"
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Could not allocate {document_type} number")

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return f"{prefix}-{current - 1:0{pad}d}"
