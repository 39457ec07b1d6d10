# Overview: Service-layer operations for document numbers; allocates ORD-/RET-/INV- identifiers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow
from .errors import ConflictError, InvalidArgumentError


MAX_NUMBER_PER_YEAR = 99999

ORDER_PREFIX = "ORD"
RETURN_PREFIX = "RET"
INVOICE_PREFIX = "INV"


def _increment(document_type: str, year: int) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, year=year)
        .scalar()
    )
    return current - 1


def next_document_number(document_type: str, prefix: str, *, year: int | None = None) -> str:
    """
    Allocate the next number for (document_type, year) as PREFIX-YYYY-NNNNN.

    Must run inside the caller's write transaction: the UPDATE takes the
    sequence row lock and holds it until the caller commits, so a rolled back
    caller gives its number back. The first number of a year inserts the row
    under a savepoint; losing that race to a concurrent creator falls back to
    incrementing the winner's row.
    """
    if not document_type:
        raise InvalidArgumentError("document_type is required")
    if not prefix:
        raise InvalidArgumentError("prefix is required")

    year = year or utcnow().year

    number = _increment(document_type, year)
    if number is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, year=year, next_number=2))
            number = 1
        except IntegrityError:
            number = _increment(document_type, year)
            if number is None:
                raise ConflictError(
                    "Document sequence could not be initialized",
                    details={"document_type": document_type, "year": year},
                )

    if number > MAX_NUMBER_PER_YEAR:
        raise ConflictError(
            f"{prefix} numbers for {year} are exhausted",
            details={"document_type": document_type, "year": year},
        )

    return f"{prefix}-{year:04d}-{number:05d}"
