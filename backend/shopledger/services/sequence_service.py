# Overview: Service-layer operations for document numbering; allocates PREFIX-YYYYMMDD-NNNN identifiers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from shopledger.time_utils import business_day


def next_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 4,
    day: str | None = None,
) -> str:
    """
    Atomically allocate the next document number for a type and day.

    Runs inside the caller's transaction (no commit): if the caller's unit
    rolls back, the allocation rolls back with it. The first allocation of a
    day inserts the counter row inside a savepoint; losing that insert race
    falls back to the increment.
    """
    if not document_type:
        raise ValidationError("document_type is required")
    if not prefix:
        raise ValidationError("prefix is required")
    day = day or business_day()

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.day == day,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, day=day, next_number=2))
            return f"{prefix}-{day}-{1:0{pad}d}"
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, day=day)
        .scalar()
    )
    return f"{prefix}-{day}-{current - 1:0{pad}d}"
