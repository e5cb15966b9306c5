# Overview: Document number allocation (DEL/ISS/TRF/NCR per year, PRF/PO per location and day).

from __future__ import annotations

import re
from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import DocumentSequence, Location
from stockms.time_utils import format_document_date, today


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def sanitize_location_name(name: str) -> str:
    """Upper-case, whitespace to '-', keep [A-Z0-9-], max 20 chars."""
    cleaned = re.sub(r"\s+", "-", (name or "").strip().upper())
    cleaned = re.sub(r"[^A-Z0-9-]", "", cleaned)
    return cleaned[:20]


def _allocate(document_type: str, scope: str) -> int:
    """
    Atomically allocate the next counter value for (document_type, scope).

    Runs in the caller's transaction: the UPDATE takes the row lock. Two
    writers racing on the first number of a scope collide on the unique
    constraint; the loser rolls back and raises StaleDataError so the
    caller's run_with_retry replays the whole operation.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.scope == scope,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        seq = DocumentSequence(document_type=document_type, scope=scope, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise StaleDataError(f"{document_type} sequence for {scope} was created concurrently")
        return 1

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, scope=scope)
        .scalar()
    )
    return current - 1


def next_document_number(*, document_type: str, scope: str, prefix: str, pad: int = 3) -> str:
    """
    Allocate '{prefix}-{NNN}'.

    Example: next_document_number(document_type="DELIVERY", scope="2026",
    prefix="DEL-2026") -> "DEL-2026-001".
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not scope:
        raise DocumentSequenceError("scope is required")

    number = _allocate(document_type, scope)
    return f"{prefix}-{number:0{pad}d}"


def next_yearly_number(document_type: str, code: str, on: date | None = None) -> str:
    """DEL-2026-001, ISS-2026-001, TRF-2026-001, NCR-2026-001."""
    year = str((on or today()).year)
    return next_document_number(document_type=document_type, scope=year, prefix=f"{code}-{year}")


def next_location_number(document_type: str, code: str, location_id: int, on: date | None = None) -> str:
    """PRF-MAIN-KITCHEN-05-Mar-2026-01 style numbers, sequenced per location and day."""
    location = db.session.get(Location, location_id)
    if not location:
        raise DocumentSequenceError(f"Location {location_id} not found")

    prefix = f"{code}-{sanitize_location_name(location.name)}-{format_document_date(on)}"
    return next_document_number(
        document_type=document_type,
        scope=f"{location_id}:{format_document_date(on)}",
        prefix=prefix,
        pad=2,
    )
