# Overview: Sequence Generator; collision-free, date-scoped sale and receipt numbers.

"""
Numbers look like TXN-20261018-00001 / RCP-20261018-00001.

The counter for a (kind, date) key is a DocumentSequence row advanced with a
single UPDATE ... SET next_number = next_number + 1, so concurrent callers
on the same date serialize on that row and can never read the same value.
The first caller of a date inserts the row inside a savepoint; losing that
insert race falls back to the UPDATE.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import get_timezone, local_date


class SequenceKind(str, Enum):
    SALE = "SALE"
    RECEIPT = "RECEIPT"


PREFIXES = {
    SequenceKind.SALE: "TXN",
    SequenceKind.RECEIPT: "RCP",
}

PAD = 5


class SequenceError(Exception):
    """Raised when a sequence cannot be advanced."""
    pass


def report_timezone():
    return get_timezone(current_app.config.get("POS_REPORT_TIMEZONE", "UTC"))


def business_date(moment: datetime) -> date:
    """Calendar date of a UTC-naive instant in the reporting timezone."""
    return local_date(moment, report_timezone())


def format_sequence(kind: SequenceKind, on_date: date, number: int) -> str:
    return f"{PREFIXES[kind]}-{on_date:%Y%m%d}-{number:0{PAD}d}"


def _advance(kind: SequenceKind, on_date: date) -> int | None:
    result = db.session.execute(
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == kind.value,
            DocumentSequence.sequence_date == on_date,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=kind.value, sequence_date=on_date)
        .scalar()
    )
    return current - 1


def next_number(kind: SequenceKind, on_date: date) -> int:
    """
    Atomically allocate the next counter value for (kind, on_date).

    Must run inside a write transaction; the caller commits.
    """
    kind = SequenceKind(kind)

    number = _advance(kind, on_date)
    if number is not None:
        return number

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=kind.value, sequence_date=on_date, next_number=2))
        return 1
    except IntegrityError:
        number = _advance(kind, on_date)
        if number is None:
            raise SequenceError(f"Could not allocate {kind.value} number for {on_date.isoformat()}")
        return number


def next_sequence(kind: SequenceKind, on_date: date) -> str:
    """Allocate and render the next identifier, e.g. 'TXN-20261018-00042'."""
    kind = SequenceKind(kind)
    return format_sequence(kind, on_date, next_number(kind, on_date))
