# Overview: Transaction helpers shared by the ledgers and the sale orchestrator.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current unit of work as a write transaction.

    SQLite only allows one writer, so take the write lock up front
    (BEGIN IMMEDIATE) instead of upgrading mid-transaction, which is where
    SQLite deadlocks. Other databases rely on the row locks taken by the
    conditional UPDATEs themselves.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, busy database) and StaleDataError
    (optimistic locking conflicts). The session is rolled back before every
    retry, so func must redo all of its work from scratch.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            logger.warning("Retrying after %s (attempt %d/%d, sleeping %.2fs)",
                           type(exc).__name__, attempt + 1, attempts, delay)
            time.sleep(delay)
