# Overview: Service-layer operations for concurrency; row locks, write transactions, and retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StoreError, StockLockTimeout
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the current transaction as a write transaction.

    On SQLite this issues BEGIN IMMEDIATE so the database write lock is taken
    up front (bounded by the connection busy timeout) instead of being upgraded
    mid-transaction. Other dialects rely on row locks and conditional updates.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks, deadlocks) and StaleDataError
    (optimistic version conflicts). Any other exception rolls the session back
    and propagates unchanged, so a failed operation never leaves partial writes
    pending. Exhausted lock retries surface as StockLockTimeout.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Giving up after %d attempts on concurrent write: %s", attempts, exc
                )
                if isinstance(exc, OperationalError) and "lock" in str(exc).lower():
                    raise StockLockTimeout(
                        "Timed out waiting for the stock lock; retry the request",
                        details={"attempts": attempts},
                    ) from exc
                raise StoreError(
                    "Store operation failed after retries",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
