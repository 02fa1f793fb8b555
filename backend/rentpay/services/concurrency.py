# Overview: Service-layer helpers for concurrency; retries and conditional updates.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def conditional_update(model, criteria: list, values: dict) -> int:
    """
    Single UPDATE ... WHERE <criteria> statement; returns the affected row count.

    WHY: Every ledger transition is a compare-and-set. The WHERE clause
    carries the expected prior state, so of two racing writers exactly one
    sees rowcount == 1. Callers treat 0 as "lost the race / wrong state".
    """
    return (
        db.session.query(model)
        .filter(*criteria)
        .update(values, synchronize_session=False)
    )


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
