# Overview: Retry helpers for optimistic-lock and lock-contention failures.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from warranty.errors import ConflictingTransition, StoreUnavailable


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locked database, deadlock) and StaleDataError
    (version_id mismatch). After the last attempt the failure is surfaced as
    ConflictingTransition or StoreUnavailable.
    """
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConflictingTransition(
                    "Row was modified concurrently", attempts=attempts
                ) from exc
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise StoreUnavailable(
                    "Database unavailable", attempts=attempts, cause=str(exc.orig)
                ) from exc
        time.sleep(backoff_base * (2 ** attempt))
    raise ValueError("attempts must be >= 1")


def commit_session() -> None:
    """
    Commit the current unit of work, rolling back on any failure.

    StaleDataError -> ConflictingTransition, OperationalError ->
    StoreUnavailable. Anything else is re-raised unchanged.
    """
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictingTransition("Row was modified concurrently") from exc
    except OperationalError as exc:
        db.session.rollback()
        raise StoreUnavailable("Database unavailable", cause=str(exc.orig)) from exc
    except Exception:
        db.session.rollback()
        raise
