# Overview: Service-layer operations for concurrency; transaction retry and row locking helpers.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() makes the locked read overwrite any stale copy of the
    row already sitting in the session identity map.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; writers there are serialized
    by the database lock and guarded by compare-and-swap updates instead.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work with retry on concurrency-related failures.

    The unit (func) does its reads, writes and a single commit. Retries on
    OperationalError (deadlocks, lock timeouts) and StaleDataError (lost
    compare-and-swap / optimistic version races). Any other exception rolls
    the session back and propagates, so a failed unit leaves nothing behind.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info(
                "Retrying unit of work after concurrency conflict",
                extra={"attempt": attempt + 1, "error": type(exc).__name__},
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
