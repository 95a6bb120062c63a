# Overview: Row locking and retry helpers shared by every lifecycle service.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConcurrencyConflictError, DependencyUnavailableError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id column on locked models still catches lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work as a single transaction with retry on concurrency failures.

    - Any exception rolls the session back before propagating, so a failed
      operation never leaves partial state behind.
    - StaleDataError (optimistic version check) and OperationalError (locks,
      deadlocks, dropped connections) are retried with exponential backoff.
    - Once the budget is spent they surface as ConcurrencyConflictError and
      DependencyUnavailableError respectively.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            logger.warning("Optimistic lock conflict (attempt %s/%s): %s", attempt + 1, attempts, exc)
            if attempt >= attempts - 1:
                raise ConcurrencyConflictError(
                    "Entity was modified concurrently; retry the operation",
                ) from exc
        except OperationalError as exc:
            db.session.rollback()
            logger.warning("Database operational error (attempt %s/%s): %s", attempt + 1, attempts, exc)
            if attempt >= attempts - 1:
                raise DependencyUnavailableError("Persistence layer unavailable") from exc
        except Exception:
            db.session.rollback()
            raise
        time.sleep(backoff_base * (2 ** attempt))

    raise DependencyUnavailableError("Retry budget exhausted")
