from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ledger.errors import ApiError
from ledger.settings import get_settings

logger = logging.getLogger("ledger.transactions")

T = TypeVar("T")

_REGISTRY_LOCK = threading.Lock()
# (user_id, day) -> [lock, holders]; entries are dropped once nobody waits on them.
_USER_DAY_LOCKS: dict[tuple[int, date], list] = {}


@contextmanager
def user_day_lock(user_id: int, day_date: date) -> Iterator[None]:
    key = (user_id, day_date)
    with _REGISTRY_LOCK:
        entry = _USER_DAY_LOCKS.setdefault(key, [threading.Lock(), 0])
        entry[1] += 1
    lock: threading.Lock = entry[0]
    try:
        with lock:
            yield
    finally:
        with _REGISTRY_LOCK:
            entry[1] -= 1
            if entry[1] == 0:
                _USER_DAY_LOCKS.pop(key, None)


def run_in_transaction(db: Session, operation: Callable[[], T], *, name: str) -> T:
    """Run `operation` and commit once, retrying transient storage failures.

    Domain errors roll back and propagate untouched. `operation` must be safe to
    run again from scratch after a rollback.
    """
    settings = get_settings()
    attempts = max(1, int(settings.transaction_retry_attempts))
    backoff = max(0.0, float(settings.transaction_retry_backoff_seconds))

    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            db.commit()
            return result
        except ApiError:
            db.rollback()
            raise
        except (OperationalError, IntegrityError) as exc:
            db.rollback()
            if attempt >= attempts:
                logger.error(
                    "transaction_retries_exhausted",
                    extra={"operation": name, "attempts": attempt, "error": exc.__class__.__name__},
                )
                raise ApiError(
                    status_code=503,
                    code="STORAGE_UNAVAILABLE",
                    message="Storage is temporarily unavailable. Retry the request.",
                ) from exc
            logger.warning(
                "transaction_retry",
                extra={"operation": name, "attempt": attempt, "error": exc.__class__.__name__},
            )
            time.sleep(backoff * attempt)
        except Exception:
            db.rollback()
            raise

    raise AssertionError("unreachable")
