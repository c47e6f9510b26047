# Overview: Unit-of-work and per-product critical sections for ledger writes.

from __future__ import annotations

import threading
from contextlib import contextmanager, ExitStack

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceError
from ..extensions import db


_registry_lock = threading.Lock()
_product_locks: dict[str, threading.RLock] = {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update().populate_existing()


def _lock_for(product_id: str) -> threading.RLock:
    with _registry_lock:
        lock = _product_locks.get(product_id)
        if lock is None:
            lock = threading.RLock()
            _product_locks[product_id] = lock
        return lock


@contextmanager
def product_locks(product_ids):
    """
    Exclusive access to the ledgers of the given products.

    Locks are re-entrant and always taken in sorted id order, so a checkout
    holding several products can call record_movement without deadlocking
    against another writer.
    """
    with ExitStack() as stack:
        for product_id in sorted(set(product_ids)):
            stack.enter_context(_lock_for(product_id))
        yield


@contextmanager
def unit_of_work():
    """
    Commit everything done inside the block, or nothing.

    Storage failures roll back and surface as PersistenceError; business
    errors roll back and propagate unchanged. No retries.
    """
    try:
        yield db.session
        db.session.commit()
    except (SQLAlchemyError, StaleDataError) as exc:
        db.session.rollback()
        raise PersistenceError(
            "Storage write failed; no changes were saved",
            details={"cause": exc.__class__.__name__},
        ) from exc
    except BaseException:
        db.session.rollback()
        raise
