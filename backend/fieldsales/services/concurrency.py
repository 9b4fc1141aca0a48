# Overview: Transaction scope and row-locking helpers shared by every mutating service.

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import InvalidStateError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the conditional UPDATEs and the Order version counter carry the
    guarantees instead.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    All-or-nothing unit of work on the scoped session.

    Commits on normal exit. Any exception rolls the whole transaction back
    before propagating, so no partial inventory decrement, position write or
    status change survives a failed operation. Nothing here retries; callers
    decide whether to try again.

    A StaleDataError means another transaction changed a versioned row (an
    Order) after we read it; it is reported as InvalidStateError so the caller
    reloads state instead of blindly retrying.
    """
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise InvalidStateError("record was modified concurrently; reload and try again") from exc
    except Exception:
        db.session.rollback()
        raise
