"""Transaction helpers for service-layer mutations.

Every mutating service function runs its store work inside
``transaction()``: one all-or-nothing unit that commits on success and
rolls back on any exception. Store-level uniqueness violations surface
as ConflictError instead of raw IntegrityError.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from trackboard.errors import ConflictError
from trackboard.extensions import db

logger = logging.getLogger(__name__)


@contextmanager
def transaction(conflict_message="A record with this value already exists."):
    """Run the enclosed block as a single transaction on db.session.

    Args:
        conflict_message: Message for the ConflictError raised when the
            store rejects a write on a unique/check constraint.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.info("Integrity violation rolled back: %s", e.orig)
        raise ConflictError(conflict_message) from e
    except Exception:
        db.session.rollback()
        raise


def lock_row(model, pk):
    """SELECT ... FOR UPDATE a single row and refresh it in the session.

    Serializes concurrent writers on the row until the enclosing
    transaction ends. Returns None when the row does not exist.
    """
    stmt = (
        select(model)
        .where(model.id == pk)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.session.execute(stmt).scalar_one_or_none()
