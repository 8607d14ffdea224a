"""Audit trail helper.

Adds an AuditEvent to the current transaction. Flushes but does NOT
commit; the enclosing transaction commits.
"""

from trackboard.extensions import db
from trackboard.models.audit import AuditEvent


def record(board_id, actor_user_id, action, **metadata):
    event = AuditEvent(
        board_id=board_id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata,
    )
    db.session.add(event)
    db.session.flush()
    return event
