"""Key allocator: human-readable ticket identifiers.

- Board tickets:  "{prefix}-{n}", n taken from Board.ticket_counter.
- Sub-tickets:    "{parent_key}.{m}", m = next suffix under that parent.

Both functions run inside the caller's transaction and trust the caller
for access control. Keys are never reassigned or recycled.
"""

from sqlalchemy import func, select, update

from trackboard.errors import NotFoundError
from trackboard.extensions import db
from trackboard.models.board import Board
from trackboard.models.ticket import Ticket
from trackboard.services.unit_of_work import lock_row


def allocate_ticket_key(board_id):
    """Bump the board's counter in the database and return the new key.

    The increment is a single UPDATE (taking the row's write lock until
    commit), and the value is read back inside the same transaction, so
    concurrent callers on one board serialize and never share a number.

    Raises:
        NotFoundError: If the board does not exist.
    """
    result = db.session.execute(
        update(Board)
        .where(Board.id == board_id)
        .values(ticket_counter=Board.ticket_counter + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Board not found.")

    prefix, counter = db.session.execute(
        select(Board.prefix, Board.ticket_counter).where(Board.id == board_id)
    ).one()
    return f"{prefix}-{counter}"


def allocate_sub_ticket_key(parent_id):
    """Lock the parent ticket and return (key, parent) for its next child.

    The suffix is the number of direct children plus one. The parent also
    remembers the highest suffix it ever issued, so removing or
    re-parenting a child can never make a suffix come round again.

    Raises:
        NotFoundError: If the parent ticket does not exist.
    """
    parent = lock_row(Ticket, parent_id)
    if parent is None:
        raise NotFoundError("Parent ticket not found.")

    child_count = db.session.execute(
        select(func.count(Ticket.id)).where(Ticket.parent_id == parent.id)
    ).scalar_one()
    suffix = max(child_count, parent.sub_ticket_counter or 0) + 1
    parent.sub_ticket_counter = suffix
    db.session.flush()

    return f"{parent.key}.{suffix}", parent
