"""Sprint service: the sprint state machine.

    PLANNED -> ACTIVE -> COMPLETED (terminal)

A sprint may also be created directly ACTIVE (auto_start). Creating an
auto-started sprint while another one is ACTIVE runs three named steps
in one transaction:

    1. close previous sprint   (ACTIVE -> COMPLETED)
    2. open new sprint         (inserted ACTIVE, next number)
    3. migrate tickets         (every non-DONE ticket of the previous
                                sprint now points at the new one)

DONE tickets stay on the completed sprint as its historical record.

"At most one ACTIVE sprint per board" is re-validated inside the writing
transaction with the board row locked, and backed by a partial unique
index on sprints(board_id) WHERE status = 'ACTIVE'.
"""

import logging

from sqlalchemy import func, select, update

from trackboard import validators
from trackboard.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from trackboard.extensions import db
from trackboard.models.board import Backlog, Board
from trackboard.models.sprint import Sprint
from trackboard.models.ticket import Ticket
from trackboard.services import access, audit
from trackboard.services.unit_of_work import lock_row, transaction

logger = logging.getLogger(__name__)

ACTIVE_CONFLICT = "Another sprint is already active on this board."


# ─── Helpers ─────────────────────────────────────────────────────

def _get_sprint_or_404(sprint_id):
    sprint = db.session.get(Sprint, sprint_id)
    if sprint is None:
        raise NotFoundError("Sprint not found.")
    return sprint


def _lock_board(board_id):
    board = lock_row(Board, board_id)
    if board is None:
        raise NotFoundError("Board not found.")
    return board


def _active_sprint(board_id, exclude_id=None):
    query = Sprint.query.filter_by(board_id=board_id, status=Sprint.ACTIVE)
    if exclude_id is not None:
        query = query.filter(Sprint.id != exclude_id)
    return query.first()


def _transition(sprint, target):
    if not sprint.can_transition_to(target):
        raise InvalidStateError(
            f"Cannot move sprint from {sprint.status} to {target}."
        )
    sprint.status = target


def _unfinished(sprint_id):
    return Ticket.query.filter(
        Ticket.sprint_id == sprint_id,
        Ticket.status != Ticket.DONE,
    )


def _migrate_unfinished(from_sprint_id, to_sprint_id):
    """Point every non-DONE ticket of one sprint at another. Returns the count."""
    return _unfinished(from_sprint_id).update(
        {Ticket.sprint_id: to_sprint_id, Ticket.backlog_id: None},
        synchronize_session=False,
    )


def _return_to_backlog(query, backlog_id):
    return query.update(
        {Ticket.sprint_id: None, Ticket.backlog_id: backlog_id},
        synchronize_session=False,
    )


def _next_sprint_number(board_id):
    """Bump the board's sprint counter in the database and return it.

    Numbers of deleted sprints are never issued again. The UPDATE also
    holds the board's write lock until commit, so concurrent creators on
    one board run one after the other.
    """
    db.session.execute(
        update(Board)
        .where(Board.id == board_id)
        .values(sprint_counter=Board.sprint_counter + 1)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(
        select(Board.sprint_counter).where(Board.id == board_id)
    ).scalar_one()


def _board_backlog_id(board_id):
    backlog = Backlog.query.filter_by(board_id=board_id).first()
    if backlog is None:
        raise NotFoundError("Backlog not found for this board.")
    return backlog.id


# ─── Create ──────────────────────────────────────────────────────

def create_sprint(board_id, user_id, name, start_date, end_date, goal=None,
                  auto_start=True, min_role=access.VIEWER):
    """Create the next numbered sprint on a board.

    Args:
        board_id: Board the sprint belongs to.
        user_id: Acting user; must be a board member.
        name: 1-100 characters.
        start_date / end_date: datetimes (or ISO strings), end > start.
        goal: Optional, up to 500 characters.
        auto_start: Create the sprint ACTIVE. An already ACTIVE sprint is
            completed and its unfinished tickets migrate to the new one.
        min_role: Minimum board role required of the caller.

    Returns:
        The created Sprint.

    Raises:
        ValidationError: On malformed input.
        NotFoundError: If the board does not exist.
        ForbiddenError: If the caller is not a member.
        ConflictError: If a concurrent writer took the number or the
            active slot first.
    """
    name = validators.sprint_name(name)
    goal = validators.sprint_goal(goal)
    start_date, end_date = validators.sprint_dates(start_date, end_date)
    auto_start = validators.flag(auto_start, "auto_start")

    with transaction(conflict_message=ACTIVE_CONFLICT if auto_start
                     else "Sprint with this number already exists."):
        _lock_board(board_id)
        access.require_role(board_id, user_id, min_role)

        next_number = _next_sprint_number(board_id)

        # Step 1: close previous sprint
        previous = _active_sprint(board_id) if auto_start else None
        if previous is not None:
            _transition(previous, Sprint.COMPLETED)
            db.session.flush()

        # Step 2: open new sprint
        sprint = Sprint(
            board_id=board_id,
            number=next_number,
            name=name,
            goal=goal,
            start_date=start_date,
            end_date=end_date,
            status=Sprint.ACTIVE if auto_start else Sprint.PLANNED,
        )
        db.session.add(sprint)
        db.session.flush()

        # Step 3: migrate tickets
        migrated = 0
        if previous is not None:
            migrated = _migrate_unfinished(previous.id, sprint.id)
            audit.record(
                board_id, user_id, "sprint.completed",
                sprint_id=previous.id, number=previous.number,
                policy="auto-migrate", moved=migrated,
            )

        audit.record(
            board_id, user_id, "sprint.created",
            sprint_id=sprint.id, number=next_number, status=sprint.status,
        )

    if previous is not None:
        logger.info(
            "Sprint #%d on board %s auto-completed; %d tickets migrated to #%d",
            previous.number, board_id, migrated, next_number,
        )
    return sprint


# ─── Transitions ─────────────────────────────────────────────────

def start_sprint(sprint_id, user_id, min_role=access.VIEWER):
    """PLANNED -> ACTIVE.

    Raises:
        InvalidStateError: If the sprint is not PLANNED.
        ConflictError: If another sprint on the board is ACTIVE.
    """
    with transaction(conflict_message=ACTIVE_CONFLICT):
        sprint = _get_sprint_or_404(sprint_id)
        access.require_role(sprint.board_id, user_id, min_role)

        # Serialize activations on this board, then re-check under the lock.
        _lock_board(sprint.board_id)
        sprint = lock_row(Sprint, sprint_id)
        if sprint.status != Sprint.PLANNED:
            raise InvalidStateError("Only planned sprints can be started.")
        if _active_sprint(sprint.board_id, exclude_id=sprint.id) is not None:
            raise ConflictError(ACTIVE_CONFLICT)

        _transition(sprint, Sprint.ACTIVE)
        db.session.flush()
        audit.record(
            sprint.board_id, user_id, "sprint.started",
            sprint_id=sprint.id, number=sprint.number,
        )

    logger.info("Sprint %s started", sprint_id)
    return sprint


def complete_sprint(sprint_id, user_id, policy="backlog", target_sprint_id=None,
                    min_role=access.VIEWER):
    """ACTIVE -> COMPLETED, redistributing unfinished tickets.

    Args:
        policy: What happens to tickets whose status is not DONE:
            "backlog"    : back to the board's backlog;
            "next-sprint": into ``target_sprint_id``;
            "keep"       : stay attached to the completed sprint.
            DONE tickets never move.
        target_sprint_id: Required for "next-sprint"; another sprint of the
            same board that is not COMPLETED.

    Returns:
        Tuple of (sprint, number_of_tickets_moved).
    """
    policy = validators.completion_policy(policy)
    if policy == "next-sprint":
        if not target_sprint_id:
            raise ValidationError("target_sprint_id is required for next-sprint.")
        if target_sprint_id == sprint_id:
            raise ValidationError("A sprint cannot hand its tickets to itself.")

    with transaction():
        sprint = _get_sprint_or_404(sprint_id)
        access.require_role(sprint.board_id, user_id, min_role)
        sprint = lock_row(Sprint, sprint_id)
        if sprint.status == Sprint.COMPLETED:
            raise InvalidStateError("Sprint is already completed.")
        _transition(sprint, Sprint.COMPLETED)
        db.session.flush()

        moved = 0
        if policy == "backlog":
            moved = _return_to_backlog(
                _unfinished(sprint.id), _board_backlog_id(sprint.board_id)
            )
        elif policy == "next-sprint":
            target = _get_sprint_or_404(target_sprint_id)
            if target.board_id != sprint.board_id:
                raise ValidationError("Target sprint belongs to a different board.")
            if target.status == Sprint.COMPLETED:
                raise InvalidStateError("Target sprint is already completed.")
            moved = _migrate_unfinished(sprint.id, target.id)

        audit.record(
            sprint.board_id, user_id, "sprint.completed",
            sprint_id=sprint.id, number=sprint.number,
            policy=policy, moved=moved, target_sprint_id=target_sprint_id,
        )

    logger.info(
        "Sprint %s completed (policy=%s, %d tickets moved)",
        sprint_id, policy, moved,
    )
    return sprint, moved


# ─── Update / delete ─────────────────────────────────────────────

def update_sprint(sprint_id, user_id, min_role=access.VIEWER, **fields):
    """Update name, goal, start_date and/or end_date.

    Dates are checked against each other after merging with the stored ones.
    """
    allowed = {"name", "goal", "start_date", "end_date"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(
            f"Cannot update sprint field(s): {', '.join(sorted(unknown))}"
        )
    if "name" in fields:
        fields["name"] = validators.sprint_name(fields["name"])
    if "goal" in fields:
        fields["goal"] = validators.sprint_goal(fields["goal"])
    for key in ("start_date", "end_date"):
        if key in fields:
            fields[key] = validators.as_utc(fields[key])

    with transaction():
        sprint = _get_sprint_or_404(sprint_id)
        access.require_role(sprint.board_id, user_id, min_role)

        validators.sprint_dates(
            fields.get("start_date", sprint.start_date),
            fields.get("end_date", sprint.end_date),
        )
        for key, value in fields.items():
            setattr(sprint, key, value)
        db.session.flush()
        audit.record(
            sprint.board_id, user_id, "sprint.updated",
            sprint_id=sprint.id, fields=sorted(fields),
        )

    return sprint


def delete_sprint(sprint_id, user_id, min_role=access.VIEWER):
    """Delete a sprint after returning all of its tickets to the backlog.

    Returns:
        Number of tickets moved to the backlog.
    """
    with transaction():
        sprint = _get_sprint_or_404(sprint_id)
        board_id, number = sprint.board_id, sprint.number
        access.require_role(board_id, user_id, min_role)

        moved = _return_to_backlog(
            Ticket.query.filter(Ticket.sprint_id == sprint_id),
            _board_backlog_id(board_id),
        )
        Sprint.query.filter_by(id=sprint_id).delete(synchronize_session=False)
        audit.record(
            board_id, user_id, "sprint.deleted",
            sprint_id=sprint_id, number=number, moved=moved,
        )

    logger.info("Sprint %s deleted; %d tickets returned to backlog", sprint_id, moved)
    return moved


# ─── Reads ───────────────────────────────────────────────────────

def list_sprints(board_id, user_id):
    if db.session.get(Board, board_id) is None:
        raise NotFoundError("Board not found.")
    access.verify_membership(board_id, user_id)
    return (
        Sprint.query
        .filter_by(board_id=board_id)
        .order_by(Sprint.number.desc())
        .all()
    )


def get_current_sprint(board_id, user_id):
    """The board's ACTIVE sprint, or None."""
    if db.session.get(Board, board_id) is None:
        raise NotFoundError("Board not found.")
    access.verify_membership(board_id, user_id)
    return _active_sprint(board_id)


def get_sprint(sprint_id, user_id):
    sprint = _get_sprint_or_404(sprint_id)
    access.verify_membership(sprint.board_id, user_id)
    return sprint


def get_sprint_progress(sprint_id, user_id):
    """Ticket counts and story point totals for a sprint.

    Returns:
        dict with total, per-status counts, total_points, completed_points,
        completion_percentage and points_completion_percentage.
    """
    sprint = get_sprint(sprint_id, user_id)
    rows = (
        db.session.query(
            Ticket.status,
            func.count(Ticket.id),
            func.coalesce(func.sum(Ticket.story_points), 0),
        )
        .filter(Ticket.sprint_id == sprint.id)
        .group_by(Ticket.status)
        .all()
    )
    counts = {status: 0 for status in Ticket.STATUSES}
    points = {status: 0 for status in Ticket.STATUSES}
    for status, count, point_sum in rows:
        counts[status] = count
        points[status] = int(point_sum)

    total = sum(counts.values())
    total_points = sum(points.values())
    completed = counts[Ticket.DONE]
    completed_points = points[Ticket.DONE]

    return {
        "total": total,
        "todo": counts["TODO"],
        "in_progress": counts["IN_PROGRESS"],
        "in_review": counts["IN_REVIEW"],
        "completed": completed,
        "total_points": total_points,
        "completed_points": completed_points,
        "completion_percentage": round(completed * 100 / total) if total else 0,
        "points_completion_percentage": (
            round(completed_points * 100 / total_points) if total_points else 0
        ),
    }
