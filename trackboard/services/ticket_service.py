"""Ticket service: CRUD, placement, sub-ticket hierarchy.

Placement: a ticket sits in its board's backlog or in one of the board's
sprints, never both. Every write that touches backlog_id/sprint_id sets
one and clears the other in the same statement.

Hierarchy: parent_id links form a tree on one board. Parent changes walk
the chain upwards (depth-limited, visited set) and reject cycles. Keys
are issued once and never rewritten, whatever happens to the parent.

People and grouping: assignee and reviewer sets are replaced wholesale
and may only name board members; project_id must point at a project of
the ticket's own board.

Each mutation verifies membership and runs as one transaction. Callers
that need more than membership (the HTTP layer requires MEMBER) pass
``min_role``.
"""

import logging

from flask import current_app
from sqlalchemy import and_, func, select

from trackboard import validators
from trackboard.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from trackboard.extensions import db
from trackboard.models.board import Backlog, Board, BoardMember
from trackboard.models.project import Project
from trackboard.models.sprint import Sprint
from trackboard.models.ticket import Ticket, TicketAssignee, TicketReviewer
from trackboard.services import access, audit
from trackboard.services.key_allocator import (
    allocate_sub_ticket_key,
    allocate_ticket_key,
)
from trackboard.services.unit_of_work import transaction

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "title", "description", "type", "priority", "status", "story_points",
    "assignee_id", "parent_id", "backlog_id", "sprint_id", "project_id",
    "percentage", "weight", "assignee_ids", "reviewer_ids",
)

_FIELD_VALIDATORS = {
    "title": validators.ticket_title,
    "description": validators.ticket_description,
    "type": validators.ticket_type,
    "priority": validators.ticket_priority,
    "status": validators.ticket_status,
    "story_points": validators.story_points,
    "percentage": validators.percentage,
    "weight": validators.weight,
}


# ─── Helpers ─────────────────────────────────────────────────────

def _get_ticket_or_404(ticket_id):
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket not found.")
    return ticket


def _board_backlog(board_id):
    backlog = Backlog.query.filter_by(board_id=board_id).first()
    if backlog is None:
        raise NotFoundError("Backlog not found for this board.")
    return backlog


def _resolve_container(board_id, backlog_id=None, sprint_id=None):
    """Validate a target container on ``board_id``.

    Returns (backlog_id, sprint_id) with exactly one set. Defaults to the
    board's backlog when neither is given.
    """
    validators.single_container(backlog_id, sprint_id)

    if sprint_id is not None:
        sprint = db.session.get(Sprint, sprint_id)
        if sprint is None:
            raise NotFoundError("Sprint not found.")
        if sprint.board_id != board_id:
            raise ValidationError("Sprint belongs to a different board.")
        if sprint.status == Sprint.COMPLETED:
            raise InvalidStateError("Cannot place tickets in a completed sprint.")
        return None, sprint.id

    if backlog_id is not None:
        backlog = db.session.get(Backlog, backlog_id)
        if backlog is None:
            raise NotFoundError("Backlog not found.")
        if backlog.board_id != board_id:
            raise ValidationError("Backlog belongs to a different board.")
        return backlog.id, None

    return _board_backlog(board_id).id, None


def _next_order(backlog_id, sprint_id):
    """One past the highest order in the container (1 for an empty one)."""
    query = db.session.query(func.max(Ticket.order))
    if sprint_id is not None:
        query = query.filter(Ticket.sprint_id == sprint_id)
    else:
        query = query.filter(Ticket.backlog_id == backlog_id)
    current = query.scalar()
    return (current or 0) + 1


def _check_assignee(board_id, assignee_id):
    if assignee_id is None:
        return
    _check_members(board_id, [assignee_id], "Assignee")


def _check_members(board_id, user_ids, label):
    if not user_ids:
        return
    found = {
        user_id for (user_id,) in
        db.session.query(BoardMember.user_id).filter(
            BoardMember.board_id == board_id,
            BoardMember.user_id.in_(user_ids),
        )
    }
    if len(found) != len(set(user_ids)):
        raise ValidationError(f"{label} must be a member of this board.")


def _check_project(board_id, project_id):
    if project_id is None:
        return
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found.")
    if project.board_id != board_id:
        raise ValidationError("Project belongs to a different board.")


def _sync_people(ticket_id, model, user_ids):
    """Replace a ticket's assignee or reviewer set."""
    model.query.filter_by(ticket_id=ticket_id).delete(synchronize_session=False)
    for user_id in user_ids:
        db.session.add(model(ticket_id=ticket_id, user_id=user_id))


def _get_parent_on_board(parent_id, board_id):
    parent = db.session.get(Ticket, parent_id)
    if parent is None:
        raise NotFoundError("Parent ticket not found.")
    if parent.board_id != board_id:
        raise ValidationError("Parent ticket belongs to a different board.")
    return parent


def _check_no_cycle(ticket, new_parent):
    """Walk up from new_parent; the ticket must not appear on the way."""
    max_depth = current_app.config["TICKET_HIERARCHY_MAX_DEPTH"]
    visited = set()
    current = new_parent
    depth = 0

    while current is not None:
        if current.id == ticket.id:
            raise InvalidStateError(
                "A ticket cannot be nested under itself or its own sub-tickets."
            )
        if current.id in visited:
            logger.warning("Cycle in ticket hierarchy at %s", current.id)
            raise InvalidStateError("Ticket hierarchy contains a cycle.")
        visited.add(current.id)
        depth += 1
        if depth > max_depth:
            raise InvalidStateError(
                f"Ticket hierarchy cannot be deeper than {max_depth} levels."
            )
        current = (
            db.session.get(Ticket, current.parent_id)
            if current.parent_id else None
        )


def _collect_subtree(root):
    """Ids of root and every descendant (visited-set guarded BFS)."""
    max_depth = current_app.config["TICKET_HIERARCHY_MAX_DEPTH"]
    ids = [root.id]
    seen = {root.id}
    frontier = [root.id]
    depth = 0

    while frontier and depth < max_depth:
        children = [
            child_id for (child_id,) in
            db.session.query(Ticket.id).filter(Ticket.parent_id.in_(frontier))
        ]
        frontier = [c for c in children if c not in seen]
        seen.update(frontier)
        ids.extend(frontier)
        depth += 1
    return ids


def _place(ticket, backlog_id, sprint_id):
    """Set exactly one container and append the ticket at its end."""
    if ticket.backlog_id == backlog_id and ticket.sprint_id == sprint_id:
        return
    ticket.backlog_id = backlog_id
    ticket.sprint_id = sprint_id
    ticket.order = _next_order(backlog_id, sprint_id)


def _validate_fields(fields):
    cleaned = {}
    for key, value in fields.items():
        validate = _FIELD_VALIDATORS.get(key)
        cleaned[key] = validate(value) if validate else value
    return cleaned


# ─── Create ──────────────────────────────────────────────────────

def create_ticket(board_id, user_id, title, description=None, ticket_type="ISSUE",
                  priority="MEDIUM", status="TODO", story_points=None,
                  assignee_id=None, sprint_id=None, backlog_id=None,
                  parent_id=None, project_id=None, percentage=0, weight=1,
                  assignee_ids=None, reviewer_ids=None, min_role=access.VIEWER):
    """Create a ticket with a freshly allocated "{prefix}-{n}" key.

    Args:
        board_id: Board the ticket belongs to.
        user_id: Creator.
        title: 1-200 characters after HTML stripping.
        sprint_id / backlog_id: Target container, at most one. Defaults to
            the board's backlog.
        parent_id: Optional parent ticket on the same board.
        project_id: Optional project on the same board.
        assignee_ids / reviewer_ids: Board members to attach.
        min_role: Minimum board role required of the creator.

    Returns:
        The created Ticket.

    Raises:
        ValidationError: On malformed input or both containers given.
        NotFoundError: If the board, container or parent does not exist.
        ForbiddenError: If the creator is not a member (or below min_role).
        InvalidStateError: If the target sprint is completed.
    """
    title = validators.ticket_title(title)
    description = validators.ticket_description(description)
    ticket_type = validators.ticket_type(ticket_type)
    priority = validators.ticket_priority(priority)
    status = validators.ticket_status(status)
    story_points = validators.story_points(story_points)
    percentage = validators.percentage(percentage)
    weight = validators.weight(weight)
    assignee_ids = validators.user_ids(assignee_ids, "assignee_ids")
    reviewer_ids = validators.user_ids(reviewer_ids, "reviewer_ids")
    validators.single_container(backlog_id, sprint_id)

    with transaction(conflict_message="Ticket key already exists."):
        if db.session.get(Board, board_id) is None:
            raise NotFoundError("Board not found.")
        access.require_role(board_id, user_id, min_role)
        _check_assignee(board_id, assignee_id)
        _check_members(board_id, assignee_ids, "Assignee")
        _check_members(board_id, reviewer_ids, "Reviewer")
        _check_project(board_id, project_id)
        backlog_id, sprint_id = _resolve_container(board_id, backlog_id, sprint_id)
        if parent_id is not None:
            _get_parent_on_board(parent_id, board_id)

        key = allocate_ticket_key(board_id)
        ticket = Ticket(
            key=key,
            board_id=board_id,
            backlog_id=backlog_id,
            sprint_id=sprint_id,
            parent_id=parent_id,
            title=title,
            description=description,
            type=ticket_type,
            priority=priority,
            status=status,
            story_points=story_points,
            order=_next_order(backlog_id, sprint_id),
            creator_id=user_id,
            assignee_id=assignee_id,
            project_id=project_id,
            percentage=percentage,
            weight=weight,
        )
        db.session.add(ticket)
        db.session.flush()
        _sync_people(ticket.id, TicketAssignee, assignee_ids)
        _sync_people(ticket.id, TicketReviewer, reviewer_ids)
        db.session.flush()

        audit.record(
            board_id, user_id, "ticket.created",
            ticket_id=ticket.id, key=key,
        )

    logger.info("Ticket %s created on board %s", key, board_id)
    return ticket


def create_sub_ticket(parent_id, user_id, title, description=None,
                      ticket_type="ISSUE", priority="MEDIUM", story_points=None,
                      assignee_id=None, min_role=access.VIEWER):
    """Create a sub-ticket with a dotted "{parent_key}.{n}" key.

    The sub-ticket starts in the parent's current container and moves
    independently of it afterwards.
    """
    title = validators.ticket_title(title)
    description = validators.ticket_description(description)
    ticket_type = validators.ticket_type(ticket_type)
    priority = validators.ticket_priority(priority)
    story_points = validators.story_points(story_points)

    with transaction(conflict_message="Ticket key already exists."):
        parent = _get_ticket_or_404(parent_id)
        access.require_role(parent.board_id, user_id, min_role)
        _check_assignee(parent.board_id, assignee_id)

        key, parent = allocate_sub_ticket_key(parent_id)
        ticket = Ticket(
            key=key,
            board_id=parent.board_id,
            backlog_id=parent.backlog_id,
            sprint_id=parent.sprint_id,
            parent_id=parent.id,
            title=title,
            description=description,
            type=ticket_type,
            priority=priority,
            status="TODO",
            story_points=story_points,
            order=_next_order(parent.backlog_id, parent.sprint_id),
            creator_id=user_id,
            assignee_id=assignee_id,
        )
        db.session.add(ticket)
        db.session.flush()

        audit.record(
            parent.board_id, user_id, "ticket.created",
            ticket_id=ticket.id, key=key, parent_id=parent.id,
        )

    return ticket


# ─── Update / move / order / delete ──────────────────────────────

def update_ticket(ticket_id, user_id, min_role=access.VIEWER, **fields):
    """Apply a partial update.

    ``backlog_id``/``sprint_id`` behave like move_ticket(): a non-null value
    moves the ticket there and clears the other container; naming both in
    one update is a ValidationError. Null container values are ignored.
    ``parent_id=None`` detaches the ticket from its parent. The key never
    changes.
    """
    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Cannot update ticket field(s): {', '.join(sorted(unknown))}"
        )
    backlog_id = fields.pop("backlog_id", None)
    sprint_id = fields.pop("sprint_id", None)
    validators.single_container(backlog_id, sprint_id)
    people = {}
    for key, model in (("assignee_ids", TicketAssignee),
                       ("reviewer_ids", TicketReviewer)):
        if key in fields:
            people[key] = (model, validators.user_ids(fields.pop(key), key))
    fields = _validate_fields(fields)

    with transaction():
        ticket = _get_ticket_or_404(ticket_id)
        access.require_role(ticket.board_id, user_id, min_role)

        if "assignee_id" in fields:
            _check_assignee(ticket.board_id, fields["assignee_id"])
        if "project_id" in fields:
            _check_project(ticket.board_id, fields["project_id"])
        for key, (model, user_ids) in people.items():
            label = "Assignee" if model is TicketAssignee else "Reviewer"
            _check_members(ticket.board_id, user_ids, label)
            _sync_people(ticket.id, model, user_ids)

        if "parent_id" in fields:
            new_parent_id = fields.pop("parent_id")
            if new_parent_id is None:
                ticket.parent_id = None
            elif new_parent_id != ticket.parent_id:
                new_parent = _get_parent_on_board(new_parent_id, ticket.board_id)
                _check_no_cycle(ticket, new_parent)
                ticket.parent_id = new_parent.id

        changed = sorted([*fields, *people])
        if backlog_id is not None or sprint_id is not None:
            _place(ticket, *_resolve_container(ticket.board_id, backlog_id, sprint_id))
            changed.append("placement")

        for key, value in fields.items():
            setattr(ticket, key, value)
        db.session.flush()

        audit.record(
            ticket.board_id, user_id, "ticket.updated",
            ticket_id=ticket.id, fields=changed,
        )

    return ticket


def move_ticket(ticket_id, user_id, sprint_id=None, backlog_id=None,
                status=None, min_role=access.VIEWER):
    """Move a ticket into exactly one container, optionally changing status.

    Raises:
        ValidationError: If neither or both containers are given.
    """
    if (sprint_id is None) == (backlog_id is None):
        raise ValidationError("Move to exactly one of a sprint or a backlog.")
    if status is not None:
        status = validators.ticket_status(status)

    with transaction():
        ticket = _get_ticket_or_404(ticket_id)
        access.require_role(ticket.board_id, user_id, min_role)
        old_sprint_id, old_backlog_id = ticket.sprint_id, ticket.backlog_id

        _place(ticket, *_resolve_container(ticket.board_id, backlog_id, sprint_id))
        if status is not None:
            ticket.status = status
        db.session.flush()

        audit.record(
            ticket.board_id, user_id, "ticket.moved",
            ticket_id=ticket.id,
            from_sprint_id=old_sprint_id, from_backlog_id=old_backlog_id,
            to_sprint_id=ticket.sprint_id, to_backlog_id=ticket.backlog_id,
        )

    return ticket


def update_order(ticket_id, user_id, order, min_role=access.VIEWER):
    order = validators.ticket_order(order)

    with transaction():
        ticket = _get_ticket_or_404(ticket_id)
        access.require_role(ticket.board_id, user_id, min_role)
        ticket.order = order
        db.session.flush()

    return ticket


def delete_ticket(ticket_id, user_id, min_role=access.VIEWER):
    """Delete a ticket together with all of its sub-tickets.

    Returns:
        Number of tickets deleted.
    """
    with transaction():
        ticket = _get_ticket_or_404(ticket_id)
        board_id, key = ticket.board_id, ticket.key
        access.require_role(board_id, user_id, min_role)

        ids = _collect_subtree(ticket)
        for model in (TicketAssignee, TicketReviewer):
            model.query.filter(model.ticket_id.in_(ids)).delete(
                synchronize_session=False
            )
        Ticket.query.filter(Ticket.id.in_(ids)).delete(synchronize_session=False)

        audit.record(
            board_id, user_id, "ticket.deleted",
            ticket_id=ticket_id, key=key, deleted=len(ids),
        )

    return len(ids)


# ─── Reads ───────────────────────────────────────────────────────

def get_ticket(ticket_id, user_id):
    ticket = _get_ticket_or_404(ticket_id)
    access.verify_membership(ticket.board_id, user_id)
    return ticket


def list_backlog_tickets(backlog_id, user_id):
    backlog = db.session.get(Backlog, backlog_id)
    if backlog is None:
        raise NotFoundError("Backlog not found.")
    access.verify_membership(backlog.board_id, user_id)
    return (
        Ticket.query
        .filter_by(backlog_id=backlog_id)
        .order_by(Ticket.order.asc())
        .all()
    )


def list_sprint_tickets(sprint_id, user_id):
    sprint = db.session.get(Sprint, sprint_id)
    if sprint is None:
        raise NotFoundError("Sprint not found.")
    access.verify_membership(sprint.board_id, user_id)
    return (
        Ticket.query
        .filter_by(sprint_id=sprint_id)
        .order_by(Ticket.order.asc())
        .all()
    )


def get_with_hierarchy(board_id, user_id, include_child_boards=False,
                       sprint_id=None, backlog_id=None, align_sprints=False):
    """List tickets of a board, optionally together with its child boards.

    Args:
        board_id: The board being viewed.
        include_child_boards: Also include the board's immediate children.
        sprint_id: Sprint view. Matches this sprint id literally, unless
            align_sprints is set.
        backlog_id: Backlog view. With child boards this becomes a unified
            backlog: any ticket on the board set that sits in a backlog and
            not in a sprint.
        align_sprints: With child boards, resolve sprint_id to its number
            and include the same-numbered sprint of every board in the set.

    Returns:
        Tickets ordered by ``order``.
    """
    if db.session.get(Board, board_id) is None:
        raise NotFoundError("Board not found.")
    access.verify_membership(board_id, user_id)

    board_ids = [board_id]
    if include_child_boards:
        board_ids.extend(
            child_id for (child_id,) in
            db.session.query(Board.id).filter(Board.parent_board_id == board_id)
        )

    query = Ticket.query.filter(Ticket.board_id.in_(board_ids))

    if sprint_id is not None:
        if include_child_boards and align_sprints:
            sprint = db.session.get(Sprint, sprint_id)
            if sprint is None:
                raise NotFoundError("Sprint not found.")
            aligned = select(Sprint.id).where(
                Sprint.board_id.in_(board_ids),
                Sprint.number == sprint.number,
            )
            query = query.filter(Ticket.sprint_id.in_(aligned))
        else:
            query = query.filter(Ticket.sprint_id == sprint_id)
    elif backlog_id is not None:
        if include_child_boards:
            query = query.filter(
                and_(Ticket.backlog_id.isnot(None), Ticket.sprint_id.is_(None))
            )
        else:
            query = query.filter(Ticket.backlog_id == backlog_id)

    return query.order_by(Ticket.order.asc(), Ticket.key.asc()).all()
