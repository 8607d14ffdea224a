"""Board service: board CRUD, membership management, hierarchy traversal.

Boards form a parent-pointer tree (parent_board_id). The parent is set
at creation only; traversals are still bounded by a depth limit and a
visited set so a corrupted chain can never loop forever.

Mutations run as one transaction each (see unit_of_work.transaction).
"""

import logging

from flask import current_app
from sqlalchemy import select

from trackboard import validators
from trackboard.errors import ForbiddenError, NotFoundError, ValidationError
from trackboard.extensions import db
from trackboard.models.board import Backlog, Board, BoardMember
from trackboard.models.project import Project
from trackboard.models.sprint import Sprint
from trackboard.models.ticket import Ticket, TicketAssignee, TicketReviewer
from trackboard.models.user import User
from trackboard.models.audit import AuditEvent
from trackboard.services import access, audit
from trackboard.services.unit_of_work import transaction

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "color")


def _get_board_or_404(board_id):
    board = db.session.get(Board, board_id)
    if board is None:
        raise NotFoundError("Board not found.")
    return board


# ─── Create / update / delete ────────────────────────────────────

def create_board(user_id, name, prefix, color=None, description=None,
                 parent_board_id=None):
    """Create a board together with its backlog and an OWNER membership.

    Args:
        user_id: Creator's user id; becomes the board OWNER.
        name: Display name, 1-100 characters.
        prefix: Ticket key prefix, 1-5 uppercase letters, unique.
        color: Hex color, defaults to Board.DEFAULT_COLOR.
        description: Optional free text.
        parent_board_id: Optional parent; the creator must be at least
            MEMBER on it.

    Returns:
        The created Board.

    Raises:
        ValidationError: On malformed input.
        NotFoundError: If the parent board does not exist.
        ForbiddenError: If the creator lacks access to the parent board.
        ConflictError: If the prefix is already taken.
    """
    name = validators.board_name(name)
    prefix = validators.board_prefix(prefix)
    color = validators.board_color(color)
    description = validators.board_description(description)

    with transaction(conflict_message="A board with this prefix already exists."):
        if parent_board_id is not None:
            _get_board_or_404(parent_board_id)
            try:
                access.require_role(parent_board_id, user_id, access.MEMBER)
            except ForbiddenError:
                raise ForbiddenError(
                    "You must be a member of the parent board."
                ) from None

        board = Board(
            name=name,
            prefix=prefix,
            color=color,
            description=description,
            parent_board_id=parent_board_id,
            ticket_counter=0,
        )
        db.session.add(board)
        db.session.flush()

        db.session.add(Backlog(board_id=board.id))
        db.session.add(BoardMember(
            board_id=board.id,
            user_id=user_id,
            role=access.OWNER,
        ))
        db.session.flush()

        audit.record(
            board.id, user_id, "board.created",
            prefix=prefix, parent_board_id=parent_board_id,
        )

    logger.info("Board %s (%s) created by %s", board.prefix, board.id, user_id)
    return board


def update_board(board_id, user_id, **fields):
    """Update name, description and/or color. Requires OWNER or ADMIN.

    The prefix is immutable: issued ticket keys are derived from it.
    """
    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Cannot update board field(s): {', '.join(sorted(unknown))}"
        )
    if "name" in fields:
        fields["name"] = validators.board_name(fields["name"])
    if "description" in fields:
        fields["description"] = validators.board_description(fields["description"])
    if "color" in fields:
        if fields["color"] is None:
            raise ValidationError("Color cannot be empty.")
        fields["color"] = validators.board_color(fields["color"])

    with transaction():
        board = _get_board_or_404(board_id)
        access.require_role(board_id, user_id, access.ADMIN)
        for key, value in fields.items():
            setattr(board, key, value)
        db.session.flush()
        audit.record(board_id, user_id, "board.updated", fields=sorted(fields))

    return board


def delete_board(board_id, user_id):
    """Delete a board and everything it owns. Requires OWNER.

    Cascades to tickets, sprints, backlog and members. Child boards are
    detached (they become roots) and the board's audit trail is kept
    with board_id cleared.
    """
    with transaction():
        board = _get_board_or_404(board_id)
        access.require_role(board_id, user_id, access.OWNER)
        prefix = board.prefix

        # Tickets first: they reference the backlog, sprints and projects.
        ticket_ids = select(Ticket.id).where(Ticket.board_id == board_id)
        for model in (TicketAssignee, TicketReviewer):
            model.query.filter(model.ticket_id.in_(ticket_ids)).delete(
                synchronize_session=False
            )
        ticket_count = Ticket.query.filter_by(board_id=board_id).delete(
            synchronize_session=False
        )
        Project.query.filter_by(board_id=board_id).delete(synchronize_session=False)
        Sprint.query.filter_by(board_id=board_id).delete(synchronize_session=False)
        Backlog.query.filter_by(board_id=board_id).delete(synchronize_session=False)
        BoardMember.query.filter_by(board_id=board_id).delete(
            synchronize_session=False
        )
        Board.query.filter_by(parent_board_id=board_id).update(
            {Board.parent_board_id: None}, synchronize_session=False
        )
        AuditEvent.query.filter_by(board_id=board_id).update(
            {AuditEvent.board_id: None}, synchronize_session=False
        )
        Board.query.filter_by(id=board_id).delete(synchronize_session=False)

        audit.record(
            None, user_id, "board.deleted",
            deleted_board_id=board_id, prefix=prefix, tickets_deleted=ticket_count,
        )

    logger.info(
        "Board %s (%s) deleted by %s with %d tickets",
        prefix, board_id, user_id, ticket_count,
    )


# ─── Members ─────────────────────────────────────────────────────

def add_member(board_id, user_id, member_user_id, role="MEMBER"):
    """Add a user to the board. Requires OWNER or ADMIN.

    The OWNER role can never be granted this way.

    Raises:
        NotFoundError: If the board or the user does not exist.
        ForbiddenError: If the caller is below ADMIN, or role is OWNER.
        ConflictError: If the user is already a member.
    """
    role = validators.member_role(role)

    with transaction(conflict_message="User is already a member of this board."):
        _get_board_or_404(board_id)
        access.require_role(board_id, user_id, access.ADMIN)
        if role == access.OWNER:
            raise ForbiddenError("The OWNER role cannot be granted.")
        if db.session.get(User, member_user_id) is None:
            raise NotFoundError("User not found.")

        membership = BoardMember(
            board_id=board_id, user_id=member_user_id, role=role
        )
        db.session.add(membership)
        db.session.flush()
        audit.record(
            board_id, user_id, "board.member_added",
            member_user_id=member_user_id, role=role,
        )

    return membership


def invite_guest(board_id, user_id, email, role="VIEWER"):
    """Add a user to the board by email, creating the user row if needed.

    Requires OWNER or ADMIN. Guests join as VIEWER or MEMBER only; the
    identity provider authenticates them later under the same email.

    Args:
        board_id: Board to join.
        user_id: Inviting user.
        email: Guest email; normalized to lowercase.
        role: VIEWER (default) or MEMBER.

    Returns:
        tuple: (BoardMember, created) where created tells whether a new
        user row was made.

    Raises:
        ValidationError: On a malformed email or a role above MEMBER.
        ForbiddenError: If the caller is below ADMIN.
        ConflictError: If the user is already a member.
    """
    email = validators.email(email)
    role = validators.guest_role(role)

    with transaction(conflict_message="User is already a member of this board."):
        _get_board_or_404(board_id)
        access.require_role(board_id, user_id, access.ADMIN)

        guest = User.query.filter_by(email=email).first()
        created = guest is None
        if created:
            guest = User(email=email, name=email.split("@")[0])
            db.session.add(guest)
            db.session.flush()

        membership = BoardMember(board_id=board_id, user_id=guest.id, role=role)
        db.session.add(membership)
        db.session.flush()
        audit.record(
            board_id, user_id, "board.guest_invited",
            member_user_id=guest.id, role=role, new_user=created,
        )

    logger.info("Guest %s invited to board %s as %s", guest.id, board_id, role)
    return membership, created


def remove_member(board_id, user_id, member_user_id):
    """Remove a member. Requires OWNER or ADMIN; the OWNER cannot be removed."""
    with transaction():
        _get_board_or_404(board_id)
        access.require_role(board_id, user_id, access.ADMIN)

        target = (
            BoardMember.query
            .filter_by(board_id=board_id, user_id=member_user_id)
            .first()
        )
        if target is None:
            raise NotFoundError("Member not found.")
        if target.role == access.OWNER:
            raise ForbiddenError("Cannot remove the board owner.")

        db.session.delete(target)
        db.session.flush()
        audit.record(
            board_id, user_id, "board.member_removed",
            member_user_id=member_user_id,
        )


def update_member_role(board_id, user_id, member_user_id, role):
    """Change a member's role. Requires OWNER; OWNER is never granted or revoked."""
    role = validators.member_role(role)

    with transaction():
        _get_board_or_404(board_id)
        access.require_role(board_id, user_id, access.OWNER)

        target = (
            BoardMember.query
            .filter_by(board_id=board_id, user_id=member_user_id)
            .first()
        )
        if target is None:
            raise NotFoundError("Member not found.")
        if target.role == access.OWNER or role == access.OWNER:
            raise ForbiddenError("Cannot change owner role.")

        old_role = target.role
        target.role = role
        db.session.flush()
        audit.record(
            board_id, user_id, "board.member_role_changed",
            member_user_id=member_user_id, old_role=old_role, new_role=role,
        )

    return target


# ─── Reads ───────────────────────────────────────────────────────

def list_boards(user_id):
    """All boards the user is a member of, most recently updated first."""
    return (
        Board.query
        .join(BoardMember, BoardMember.board_id == Board.id)
        .filter(BoardMember.user_id == user_id)
        .order_by(Board.updated_at.desc(), Board.name)
        .all()
    )


def get_board(board_id, user_id):
    """Load a board the user belongs to.

    Non-members get NotFound rather than Forbidden so board ids do not leak.
    """
    board = (
        Board.query
        .join(BoardMember, BoardMember.board_id == Board.id)
        .filter(Board.id == board_id, BoardMember.user_id == user_id)
        .first()
    )
    if board is None:
        raise NotFoundError("Board not found or you do not have access.")
    return board


def get_children(board_id, user_id):
    """Direct child boards (one level)."""
    _get_board_or_404(board_id)
    access.verify_membership(board_id, user_id)
    return (
        Board.query
        .filter_by(parent_board_id=board_id)
        .order_by(Board.name)
        .all()
    )


def get_hierarchy(board_id, user_id):
    """Return (board, parent_or_None, children)."""
    board = _get_board_or_404(board_id)
    access.verify_membership(board_id, user_id)
    parent = (
        db.session.get(Board, board.parent_board_id)
        if board.parent_board_id else None
    )
    children = (
        Board.query
        .filter_by(parent_board_id=board_id)
        .order_by(Board.name)
        .all()
    )
    return board, parent, children


def get_ancestors(board_id, user_id):
    """Follow parent_board_id up to the root.

    Returns:
        List of Boards ordered root-first, excluding the board itself.
        Empty for a root board.
    """
    board = _get_board_or_404(board_id)
    access.verify_membership(board_id, user_id)
    return walk_ancestors(board)


def walk_ancestors(board):
    max_depth = current_app.config["BOARD_HIERARCHY_MAX_DEPTH"]
    ancestors = []
    visited = {board.id}
    parent_id = board.parent_board_id

    while parent_id is not None:
        if parent_id in visited:
            logger.warning(
                "Cycle in board hierarchy at %s (starting from %s)",
                parent_id, board.id,
            )
            break
        if len(ancestors) >= max_depth:
            logger.warning(
                "Board hierarchy deeper than %d above %s; truncated",
                max_depth, board.id,
            )
            break
        parent = db.session.get(Board, parent_id)
        if parent is None:
            break
        visited.add(parent.id)
        ancestors.append(parent)
        parent_id = parent.parent_board_id

    ancestors.reverse()
    return ancestors
