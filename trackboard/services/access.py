"""Access guard: board membership and the role hierarchy.

Every mutating service call resolves the caller's membership on the
affected board first; the operation then applies its own minimum role:

    VIEWER(0) < MEMBER(1) < ADMIN(2) < OWNER(3)
"""

from trackboard.errors import ForbiddenError
from trackboard.models.board import BoardMember

VIEWER = "VIEWER"
MEMBER = "MEMBER"
ADMIN = "ADMIN"
OWNER = "OWNER"

ROLE_LEVELS = {role: level for level, role in enumerate(BoardMember.ROLES)}


def role_level(role):
    return ROLE_LEVELS[role]


def verify_membership(board_id, user_id):
    """Return the caller's BoardMember row for the board.

    Raises:
        ForbiddenError: If the user is not a member of the board.
    """
    membership = (
        BoardMember.query
        .filter_by(board_id=board_id, user_id=user_id)
        .first()
    )
    if membership is None:
        raise ForbiddenError("You are not a member of this board.")
    return membership


def require_min_role(membership, role):
    """Raise ForbiddenError unless the membership is at least ``role``."""
    if role_level(membership.role) < role_level(role):
        raise ForbiddenError(f"This action requires {role} role or higher.")
    return membership


def require_role(board_id, user_id, role=VIEWER):
    """verify_membership() followed by require_min_role()."""
    return require_min_role(verify_membership(board_id, user_id), role)
