"""
Custom route decorators for access control.

- board_role_required: ensures the caller is logged in AND holds at least
  the given role on the board named by the route's ``board_id``. The
  membership row is stored on ``g.membership``.
"""

from functools import wraps

from flask import g
from flask_login import current_user, login_required

from trackboard.services import access


def board_role_required(min_role=access.VIEWER):
    """Require login + board membership at ``min_role`` or above."""

    def decorator(f):
        @wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            # Raises ForbiddenError; the app-level handler renders it.
            g.membership = access.require_role(
                kwargs["board_id"], current_user.id, min_role
            )
            return f(*args, **kwargs)

        return decorated

    return decorator
