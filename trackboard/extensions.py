"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import current_app, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
# Identity arrives on every request via the trusted header; no session cookie.
login_manager.session_protection = None
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit; applied per-route
    storage_uri="memory://",
)


@login_manager.request_loader
def load_user_from_request(request):
    """Resolve the caller from the identity provider's trusted header.

    The upstream proxy has already authenticated the request; we only map
    the forwarded user id onto a User row. Imports lazily to avoid circular deps.
    """
    from trackboard.models.user import User

    user_id = request.headers.get(current_app.config["AUTH_USER_HEADER"])
    if not user_id:
        return None
    return db.session.get(User, user_id.strip())


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({
        "error": "unauthorized",
        "message": "Authentication required.",
    }), 401


def write_limit():
    """Per-route limit for create endpoints, read from config at request time."""
    return current_app.config["RATELIMIT_DEFAULT_WRITE"]
