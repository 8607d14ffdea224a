"""Typed failures raised by the service layer.

Every error carries a machine-readable ``kind`` and a human-readable
``message``. The app factory registers a handler that rolls back the
session and renders these as JSON with ``status_code``.
"""


class TrackerError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.kind, "message": self.message}


class NotFoundError(TrackerError):
    """An id does not resolve to an existing entity."""

    kind = "not_found"
    status_code = 404


class ForbiddenError(TrackerError):
    """No membership, or membership role below the operation's minimum."""

    kind = "forbidden"
    status_code = 403


class ConflictError(TrackerError):
    """Uniqueness violation: duplicate prefix, second active sprint, key collision."""

    kind = "conflict"
    status_code = 409


class InvalidStateError(TrackerError):
    """The entity is not in a state that allows the operation."""

    kind = "invalid_state"
    status_code = 422


class ValidationError(TrackerError):
    """Malformed input, caught before the store is touched."""

    kind = "validation_error"
    status_code = 400
