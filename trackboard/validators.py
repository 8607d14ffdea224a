"""Input validation. Runs before any transaction opens.

All free text is sanitized with bleach.clean() to strip HTML tags before
length checks. Every failure raises ValidationError.
"""

import re
from datetime import datetime, timezone

import bleach

from trackboard.errors import ValidationError
from trackboard.models.board import Board, BoardMember
from trackboard.models.project import Project
from trackboard.models.sprint import Sprint
from trackboard.models.ticket import Ticket

PREFIX_RE = re.compile(r"^[A-Z]{1,5}$")
COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Invites never grant more than MEMBER.
GUEST_ROLES = ["VIEWER", "MEMBER"]

BOARD_NAME_MAX = 100
PROJECT_NAME_MAX = 100
BOARD_DESCRIPTION_MAX = 500
SPRINT_NAME_MAX = 100
SPRINT_GOAL_MAX = 500
TICKET_TITLE_MAX = 200
STORY_POINTS_MAX = 100


def sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(text, tags=[], strip=True).strip()


def _bounded_text(value, field, max_length, required=True):
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be a string.")
    value = sanitize(value)
    if not value:
        if required:
            raise ValidationError(f"{field} is required.")
        return None
    if len(value) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters."
        )
    return value


def _choice(value, field, choices):
    if value not in choices:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(choices)}"
        )
    return value


# ─── Boards ──────────────────────────────────────────────────────

def board_name(value):
    return _bounded_text(value, "Board name", BOARD_NAME_MAX)


def board_description(value):
    return _bounded_text(value, "Description", BOARD_DESCRIPTION_MAX, required=False)


def board_prefix(value):
    if not isinstance(value, str) or not PREFIX_RE.fullmatch(value):
        raise ValidationError("Prefix must be 1-5 uppercase letters.")
    return value


def board_color(value):
    if value is None:
        return Board.DEFAULT_COLOR
    if not isinstance(value, str) or not COLOR_RE.fullmatch(value):
        raise ValidationError("Color must be a hex value like #FFB7C5.")
    return value


def member_role(value):
    return _choice(value, "role", BoardMember.ROLES)


def guest_role(value):
    return _choice(value, "role", GUEST_ROLES)


def email(value):
    if not isinstance(value, str):
        raise ValidationError("Email is required.")
    value = value.lower().strip()
    if not EMAIL_RE.fullmatch(value) or len(value) > 255:
        raise ValidationError("Invalid email address.")
    return value


# ─── Projects ────────────────────────────────────────────────────

def project_name(value):
    return _bounded_text(value, "Project name", PROJECT_NAME_MAX)


def project_color(value):
    if value is None:
        return Project.DEFAULT_COLOR
    return board_color(value)


# ─── Sprints ─────────────────────────────────────────────────────

def as_utc(value):
    """Normalize a datetime (or ISO-8601 string) to an aware UTC datetime.

    SQLite hands back naive datetimes even for timezone-aware columns, so
    naive values are taken to be UTC.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid date '{value}'.") from None
    if not isinstance(value, datetime):
        raise ValidationError("Dates must be ISO-8601 datetimes.")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sprint_dates(start_date, end_date):
    start, end = as_utc(start_date), as_utc(end_date)
    if end <= start:
        raise ValidationError("End date must be after start date.")
    return start, end


def sprint_name(value):
    return _bounded_text(value, "Sprint name", SPRINT_NAME_MAX)


def sprint_goal(value):
    return _bounded_text(value, "Goal", SPRINT_GOAL_MAX, required=False)


def flag(value, field):
    """Accept only real booleans; the string "false" is rejected."""
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false.")
    return value


def completion_policy(value):
    return _choice(value, "policy", Sprint.COMPLETION_POLICIES)


# ─── Tickets ─────────────────────────────────────────────────────

def ticket_title(value):
    return _bounded_text(value, "Title", TICKET_TITLE_MAX)


def ticket_description(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("Description must be a string.")
    return sanitize(value)


def ticket_status(value):
    return _choice(value, "status", Ticket.STATUSES)


def ticket_type(value):
    return _choice(value, "type", Ticket.TYPES)


def ticket_priority(value):
    return _choice(value, "priority", Ticket.PRIORITIES)


def story_points(value):
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Story points must be an integer.")
    if not 0 <= value <= STORY_POINTS_MAX:
        raise ValidationError(
            f"Story points must be between 0 and {STORY_POINTS_MAX}."
        )
    return value


def ticket_order(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Order must be an integer.")
    return value


def _int_between(value, field, low, high):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer.")
    if not low <= value <= high:
        raise ValidationError(f"{field} must be between {low} and {high}.")
    return value


def percentage(value):
    return _int_between(value, "Percentage", 0, 100)


def weight(value):
    return _int_between(value, "Weight", 1, 100)


def user_ids(value, field):
    """A list of user id strings, de-duplicated in order."""
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field} must be a list of user ids.")
    return list(dict.fromkeys(value))


def single_container(backlog_id, sprint_id):
    """A single call may target the backlog or a sprint, never both."""
    if backlog_id is not None and sprint_id is not None:
        raise ValidationError(
            "A ticket can be placed in a backlog or a sprint, not both."
        )
