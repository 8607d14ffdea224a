"""JSON shapes for API responses, plus small request parsing helpers."""

from flask import request

from trackboard.errors import ValidationError
from trackboard.validators import as_utc


def _iso(value):
    return as_utc(value).isoformat() if value else None


def board_dict(board):
    return {
        "id": board.id,
        "name": board.name,
        "description": board.description,
        "prefix": board.prefix,
        "color": board.color,
        "parent_board_id": board.parent_board_id,
        "ticket_counter": board.ticket_counter,
        "backlog_id": board.backlog.id if board.backlog else None,
        "created_at": _iso(board.created_at),
        "updated_at": _iso(board.updated_at),
    }


def member_dict(member):
    return {
        "user_id": member.user_id,
        "board_id": member.board_id,
        "role": member.role,
        "email": member.user.email if member.user else None,
        "name": member.user.name if member.user else None,
    }


def sprint_dict(sprint):
    return {
        "id": sprint.id,
        "board_id": sprint.board_id,
        "number": sprint.number,
        "name": sprint.name,
        "goal": sprint.goal,
        "status": sprint.status,
        "start_date": _iso(sprint.start_date),
        "end_date": _iso(sprint.end_date),
        "created_at": _iso(sprint.created_at),
    }


def ticket_dict(ticket, include_children=False):
    data = {
        "id": ticket.id,
        "key": ticket.key,
        "board_id": ticket.board_id,
        "backlog_id": ticket.backlog_id,
        "sprint_id": ticket.sprint_id,
        "parent_id": ticket.parent_id,
        "title": ticket.title,
        "description": ticket.description,
        "type": ticket.type,
        "priority": ticket.priority,
        "status": ticket.status,
        "story_points": ticket.story_points,
        "order": ticket.order,
        "creator_id": ticket.creator_id,
        "assignee_id": ticket.assignee_id,
        "assignee_ids": ticket.assignee_ids,
        "reviewer_ids": ticket.reviewer_ids,
        "project_id": ticket.project_id,
        "percentage": ticket.percentage,
        "weight": ticket.weight,
        "created_at": _iso(ticket.created_at),
        "updated_at": _iso(ticket.updated_at),
    }
    if include_children:
        data["parent"] = (
            {"id": ticket.parent.id, "key": ticket.parent.key, "title": ticket.parent.title}
            if ticket.parent else None
        )
        data["sub_tickets"] = [ticket_dict(child) for child in ticket.sub_tickets]
    return data


def project_dict(project, ticket_count=None):
    data = {
        "id": project.id,
        "board_id": project.board_id,
        "name": project.name,
        "color": project.color,
        "created_at": _iso(project.created_at),
    }
    if ticket_count is not None:
        data["ticket_count"] = ticket_count
    return data


def audit_dict(event):
    return {
        "id": event.id,
        "board_id": event.board_id,
        "actor_user_id": event.actor_user_id,
        "action": event.action,
        "metadata": event.metadata_,
        "created_at": _iso(event.created_at),
    }


# ─── Request helpers ─────────────────────────────────────────────

def json_body():
    """The request's JSON object, or ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def required(data, key):
    if key not in data:
        raise ValidationError(f"'{key}' is required.")
    return data[key]


def arg_flag(name):
    """Query-string boolean: true/1/yes (case-insensitive)."""
    return request.args.get(name, "").lower() in ("1", "true", "yes")


def updatable(data, allowed, what):
    """Reject keys outside ``allowed`` before they reach a service's **fields."""
    unknown = set(data) - set(allowed)
    if unknown:
        raise ValidationError(
            f"Cannot update {what} field(s): {', '.join(sorted(unknown))}"
        )
    return data
