"""Tickets blueprint — ticket CRUD, placement and hierarchy views.

Mutations require MEMBER or above on the ticket's board.

Route Map:
  GET    /api/boards/<board_id>/tickets            — Board view; query params
                                                     include_child_boards,
                                                     sprint_id, backlog_id,
                                                     align_sprints
  POST   /api/boards/<board_id>/tickets            — Create ticket
  GET    /api/tickets/<id>                         — Ticket + parent + sub-tickets
  PUT    /api/tickets/<id>                         — Partial update
  DELETE /api/tickets/<id>                         — Delete ticket and sub-tickets
  POST   /api/tickets/<id>/sub-tickets             — Create sub-ticket
  POST   /api/tickets/<id>/move                    — Move to a sprint or backlog
  PUT    /api/tickets/<id>/order                   — Set position in container
  GET    /api/backlogs/<id>/tickets                — Backlog tickets in order
  GET    /api/sprints/<id>/tickets                 — Sprint tickets in order
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from trackboard.blueprints.serializers import (
    arg_flag,
    json_body,
    required,
    ticket_dict,
    updatable,
)
from trackboard.extensions import limiter, write_limit
from trackboard.services import access, ticket_service

tickets_bp = Blueprint("tickets", __name__, url_prefix="/api")


# ─── Board views ─────────────────────────────────────────────────

@tickets_bp.route("/boards/<board_id>/tickets", methods=["GET"])
@login_required
def board_tickets(board_id):
    tickets = ticket_service.get_with_hierarchy(
        board_id,
        current_user.id,
        include_child_boards=arg_flag("include_child_boards"),
        sprint_id=request.args.get("sprint_id"),
        backlog_id=request.args.get("backlog_id"),
        align_sprints=arg_flag("align_sprints"),
    )
    return jsonify([ticket_dict(t) for t in tickets])


@tickets_bp.route("/backlogs/<backlog_id>/tickets", methods=["GET"])
@login_required
def backlog_tickets(backlog_id):
    tickets = ticket_service.list_backlog_tickets(backlog_id, current_user.id)
    return jsonify([ticket_dict(t) for t in tickets])


@tickets_bp.route("/sprints/<sprint_id>/tickets", methods=["GET"])
@login_required
def sprint_tickets(sprint_id):
    tickets = ticket_service.list_sprint_tickets(sprint_id, current_user.id)
    return jsonify([ticket_dict(t) for t in tickets])


# ─── Create ──────────────────────────────────────────────────────

@tickets_bp.route("/boards/<board_id>/tickets", methods=["POST"])
@limiter.limit(write_limit)
@login_required
def create_ticket(board_id):
    data = json_body()
    ticket = ticket_service.create_ticket(
        board_id,
        current_user.id,
        title=data.get("title"),
        description=data.get("description"),
        ticket_type=data.get("type", "ISSUE"),
        priority=data.get("priority", "MEDIUM"),
        status=data.get("status", "TODO"),
        story_points=data.get("story_points"),
        assignee_id=data.get("assignee_id"),
        sprint_id=data.get("sprint_id"),
        backlog_id=data.get("backlog_id"),
        parent_id=data.get("parent_id"),
        project_id=data.get("project_id"),
        percentage=data.get("percentage", 0),
        weight=data.get("weight", 1),
        assignee_ids=data.get("assignee_ids"),
        reviewer_ids=data.get("reviewer_ids"),
        min_role=access.MEMBER,
    )
    return jsonify(ticket_dict(ticket)), 201


@tickets_bp.route("/tickets/<ticket_id>/sub-tickets", methods=["POST"])
@limiter.limit(write_limit)
@login_required
def create_sub_ticket(ticket_id):
    data = json_body()
    ticket = ticket_service.create_sub_ticket(
        ticket_id,
        current_user.id,
        title=data.get("title"),
        description=data.get("description"),
        ticket_type=data.get("type", "ISSUE"),
        priority=data.get("priority", "MEDIUM"),
        story_points=data.get("story_points"),
        assignee_id=data.get("assignee_id"),
        min_role=access.MEMBER,
    )
    return jsonify(ticket_dict(ticket)), 201


# ─── Single ticket ───────────────────────────────────────────────

@tickets_bp.route("/tickets/<ticket_id>", methods=["GET"])
@login_required
def get_ticket(ticket_id):
    ticket = ticket_service.get_ticket(ticket_id, current_user.id)
    return jsonify(ticket_dict(ticket, include_children=True))


@tickets_bp.route("/tickets/<ticket_id>", methods=["PUT"])
@login_required
def update_ticket(ticket_id):
    fields = updatable(json_body(), ticket_service.UPDATABLE_FIELDS, "ticket")
    ticket = ticket_service.update_ticket(
        ticket_id, current_user.id, min_role=access.MEMBER, **fields
    )
    return jsonify(ticket_dict(ticket))


@tickets_bp.route("/tickets/<ticket_id>", methods=["DELETE"])
@login_required
def delete_ticket(ticket_id):
    deleted = ticket_service.delete_ticket(
        ticket_id, current_user.id, min_role=access.MEMBER
    )
    return jsonify({"success": True, "deleted": deleted})


@tickets_bp.route("/tickets/<ticket_id>/move", methods=["POST"])
@login_required
def move_ticket(ticket_id):
    data = json_body()
    ticket = ticket_service.move_ticket(
        ticket_id,
        current_user.id,
        sprint_id=data.get("sprint_id"),
        backlog_id=data.get("backlog_id"),
        status=data.get("status"),
        min_role=access.MEMBER,
    )
    return jsonify(ticket_dict(ticket))


@tickets_bp.route("/tickets/<ticket_id>/order", methods=["PUT"])
@login_required
def update_order(ticket_id):
    data = json_body()
    ticket = ticket_service.update_order(
        ticket_id, current_user.id, required(data, "order"), min_role=access.MEMBER
    )
    return jsonify(ticket_dict(ticket))
