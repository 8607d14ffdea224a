"""Sprints blueprint — /api/boards/<board_id>/sprints, /api/sprints/*

Mutations require MEMBER or above on the sprint's board.

Route Map:
  GET    /api/boards/<board_id>/sprints            — Sprints, newest first
  POST   /api/boards/<board_id>/sprints            — Create (auto_start by default)
  GET    /api/boards/<board_id>/sprints/current    — The ACTIVE sprint or null
  GET    /api/sprints/<id>                         — Sprint detail
  PUT    /api/sprints/<id>                         — Update name/goal/dates
  DELETE /api/sprints/<id>                         — Delete (tickets go to backlog)
  POST   /api/sprints/<id>/start                   — PLANNED -> ACTIVE
  POST   /api/sprints/<id>/complete                — ACTIVE -> COMPLETED
  GET    /api/sprints/<id>/progress                — Counts and story points
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from trackboard.blueprints.serializers import (
    json_body,
    required,
    sprint_dict,
    updatable,
)
from trackboard.extensions import limiter, write_limit
from trackboard.services import access, sprint_service

sprints_bp = Blueprint("sprints", __name__, url_prefix="/api")

SPRINT_FIELDS = ("name", "goal", "start_date", "end_date")


@sprints_bp.route("/boards/<board_id>/sprints", methods=["GET"])
@login_required
def list_sprints(board_id):
    sprints = sprint_service.list_sprints(board_id, current_user.id)
    return jsonify([sprint_dict(s) for s in sprints])


@sprints_bp.route("/boards/<board_id>/sprints", methods=["POST"])
@limiter.limit(write_limit)
@login_required
def create_sprint(board_id):
    data = json_body()
    sprint = sprint_service.create_sprint(
        board_id,
        current_user.id,
        name=data.get("name"),
        start_date=required(data, "start_date"),
        end_date=required(data, "end_date"),
        goal=data.get("goal"),
        auto_start=data.get("auto_start", True),
        min_role=access.MEMBER,
    )
    return jsonify(sprint_dict(sprint)), 201


@sprints_bp.route("/boards/<board_id>/sprints/current", methods=["GET"])
@login_required
def current_sprint(board_id):
    sprint = sprint_service.get_current_sprint(board_id, current_user.id)
    return jsonify(sprint_dict(sprint) if sprint else None)


@sprints_bp.route("/sprints/<sprint_id>", methods=["GET"])
@login_required
def get_sprint(sprint_id):
    sprint = sprint_service.get_sprint(sprint_id, current_user.id)
    return jsonify(sprint_dict(sprint))


@sprints_bp.route("/sprints/<sprint_id>", methods=["PUT"])
@login_required
def update_sprint(sprint_id):
    fields = updatable(json_body(), SPRINT_FIELDS, "sprint")
    sprint = sprint_service.update_sprint(
        sprint_id, current_user.id, min_role=access.MEMBER, **fields
    )
    return jsonify(sprint_dict(sprint))


@sprints_bp.route("/sprints/<sprint_id>", methods=["DELETE"])
@login_required
def delete_sprint(sprint_id):
    moved = sprint_service.delete_sprint(
        sprint_id, current_user.id, min_role=access.MEMBER
    )
    return jsonify({"success": True, "moved_to_backlog": moved})


@sprints_bp.route("/sprints/<sprint_id>/start", methods=["POST"])
@login_required
def start_sprint(sprint_id):
    sprint = sprint_service.start_sprint(
        sprint_id, current_user.id, min_role=access.MEMBER
    )
    return jsonify(sprint_dict(sprint))


@sprints_bp.route("/sprints/<sprint_id>/complete", methods=["POST"])
@login_required
def complete_sprint(sprint_id):
    data = json_body()
    sprint, moved = sprint_service.complete_sprint(
        sprint_id,
        current_user.id,
        policy=data.get("policy", "backlog"),
        target_sprint_id=data.get("target_sprint_id"),
        min_role=access.MEMBER,
    )
    return jsonify({"sprint": sprint_dict(sprint), "moved": moved})


@sprints_bp.route("/sprints/<sprint_id>/progress", methods=["GET"])
@login_required
def sprint_progress(sprint_id):
    return jsonify(sprint_service.get_sprint_progress(sprint_id, current_user.id))
