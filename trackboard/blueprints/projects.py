"""Projects blueprint — /api/boards/<board_id>/projects, /api/projects/*

Mutations require MEMBER or above on the project's board.

Route Map:
  GET    /api/boards/<board_id>/projects           — Projects with ticket counts
  POST   /api/boards/<board_id>/projects           — Create project
  PUT    /api/projects/<id>                        — Rename / recolor
  DELETE /api/projects/<id>                        — Delete (tickets are kept)
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from trackboard.blueprints.serializers import json_body, project_dict, updatable
from trackboard.extensions import limiter, write_limit
from trackboard.services import access, project_service

projects_bp = Blueprint("projects", __name__, url_prefix="/api")


@projects_bp.route("/boards/<board_id>/projects", methods=["GET"])
@login_required
def list_projects(board_id):
    rows = project_service.list_projects(board_id, current_user.id)
    return jsonify([project_dict(p, ticket_count=n) for p, n in rows])


@projects_bp.route("/boards/<board_id>/projects", methods=["POST"])
@limiter.limit(write_limit)
@login_required
def create_project(board_id):
    data = json_body()
    project = project_service.create_project(
        board_id,
        current_user.id,
        data.get("name"),
        color=data.get("color"),
        min_role=access.MEMBER,
    )
    return jsonify(project_dict(project)), 201


@projects_bp.route("/projects/<project_id>", methods=["PUT"])
@login_required
def update_project(project_id):
    fields = updatable(json_body(), project_service.UPDATABLE_FIELDS, "project")
    project = project_service.update_project(
        project_id, current_user.id, min_role=access.MEMBER, **fields
    )
    return jsonify(project_dict(project))


@projects_bp.route("/projects/<project_id>", methods=["DELETE"])
@login_required
def delete_project(project_id):
    detached = project_service.delete_project(
        project_id, current_user.id, min_role=access.MEMBER
    )
    return jsonify({"success": True, "detached": detached})
