"""Boards blueprint — /api/boards/*

Board CRUD, membership management and hierarchy reads. Every route needs
an authenticated caller (trusted identity header); role checks live in
board_service or in the board_role_required decorator.

Route Map:
  GET    /api/boards                               — Boards the caller belongs to
  POST   /api/boards                               — Create board (+ backlog, OWNER)
  GET    /api/boards/<id>                          — Board detail
  PUT    /api/boards/<id>                          — Update name/description/color
  DELETE /api/boards/<id>                          — Delete board (OWNER)
  GET    /api/boards/<id>/children                 — Direct child boards
  GET    /api/boards/<id>/hierarchy                — Parent + children
  GET    /api/boards/<id>/ancestors                — Root-first ancestor chain
  GET    /api/boards/<id>/members                  — Member list
  POST   /api/boards/<id>/members                  — Add member
  POST   /api/boards/<id>/invitations              — Invite guest by email
  PUT    /api/boards/<id>/members/<user_id>        — Change member role (OWNER)
  DELETE /api/boards/<id>/members/<user_id>        — Remove member
  GET    /api/boards/<id>/activity                 — Audit trail (ADMIN+)
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from trackboard.blueprints.serializers import (
    audit_dict,
    board_dict,
    json_body,
    member_dict,
    required,
    updatable,
)
from trackboard.decorators import board_role_required
from trackboard.extensions import limiter, write_limit
from trackboard.models.audit import AuditEvent
from trackboard.models.board import BoardMember
from trackboard.services import access, board_service

boards_bp = Blueprint("boards", __name__, url_prefix="/api/boards")


# ─── Boards ──────────────────────────────────────────────────────

@boards_bp.route("", methods=["GET"])
@login_required
def list_boards():
    boards = board_service.list_boards(current_user.id)
    return jsonify([board_dict(b) for b in boards])


@boards_bp.route("", methods=["POST"])
@limiter.limit(write_limit)
@login_required
def create_board():
    data = json_body()
    board = board_service.create_board(
        current_user.id,
        name=data.get("name"),
        prefix=data.get("prefix"),
        color=data.get("color"),
        description=data.get("description"),
        parent_board_id=data.get("parent_board_id"),
    )
    return jsonify(board_dict(board)), 201


@boards_bp.route("/<board_id>", methods=["GET"])
@login_required
def get_board(board_id):
    board = board_service.get_board(board_id, current_user.id)
    return jsonify(board_dict(board))


@boards_bp.route("/<board_id>", methods=["PUT"])
@login_required
def update_board(board_id):
    fields = updatable(json_body(), board_service.UPDATABLE_FIELDS, "board")
    board = board_service.update_board(board_id, current_user.id, **fields)
    return jsonify(board_dict(board))


@boards_bp.route("/<board_id>", methods=["DELETE"])
@login_required
def delete_board(board_id):
    board_service.delete_board(board_id, current_user.id)
    return jsonify({"success": True})


# ─── Hierarchy ───────────────────────────────────────────────────

@boards_bp.route("/<board_id>/children", methods=["GET"])
@login_required
def get_children(board_id):
    children = board_service.get_children(board_id, current_user.id)
    return jsonify([board_dict(b) for b in children])


@boards_bp.route("/<board_id>/hierarchy", methods=["GET"])
@login_required
def get_hierarchy(board_id):
    board, parent, children = board_service.get_hierarchy(board_id, current_user.id)
    return jsonify({
        "board": board_dict(board),
        "parent": board_dict(parent) if parent else None,
        "children": [board_dict(b) for b in children],
    })


@boards_bp.route("/<board_id>/ancestors", methods=["GET"])
@login_required
def get_ancestors(board_id):
    ancestors = board_service.get_ancestors(board_id, current_user.id)
    return jsonify([board_dict(b) for b in ancestors])


# ─── Members ─────────────────────────────────────────────────────

@boards_bp.route("/<board_id>/members", methods=["GET"])
@board_role_required(access.VIEWER)
def list_members(board_id):
    members = (
        BoardMember.query
        .filter_by(board_id=board_id)
        .order_by(BoardMember.created_at)
        .all()
    )
    return jsonify([member_dict(m) for m in members])


@boards_bp.route("/<board_id>/members", methods=["POST"])
@login_required
def add_member(board_id):
    data = json_body()
    membership = board_service.add_member(
        board_id,
        current_user.id,
        required(data, "user_id"),
        role=data.get("role", access.MEMBER),
    )
    return jsonify(member_dict(membership)), 201


@boards_bp.route("/<board_id>/invitations", methods=["POST"])
@limiter.limit(write_limit)
@login_required
def invite_guest(board_id):
    data = json_body()
    membership, created = board_service.invite_guest(
        board_id,
        current_user.id,
        required(data, "email"),
        role=data.get("role", access.VIEWER),
    )
    return jsonify({**member_dict(membership), "created_user": created}), 201


@boards_bp.route("/<board_id>/members/<member_user_id>", methods=["PUT"])
@login_required
def update_member_role(board_id, member_user_id):
    data = json_body()
    membership = board_service.update_member_role(
        board_id, current_user.id, member_user_id, required(data, "role")
    )
    return jsonify(member_dict(membership))


@boards_bp.route("/<board_id>/members/<member_user_id>", methods=["DELETE"])
@login_required
def remove_member(board_id, member_user_id):
    board_service.remove_member(board_id, current_user.id, member_user_id)
    return jsonify({"success": True})


# ─── Activity ────────────────────────────────────────────────────

@boards_bp.route("/<board_id>/activity", methods=["GET"])
@board_role_required(access.ADMIN)
def activity(board_id):
    limit = min(request.args.get("limit", 50, type=int), 200)
    events = (
        AuditEvent.query
        .filter_by(board_id=board_id)
        .order_by(AuditEvent.created_at.desc())
        .limit(limit)
        .all()
    )
    return jsonify([audit_dict(e) for e in events])
