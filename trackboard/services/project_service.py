"""Project service: per-board ticket groupings.

A project belongs to exactly one board and only tickets of that board
may point at it. Any member can list projects; the HTTP layer requires
MEMBER for changes.
"""

import logging

from sqlalchemy import func

from trackboard import validators
from trackboard.errors import NotFoundError, ValidationError
from trackboard.extensions import db
from trackboard.models.board import Board
from trackboard.models.project import Project
from trackboard.models.ticket import Ticket
from trackboard.services import access, audit
from trackboard.services.unit_of_work import transaction

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "color")


def _get_project_or_404(project_id):
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found.")
    return project


def list_projects(board_id, user_id):
    """Projects of a board by name, each paired with its ticket count.

    Returns:
        list of (Project, ticket_count) tuples.
    """
    if db.session.get(Board, board_id) is None:
        raise NotFoundError("Board not found.")
    access.verify_membership(board_id, user_id)

    counts = dict(
        db.session.query(Ticket.project_id, func.count(Ticket.id))
        .filter(Ticket.board_id == board_id, Ticket.project_id.isnot(None))
        .group_by(Ticket.project_id)
        .all()
    )
    projects = (
        Project.query
        .filter_by(board_id=board_id)
        .order_by(Project.name.asc())
        .all()
    )
    return [(p, counts.get(p.id, 0)) for p in projects]


def create_project(board_id, user_id, name, color=None, min_role=access.VIEWER):
    name = validators.project_name(name)
    color = validators.project_color(color)

    with transaction():
        if db.session.get(Board, board_id) is None:
            raise NotFoundError("Board not found.")
        access.require_role(board_id, user_id, min_role)

        project = Project(board_id=board_id, name=name, color=color)
        db.session.add(project)
        db.session.flush()
        audit.record(
            board_id, user_id, "project.created",
            project_id=project.id, name=name,
        )

    logger.info("Project %s created on board %s", project.id, board_id)
    return project


def update_project(project_id, user_id, min_role=access.VIEWER, **fields):
    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Cannot update project field(s): {', '.join(sorted(unknown))}"
        )
    if "name" in fields:
        fields["name"] = validators.project_name(fields["name"])
    if "color" in fields:
        fields["color"] = validators.project_color(fields["color"])

    with transaction():
        project = _get_project_or_404(project_id)
        access.require_role(project.board_id, user_id, min_role)
        for key, value in fields.items():
            setattr(project, key, value)
        db.session.flush()
        audit.record(
            project.board_id, user_id, "project.updated",
            project_id=project.id, fields=sorted(fields),
        )

    return project


def delete_project(project_id, user_id, min_role=access.VIEWER):
    """Delete a project. Its tickets stay on the board, ungrouped.

    Returns:
        Number of tickets detached from the project.
    """
    with transaction():
        project = _get_project_or_404(project_id)
        board_id = project.board_id
        access.require_role(board_id, user_id, min_role)

        detached = Ticket.query.filter_by(project_id=project_id).update(
            {Ticket.project_id: None}, synchronize_session=False
        )
        Project.query.filter_by(id=project_id).delete(synchronize_session=False)
        audit.record(
            board_id, user_id, "project.deleted",
            project_id=project_id, detached=detached,
        )

    return detached
