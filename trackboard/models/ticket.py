"""Ticket model.

Tickets live on a board and sit in at most one container: the board's
backlog or one of its sprints (never both, enforced by a CHECK constraint
as well as in ticket_service). Sub-tickets reference their parent through
parent_id and carry a dotted key derived from the parent's key.

Besides the single assignee_id, a ticket may carry sets of assignees and
reviewers (TicketAssignee / TicketReviewer), all members of its board.
"""

import uuid

from trackboard.extensions import db


class Ticket(db.Model):
    __tablename__ = "tickets"

    # -- Valid statuses --
    STATUSES = ["TODO", "IN_PROGRESS", "IN_REVIEW", "DONE"]
    DONE = "DONE"

    # -- Valid types --
    TYPES = ["ISSUE", "FIX", "HOTFIX", "PROBLEM"]

    # -- Valid priorities --
    PRIORITIES = ["LOWEST", "LOW", "MEDIUM", "HIGH", "HIGHEST"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    key = db.Column(db.String(64), nullable=False)  # immutable once issued
    board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    backlog_id = db.Column(
        db.String(36), db.ForeignKey("backlogs.id"), nullable=True, index=True
    )
    sprint_id = db.Column(
        db.String(36), db.ForeignKey("sprints.id"), nullable=True, index=True
    )
    parent_id = db.Column(
        db.String(36),
        db.ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(20), default="ISSUE", nullable=False)
    priority = db.Column(db.String(20), default="MEDIUM", nullable=False)
    status = db.Column(
        db.String(20), default="TODO", nullable=False
    )  # TODO | IN_PROGRESS | IN_REVIEW | DONE
    story_points = db.Column(db.Integer, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)
    creator_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    assignee_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    percentage = db.Column(db.Integer, nullable=False, default=0)  # 0-100
    weight = db.Column(db.Integer, nullable=False, default=1)  # 1-100
    # Highest sub-ticket suffix ever issued under this ticket.
    sub_ticket_counter = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint("board_id", "key", name="uq_ticket_board_key"),
        db.CheckConstraint(
            "backlog_id IS NULL OR sprint_id IS NULL",
            name="ck_ticket_single_container",
        ),
    )

    # --- Relationships ---
    board = db.relationship("Board", back_populates="tickets")
    backlog = db.relationship("Backlog", back_populates="tickets")
    sprint = db.relationship("Sprint", back_populates="tickets")
    parent = db.relationship(
        "Ticket", remote_side=[id], back_populates="sub_tickets"
    )
    sub_tickets = db.relationship(
        "Ticket",
        back_populates="parent",
        lazy="dynamic",
        order_by="Ticket.order",
    )
    creator = db.relationship(
        "User",
        foreign_keys=[creator_id],
        back_populates="created_tickets",
    )
    assignee = db.relationship(
        "User",
        foreign_keys=[assignee_id],
        back_populates="assigned_tickets",
    )
    project = db.relationship("Project", back_populates="tickets")
    assignees = db.relationship(
        "TicketAssignee", back_populates="ticket", lazy="dynamic"
    )
    reviewers = db.relationship(
        "TicketReviewer", back_populates="ticket", lazy="dynamic"
    )

    @property
    def assignee_ids(self):
        return sorted(a.user_id for a in self.assignees)

    @property
    def reviewer_ids(self):
        return sorted(r.user_id for r in self.reviewers)

    def __repr__(self):
        return f"<Ticket {self.key} ({self.status})>"


class TicketAssignee(db.Model):
    __tablename__ = "ticket_assignees"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    ticket_id = db.Column(
        db.String(36),
        db.ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )

    __table_args__ = (
        db.UniqueConstraint("ticket_id", "user_id", name="uq_ticket_assignee"),
    )

    ticket = db.relationship("Ticket", back_populates="assignees")
    user = db.relationship("User")


class TicketReviewer(db.Model):
    __tablename__ = "ticket_reviewers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    ticket_id = db.Column(
        db.String(36),
        db.ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )

    __table_args__ = (
        db.UniqueConstraint("ticket_id", "user_id", name="uq_ticket_reviewer"),
    )

    ticket = db.relationship("Ticket", back_populates="reviewers")
    user = db.relationship("User")
