"""Sprint model.

A time-boxed, numbered ticket container with a lifecycle:
PLANNED -> ACTIVE -> COMPLETED (terminal). Transitions are enforced in
sprint_service; the partial unique index below is the store-level guard
for "at most one ACTIVE sprint per board".
"""

import uuid

from trackboard.extensions import db


class Sprint(db.Model):
    __tablename__ = "sprints"

    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"

    # -- Valid statuses --
    STATUSES = [PLANNED, ACTIVE, COMPLETED]

    # -- Valid status transitions (enforced in sprint_service) --
    VALID_TRANSITIONS = {
        PLANNED: [ACTIVE],
        ACTIVE: [COMPLETED],
    }

    # -- Redistribution policies for unfinished tickets on completion --
    COMPLETION_POLICIES = ["backlog", "next-sprint", "keep"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="CASCADE"),
        nullable=False,
    )
    number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    goal = db.Column(db.String(500), nullable=True)
    status = db.Column(
        db.String(20), default=PLANNED, nullable=False
    )  # PLANNED | ACTIVE | COMPLETED
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint("board_id", "number", name="uq_sprint_board_number"),
        db.Index(
            "uq_sprint_one_active_per_board",
            "board_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
    )

    # --- Relationships ---
    board = db.relationship("Board", back_populates="sprints")
    tickets = db.relationship(
        "Ticket",
        back_populates="sprint",
        lazy="dynamic",
        order_by="Ticket.order",
    )

    def can_transition_to(self, target):
        return target in self.VALID_TRANSITIONS.get(self.status, [])

    def __repr__(self):
        return f"<Sprint #{self.number} {self.name} ({self.status})>"
