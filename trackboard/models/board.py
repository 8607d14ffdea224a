"""Board models.

- Board: a named workspace with a unique key prefix, optionally nested
  under a parent board. Owns the counters behind ticket keys and sprint
  numbers.
- BoardMember: join table linking users to boards with a role.
- Backlog: the single unplaced-ticket container of a board (1:1).
"""

import uuid

from trackboard.extensions import db


class Board(db.Model):
    __tablename__ = "boards"

    DEFAULT_COLOR = "#FFB7C5"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    prefix = db.Column(db.String(5), unique=True, nullable=False)
    color = db.Column(db.String(7), nullable=False, default=DEFAULT_COLOR)
    parent_board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # Only ever bumped by key_allocator with an in-database increment.
    ticket_counter = db.Column(db.Integer, nullable=False, default=0)
    # Highest sprint number ever issued; bumped by sprint_service.
    sprint_counter = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.CheckConstraint(
            "ticket_counter >= 0", name="ck_boards_ticket_counter_non_negative"
        ),
        db.CheckConstraint(
            "sprint_counter >= 0", name="ck_boards_sprint_counter_non_negative"
        ),
    )

    # --- Relationships ---
    parent_board = db.relationship(
        "Board", remote_side=[id], back_populates="child_boards"
    )
    child_boards = db.relationship(
        "Board", back_populates="parent_board", lazy="dynamic"
    )
    members = db.relationship(
        "BoardMember", back_populates="board", lazy="dynamic"
    )
    backlog = db.relationship(
        "Backlog", back_populates="board", uselist=False
    )
    sprints = db.relationship(
        "Sprint",
        back_populates="board",
        lazy="dynamic",
        order_by="Sprint.number.desc()",
    )
    tickets = db.relationship(
        "Ticket", back_populates="board", lazy="dynamic"
    )
    projects = db.relationship(
        "Project", back_populates="board", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Board {self.prefix} {self.name}>"


class BoardMember(db.Model):
    __tablename__ = "board_members"

    # -- Roles, lowest to highest --
    ROLES = ["VIEWER", "MEMBER", "ADMIN", "OWNER"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    role = db.Column(
        db.String(20), default="MEMBER", nullable=False
    )  # VIEWER | MEMBER | ADMIN | OWNER
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint("board_id", "user_id", name="uq_board_member"),
    )

    # --- Relationships ---
    board = db.relationship("Board", back_populates="members")
    user = db.relationship("User", back_populates="board_memberships")

    def __repr__(self):
        return f"<BoardMember user={self.user_id} board={self.board_id} {self.role}>"


class Backlog(db.Model):
    __tablename__ = "backlogs"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    board = db.relationship("Board", back_populates="backlog")
    tickets = db.relationship(
        "Ticket", back_populates="backlog", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Backlog board={self.board_id}>"
