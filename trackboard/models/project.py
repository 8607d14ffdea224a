"""Project model.

Projects are coloured groupings of tickets within one board. Deleting a
project leaves its tickets in place with project_id cleared.
"""

import uuid

from trackboard.extensions import db


class Project(db.Model):
    __tablename__ = "projects"

    DEFAULT_COLOR = "#FFB7C5"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(7), nullable=False, default=DEFAULT_COLOR)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    board = db.relationship("Board", back_populates="projects")
    tickets = db.relationship(
        "Ticket", back_populates="project", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Project {self.name} board={self.board_id}>"
