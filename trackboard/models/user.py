"""User model.

Users are authenticated by the external identity provider; this row only
anchors creator, assignee and membership references.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from trackboard.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255))
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    board_memberships = db.relationship(
        "BoardMember", back_populates="user", lazy="dynamic"
    )
    created_tickets = db.relationship(
        "Ticket",
        foreign_keys="Ticket.creator_id",
        back_populates="creator",
        lazy="dynamic",
    )
    assigned_tickets = db.relationship(
        "Ticket",
        foreign_keys="Ticket.assignee_id",
        back_populates="assignee",
        lazy="dynamic",
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )

    def __repr__(self):
        return f"<User {self.email}>"
