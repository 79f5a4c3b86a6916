"""User model.

Stores authentication credentials, profile info and the role that gates
every workflow action. Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from bugflow.extensions import db
from bugflow.roles import Role
from bugflow.utils import isoformat, utcnow


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    username = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(
            Role,
            name="user_role",
            values_callable=lambda roles: [r.value for r in roles],
            validate_strings=True,
        ),
        default=Role.USER,
        nullable=False,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    # --- Relationships ---
    submitted_tickets = db.relationship(
        "Ticket",
        foreign_keys="Ticket.submitter_user_id",
        back_populates="submitter",
        lazy="dynamic",
    )
    assigned_tickets = db.relationship(
        "Ticket",
        foreign_keys="Ticket.assigned_to_user_id",
        back_populates="assigned_to",
        lazy="dynamic",
    )

    @property
    def display_name(self):
        """Name used in history snapshots and emails."""
        return self.name or self.username

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    def to_dict(self):
        """Public representation: never includes the password hash."""
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "role": Role(self.role).value,
            "isActive": bool(self.is_active),
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.username} ({Role(self.role).value})>"
