"""Ticket models.

- Ticket: a bug report or feature request owned by its submitter.
- Comment: immutable note on a ticket, optionally internal (dev/admin only)
  or auto-generated by a status change.
- TicketAttachment: metadata for an uploaded file; the bytes live in the
  blob store under ``storage_key``.

assigned_to_name is a snapshot taken at assignment time and is never
re-resolved, so the audit trail keeps the name that was current then.
"""

import uuid

from bugflow.extensions import db
from bugflow.roles import Role
from bugflow.utils import isoformat, utcnow


class Ticket(db.Model):
    __tablename__ = "tickets"

    # -- Valid statuses (flat set: any status may follow any other) --
    STATUSES = [
        "open",
        "in_progress",
        "under_review",
        "resolved",
        "closed",
    ]

    STATUS_LABELS = {
        "open": "Open",
        "in_progress": "In Progress",
        "under_review": "Under Review",
        "resolved": "Resolved",
        "closed": "Closed",
    }

    # -- Valid types --
    TYPES = ["bug", "feature_request"]

    TYPE_LABELS = {
        "bug": "Bug",
        "feature_request": "Feature Request",
    }

    # -- Valid priorities --
    PRIORITIES = ["low", "medium", "high", "critical"]

    TITLE_MIN = 5
    TITLE_MAX = 200
    DESCRIPTION_MIN = 20

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(30), nullable=False)  # bug | feature_request
    app = db.Column(db.String(50), nullable=False)  # see TICKET_APPS config
    status = db.Column(
        db.String(30), default="open", nullable=False, index=True
    )
    priority = db.Column(
        db.String(20), default="medium", nullable=False
    )  # low | medium | high | critical
    submitter_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    assigned_to_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True, index=True
    )
    assigned_to_name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, server_default=db.func.now()
    )

    # --- Relationships ---
    submitter = db.relationship(
        "User",
        foreign_keys=[submitter_user_id],
        back_populates="submitted_tickets",
    )
    assigned_to = db.relationship(
        "User",
        foreign_keys=[assigned_to_user_id],
        back_populates="assigned_tickets",
    )
    comments = db.relationship(
        "Comment",
        back_populates="ticket",
        lazy="dynamic",
        order_by="Comment.created_at",
    )
    attachments = db.relationship(
        "TicketAttachment",
        back_populates="ticket",
        lazy="dynamic",
        order_by="TicketAttachment.uploaded_at",
    )
    history = db.relationship(
        "TicketHistory",
        back_populates="ticket",
        lazy="dynamic",
        order_by="TicketHistory.created_at",
    )

    @classmethod
    def status_label(cls, status):
        return cls.STATUS_LABELS.get(status, status)

    @property
    def type_label(self):
        return self.TYPE_LABELS.get(self.type, self.type)

    @property
    def app_label(self):
        return (self.app or "").replace("_", " ").title()

    def to_dict(self, include_submitter=False):
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "app": self.app,
            "status": self.status,
            "priority": self.priority,
            "userId": self.submitter_user_id,
            "assignedToUserId": self.assigned_to_user_id,
            "assignedToName": self.assigned_to_name,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
        if include_submitter:
            submitter = self.submitter
            data["user"] = {
                "username": submitter.username if submitter else "Unknown",
                "email": submitter.email if submitter else "",
            }
        return data

    def __repr__(self):
        return f"<Ticket {self.title[:30]} ({self.status})>"


class Comment(db.Model):
    __tablename__ = "ticket_comments"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    ticket_id = db.Column(
        db.String(36), db.ForeignKey("tickets.id"), nullable=False, index=True
    )
    author_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    content = db.Column(db.Text, nullable=False)
    is_status_change = db.Column(db.Boolean, default=False, nullable=False)
    is_internal = db.Column(
        db.Boolean, default=False, nullable=False
    )  # internal notes visible to dev/admin only
    created_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, server_default=db.func.now()
    )

    # --- Relationships ---
    ticket = db.relationship("Ticket", back_populates="comments")
    author = db.relationship("User")

    MAX_LENGTH = 5000

    def to_dict(self):
        author = self.author
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "userId": self.author_user_id,
            "content": self.content,
            "isStatusChange": bool(self.is_status_change),
            "isInternal": bool(self.is_internal),
            "createdAt": isoformat(self.created_at),
            "user": {
                "username": author.username if author else "Unknown",
                "role": Role(author.role).value if author else "user",
            },
        }

    def __repr__(self):
        return f"<Comment ticket={self.ticket_id} internal={self.is_internal}>"


class TicketAttachment(db.Model):
    """File attached to a ticket (screenshots and the like).

    Files are stored in Supabase Storage (prod) or local filesystem (dev).
    """
    __tablename__ = "ticket_attachments"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    ticket_id = db.Column(
        db.String(36), db.ForeignKey("tickets.id"), nullable=False, index=True
    )
    original_name = db.Column(db.String(255), nullable=False)
    storage_key = db.Column(db.String(500), nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    size = db.Column(db.Integer, nullable=False)  # bytes
    uploaded_by_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    uploaded_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, server_default=db.func.now()
    )

    # --- Relationships ---
    ticket = db.relationship("Ticket", back_populates="attachments")
    uploaded_by = db.relationship("User")

    @property
    def human_size(self):
        """Return human-readable file size."""
        if self.size < 1024:
            return f"{self.size} B"
        elif self.size < 1024 * 1024:
            return f"{self.size / 1024:.1f} KB"
        else:
            return f"{self.size / (1024 * 1024):.1f} MB"

    def to_dict(self):
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "size": self.size,
            "humanSize": self.human_size,
            "uploadedByUserId": self.uploaded_by_user_id,
            "uploadedAt": isoformat(self.uploaded_at),
            "downloadUrl": f"/api/attachments/{self.id}/download",
        }

    def __repr__(self):
        return f"<TicketAttachment {self.original_name} ({self.mime_type})>"
