"""Ticket history model.

Append-only audit trail: one entry per state-changing action on a ticket.
actor_name is a snapshot so the trail reads the same after a rename.
Entries are only ever removed by the ticket-deletion cascade.
"""

import uuid

from bugflow.extensions import db
from bugflow.utils import isoformat, utcnow


class TicketHistory(db.Model):
    __tablename__ = "ticket_history"

    # -- Entry kinds --
    CREATED = "CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNED = "ASSIGNED"
    PUBLIC_NOTE = "PUBLIC_NOTE"
    INTERNAL_NOTE = "INTERNAL_NOTE"
    ATTACHMENT_ADDED = "ATTACHMENT_ADDED"

    KINDS = [
        CREATED,
        STATUS_CHANGED,
        ASSIGNED,
        PUBLIC_NOTE,
        INTERNAL_NOTE,
        ATTACHMENT_ADDED,
    ]

    # Kinds hidden from plain users
    INTERNAL_KINDS = {INTERNAL_NOTE}

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    ticket_id = db.Column(
        db.String(36), db.ForeignKey("tickets.id"), nullable=False, index=True
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    actor_name = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(30), nullable=False)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, server_default=db.func.now()
    )

    # --- Relationships ---
    ticket = db.relationship("Ticket", back_populates="history")

    def to_dict(self):
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "actorUserId": self.actor_user_id,
            "actorName": self.actor_name,
            "kind": self.kind,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "message": self.message,
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<TicketHistory {self.kind} ticket={self.ticket_id}>"
