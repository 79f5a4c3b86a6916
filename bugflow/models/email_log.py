"""Email log model.

One row per outbound email job. Written as "queued" before the send attempt
and moved to "sent" or "failed" afterwards; it is the only durable record of
delivery outcome. ticket_id is a plain column (no FK) so logs outlive the
ticket they were about.
"""

import uuid

from bugflow.extensions import db
from bugflow.utils import isoformat, utcnow


class EmailLog(db.Model):
    __tablename__ = "email_logs"

    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    STATUSES = [QUEUED, SENT, FAILED]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    to_addresses = db.Column(db.JSON, nullable=False, default=list)
    subject = db.Column(db.String(500), nullable=False)
    body = db.Column(db.Text, nullable=False)  # plain-text part
    event = db.Column(db.String(50), nullable=True)  # created | status_changed | ...
    ticket_id = db.Column(db.String(36), nullable=True, index=True)
    status = db.Column(db.String(20), default=QUEUED, nullable=False)
    error = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=utcnow, server_default=db.func.now()
    )
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "toAddresses": list(self.to_addresses or []),
            "subject": self.subject,
            "body": self.body,
            "event": self.event,
            "ticketId": self.ticket_id,
            "status": self.status,
            "error": self.error,
            "createdAt": isoformat(self.created_at),
            "sentAt": isoformat(self.sent_at),
        }

    def __repr__(self):
        return f"<EmailLog {self.subject[:30]} ({self.status})>"
