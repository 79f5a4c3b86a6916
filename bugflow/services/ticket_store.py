"""Ticket store: the persistence contract the workflow engine builds on.

get/list/create/update/delete helpers over users, tickets, comments,
attachments, history and email logs.

Functions flush but do NOT commit: the workflow operation calling them owns
the transaction, so a failure anywhere rolls the whole action back.
"""

from sqlalchemy import or_

from bugflow.extensions import db
from bugflow.models.email_log import EmailLog
from bugflow.models.history import TicketHistory
from bugflow.models.ticket import Comment, Ticket, TicketAttachment
from bugflow.models.user import User
from bugflow.roles import Role
from bugflow.utils import next_timestamp, utcnow


# ──────────────────────────────────────────────
# Users
# ──────────────────────────────────────────────

def get_user(user_id):
    if not user_id:
        return None
    return db.session.get(User, user_id)


def get_user_by_username(username):
    return User.query.filter_by(username=username).first()


def get_user_by_email(email):
    return User.query.filter(db.func.lower(User.email) == email.lower()).first()


def create_user(username, email, password_hash, name=None, role=Role.USER):
    user = User(
        username=username,
        email=email,
        password_hash=password_hash,
        name=name,
        role=role,
    )
    db.session.add(user)
    db.session.flush()
    return user


def list_users():
    return User.query.order_by(User.created_at.asc()).all()


def list_assignable_users():
    """Active devs and admins, for the assignment picker."""
    return (
        User.query
        .filter(User.role.in_([Role.DEV, Role.ADMIN]), User.is_active.is_(True))
        .order_by(User.username.asc())
        .all()
    )


def list_active_admin_emails():
    rows = (
        User.query
        .filter(User.role == Role.ADMIN, User.is_active.is_(True))
        .order_by(User.created_at.asc())
        .all()
    )
    return [u.email for u in rows if u.email]


def update_user_role(user, role):
    user.role = role
    user.updated_at = utcnow()
    db.session.flush()
    return user


# ──────────────────────────────────────────────
# Tickets
# ──────────────────────────────────────────────

def get_ticket(ticket_id):
    if not ticket_id:
        return None
    return db.session.get(Ticket, ticket_id)


def ticket_query():
    return Ticket.query


def list_tickets(query=None, status=None, type_=None, app=None, priority=None, search=None):
    """List tickets newest first, narrowed by optional filters."""
    query = query if query is not None else Ticket.query
    if status:
        query = query.filter(Ticket.status == status)
    if type_:
        query = query.filter(Ticket.type == type_)
    if app:
        query = query.filter(Ticket.app == app)
    if priority:
        query = query.filter(Ticket.priority == priority)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(Ticket.title.ilike(pattern), Ticket.description.ilike(pattern))
        )
    return query.order_by(Ticket.created_at.desc()).all()


def count_tickets():
    return Ticket.query.count()


def create_ticket(submitter_user_id, title, description, type_, app, priority):
    now = utcnow()
    ticket = Ticket(
        title=title,
        description=description,
        type=type_,
        app=app,
        status="open",
        priority=priority,
        submitter_user_id=submitter_user_id,
        created_at=now,
        updated_at=now,
    )
    db.session.add(ticket)
    db.session.flush()
    return ticket


def touch_ticket(ticket):
    """Advance updated_at. Always strictly later than the previous value."""
    ticket.updated_at = next_timestamp(ticket.updated_at)
    return ticket


def update_ticket_status(ticket, status):
    ticket.status = status
    touch_ticket(ticket)
    db.session.flush()
    return ticket


def update_ticket_assignment(ticket, assignee_id, assignee_name):
    ticket.assigned_to_user_id = assignee_id
    ticket.assigned_to_name = assignee_name
    touch_ticket(ticket)
    db.session.flush()
    return ticket


def delete_ticket_cascade(ticket):
    """Delete a ticket and everything hanging off it, children first.

    Returns (rows_deleted, storage_keys): the keys let the caller remove
    blob bytes once the transaction has committed.
    """
    ticket_id = ticket.id
    storage_keys = [
        key for (key,) in db.session.query(TicketAttachment.storage_key)
        .filter(TicketAttachment.ticket_id == ticket_id)
        .all()
    ]

    deleted = 0
    for model in (TicketAttachment, Comment, TicketHistory):
        deleted += (
            model.query
            .filter_by(ticket_id=ticket_id)
            .delete(synchronize_session=False)
        )

    db.session.delete(ticket)
    db.session.flush()
    db.session.expire_all()
    return deleted + 1, storage_keys


# ──────────────────────────────────────────────
# Comments
# ──────────────────────────────────────────────

def list_comments(ticket_id, include_internal=True):
    query = Comment.query.filter_by(ticket_id=ticket_id)
    if not include_internal:
        query = query.filter_by(is_internal=False)
    return query.order_by(Comment.created_at.asc()).all()


def create_comment(ticket_id, author_user_id, content, is_internal=False, is_status_change=False):
    comment = Comment(
        ticket_id=ticket_id,
        author_user_id=author_user_id,
        content=content,
        is_internal=bool(is_internal),
        is_status_change=bool(is_status_change),
        created_at=utcnow(),
    )
    db.session.add(comment)
    db.session.flush()
    return comment


# ──────────────────────────────────────────────
# Attachments
# ──────────────────────────────────────────────

def get_attachment(attachment_id):
    if not attachment_id:
        return None
    return db.session.get(TicketAttachment, attachment_id)


def count_attachments(ticket_id):
    return TicketAttachment.query.filter_by(ticket_id=ticket_id).count()


def list_attachments(ticket_id):
    return (
        TicketAttachment.query
        .filter_by(ticket_id=ticket_id)
        .order_by(TicketAttachment.uploaded_at.asc())
        .all()
    )


def create_attachment(attachment_id, ticket_id, original_name, storage_key, mime_type, size, uploaded_by_user_id):
    attachment = TicketAttachment(
        id=attachment_id,
        ticket_id=ticket_id,
        original_name=original_name,
        storage_key=storage_key,
        mime_type=mime_type,
        size=size,
        uploaded_by_user_id=uploaded_by_user_id,
        uploaded_at=utcnow(),
    )
    db.session.add(attachment)
    db.session.flush()
    return attachment


# ──────────────────────────────────────────────
# History
# ──────────────────────────────────────────────

def create_history(ticket_id, actor, kind, message, old_value=None, new_value=None):
    entry = TicketHistory(
        ticket_id=ticket_id,
        actor_user_id=actor.id if actor is not None else None,
        actor_name=actor.display_name if actor is not None else "System",
        kind=kind,
        old_value=old_value,
        new_value=new_value,
        message=message,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_history(ticket_id, exclude_kinds=None):
    query = TicketHistory.query.filter_by(ticket_id=ticket_id)
    if exclude_kinds:
        query = query.filter(TicketHistory.kind.notin_(list(exclude_kinds)))
    return query.order_by(TicketHistory.created_at.asc()).all()


# ──────────────────────────────────────────────
# Email logs
# ──────────────────────────────────────────────

def create_email_log(to_addresses, subject, body, event=None, ticket_id=None):
    log = EmailLog(
        to_addresses=list(to_addresses),
        subject=subject,
        body=body,
        event=event,
        ticket_id=ticket_id,
        status=EmailLog.QUEUED,
        created_at=utcnow(),
    )
    db.session.add(log)
    db.session.flush()
    return log


def get_email_log(log_id):
    return db.session.get(EmailLog, log_id)


def mark_email_sent(log):
    log.status = EmailLog.SENT
    log.error = None
    log.sent_at = utcnow()
    db.session.flush()
    return log


def mark_email_failed(log, error):
    log.status = EmailLog.FAILED
    log.error = error or "Unknown error"
    db.session.flush()
    return log


def list_email_logs(limit=200):
    return (
        EmailLog.query
        .order_by(EmailLog.created_at.desc())
        .limit(limit)
        .all()
    )
