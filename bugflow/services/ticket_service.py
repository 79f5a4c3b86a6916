"""Ticket workflow engine: create, status, assignment, comments, attachments.

Every operation takes the acting user first and checks authorization and
input before touching the database. Mutations are one unit of work each:
the operation commits on success, rolls back on failure (surfacing
StorageError for persistence problems), and only then hands the event to
the notification dispatcher, whose failures are logged and swallowed.

All user-supplied text (title, description, comments) is sanitized with
bleach.clean() to strip HTML tags.
"""

import logging
import uuid

import bleach
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from bugflow import roles
from bugflow.errors import (
    ForbiddenError,
    LimitExceededError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from bugflow.extensions import db
from bugflow.models.history import TicketHistory
from bugflow.models.ticket import Comment, Ticket
from bugflow.services import (
    notification_service,
    storage_service,
    ticket_store,
    visibility_service,
)

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"


def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return ""
    return bleach.clean(str(text), tags=[], strip=True).strip()


def _commit(action):
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"{action} failed to commit: {e}")
        raise StorageError() from e


def _notify(event, ticket, actor, **extra):
    """Hand an event to the dispatcher. Never raises."""
    try:
        notification_service.dispatch(event, ticket, actor, **extra)
    except Exception:
        db.session.rollback()
        logger.exception(f"Notification '{event}' failed for ticket {ticket.id}")


def _get_ticket_or_404(ticket_id):
    ticket = ticket_store.get_ticket(ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return ticket


def _get_visible_ticket(actor, ticket_id):
    ticket = _get_ticket_or_404(ticket_id)
    if not visibility_service.can_view_ticket(actor, ticket):
        raise ForbiddenError()
    return ticket


# ──────────────────────────────────────────────
# Tickets
# ──────────────────────────────────────────────

def create_ticket(actor, title, description, type_, app, priority=None):
    """Open a new ticket on behalf of the actor.

    Args:
        actor: The submitting User.
        title: 5..200 characters after sanitizing.
        description: At least 20 characters after sanitizing.
        type_: One of Ticket.TYPES.
        app: One of the TICKET_APPS config values.
        priority: One of Ticket.PRIORITIES; defaults to "medium".

    Returns:
        The created Ticket.

    Raises:
        ValidationError: Naming the first violated constraint.
        StorageError: If the write fails.
    """
    title = _sanitize(title)
    description = _sanitize(description)
    priority = priority or "medium"

    if len(title) < Ticket.TITLE_MIN:
        raise ValidationError(f"Title must be at least {Ticket.TITLE_MIN} characters.")
    if len(title) > Ticket.TITLE_MAX:
        raise ValidationError(f"Title must be at most {Ticket.TITLE_MAX} characters.")
    # Titles end up in email Subject headers
    if any(ch in title for ch in "\r\n\x00"):
        raise ValidationError("Title must be a single line.")
    if len(description) < Ticket.DESCRIPTION_MIN:
        raise ValidationError(
            f"Description must be at least {Ticket.DESCRIPTION_MIN} characters."
        )
    if type_ not in Ticket.TYPES:
        raise ValidationError(
            f"Invalid type '{type_}'. Must be one of: {', '.join(Ticket.TYPES)}"
        )
    apps = current_app.config["TICKET_APPS"]
    if app not in apps:
        raise ValidationError(f"Invalid app '{app}'. Must be one of: {', '.join(apps)}")
    if priority not in Ticket.PRIORITIES:
        raise ValidationError(
            f"Invalid priority '{priority}'. Must be one of: {', '.join(Ticket.PRIORITIES)}"
        )

    try:
        ticket = ticket_store.create_ticket(
            actor.id, title, description, type_, app, priority
        )
        ticket_store.create_history(
            ticket.id,
            actor,
            TicketHistory.CREATED,
            f"Ticket created by {actor.display_name}",
            new_value=ticket.status,
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Ticket creation failed: {e}")
        raise StorageError() from e
    _commit("Ticket creation")

    logger.info(f"Ticket {ticket.id} created by {actor.username}")
    _notify(notification_service.CREATED, ticket, actor)
    return ticket


def change_status(actor, ticket_id, new_status, comment=None):
    """Move a ticket to another status, optionally with a comment.

    Any status may follow any other. Re-setting the current status changes
    nothing; a comment sent along with it is still stored as a regular note.

    Raises:
        NotFoundError: Unknown ticket.
        ForbiddenError: Plain users, and devs not assigned to the ticket.
        ValidationError: Unknown status or oversized comment.
    """
    ticket = _get_ticket_or_404(ticket_id)
    if not roles.can_change_status(actor, ticket):
        raise ForbiddenError("Only admins or the assigned developer can change the status.")
    if new_status not in Ticket.STATUSES:
        raise ValidationError(
            f"Invalid status '{new_status}'. Must be one of: {', '.join(Ticket.STATUSES)}"
        )
    comment = _sanitize(comment)
    if len(comment) > Comment.MAX_LENGTH:
        raise ValidationError(f"Comment must be at most {Comment.MAX_LENGTH} characters.")

    old_status = ticket.status
    if old_status == new_status:
        if comment:
            add_comment(actor, ticket_id, comment)
        return ticket

    old_label = Ticket.status_label(old_status)
    new_label = Ticket.status_label(new_status)
    try:
        ticket_store.update_ticket_status(ticket, new_status)
        if comment:
            ticket_store.create_comment(
                ticket.id, actor.id, comment, is_status_change=True
            )
        ticket_store.create_history(
            ticket.id,
            actor,
            TicketHistory.STATUS_CHANGED,
            f"Status changed from {old_label} to {new_label}",
            old_value=old_status,
            new_value=new_status,
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Status change failed for ticket {ticket_id}: {e}")
        raise StorageError() from e
    _commit("Status change")

    logger.info(f"Ticket {ticket.id} status {old_status} -> {new_status} by {actor.username}")
    _notify(
        notification_service.STATUS_CHANGED,
        ticket,
        actor,
        old_status=old_status,
        new_status=new_status,
        comment=comment or None,
    )
    return ticket


def assign_ticket(actor, ticket_id, assignee_id):
    """Assign a ticket to a dev/admin, or unassign it with None.

    Raises:
        NotFoundError: Unknown ticket or assignee.
        ForbiddenError: Actor is not an admin.
        ValidationError: Assignee is not an active dev or admin.
    """
    ticket = _get_ticket_or_404(ticket_id)
    if not roles.can_assign(actor):
        raise ForbiddenError("Only admins can assign tickets.")

    assignee = None
    if assignee_id:
        assignee = ticket_store.get_user(assignee_id)
        if assignee is None:
            raise NotFoundError("Assignee not found")
        if not roles.can_be_assigned(assignee):
            raise ValidationError("Tickets can only be assigned to developers or admins.")
        if not assignee.is_active:
            raise ValidationError("Cannot assign a ticket to an inactive user.")

    new_id = assignee.id if assignee else None
    if new_id == ticket.assigned_to_user_id:
        return ticket

    old_name = ticket.assigned_to_name or UNASSIGNED
    new_name = assignee.display_name if assignee else None
    message = f"Assigned to {new_name}" if assignee else f"Unassigned from {old_name}"
    try:
        ticket_store.update_ticket_assignment(ticket, new_id, new_name)
        ticket_store.create_history(
            ticket.id,
            actor,
            TicketHistory.ASSIGNED,
            message,
            old_value=old_name,
            new_value=new_name or UNASSIGNED,
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Assignment failed for ticket {ticket_id}: {e}")
        raise StorageError() from e
    _commit("Assignment")

    logger.info(f"Ticket {ticket.id} assigned to {new_name or UNASSIGNED} by {actor.username}")
    _notify(
        notification_service.ASSIGNED,
        ticket,
        actor,
        old_name=old_name,
        new_name=new_name or UNASSIGNED,
        assignee=assignee,
    )
    return ticket


def delete_ticket(actor, ticket_id):
    """Delete a ticket with its attachments, comments and history.

    Blob bytes are removed after the commit, best-effort.

    Returns:
        Number of rows deleted, the ticket included.
    """
    ticket = _get_ticket_or_404(ticket_id)
    if not roles.can_delete_ticket(actor):
        raise ForbiddenError("Only admins can delete tickets.")

    try:
        deleted, storage_keys = ticket_store.delete_ticket_cascade(ticket)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Delete failed for ticket {ticket_id}: {e}")
        raise StorageError() from e
    _commit("Ticket deletion")

    for key in storage_keys:
        storage_service.delete_blob(key)

    logger.info(f"Ticket {ticket_id} deleted by {actor.username} ({deleted} rows)")
    return deleted


def get_ticket(actor, ticket_id):
    return _get_visible_ticket(actor, ticket_id)


def _check_filters(status=None, type_=None, priority=None):
    if status and status not in Ticket.STATUSES:
        raise ValidationError(f"Invalid status filter '{status}'.")
    if type_ and type_ not in Ticket.TYPES:
        raise ValidationError(f"Invalid type filter '{type_}'.")
    if priority and priority not in Ticket.PRIORITIES:
        raise ValidationError(f"Invalid priority filter '{priority}'.")


def list_tickets(actor, status=None, type_=None, app=None, priority=None, search=None):
    """Tickets the actor may read, newest first."""
    _check_filters(status, type_, priority)
    query = visibility_service.scope_ticket_query(actor, ticket_store.ticket_query())
    return ticket_store.list_tickets(
        query,
        status=status,
        type_=type_,
        app=app,
        priority=priority,
        search=_sanitize(search) or None,
    )


def list_all_tickets(actor, status=None, type_=None, app=None, priority=None, search=None):
    """Admin view over every ticket."""
    if not roles.can_administer(actor):
        raise ForbiddenError()
    _check_filters(status, type_, priority)
    return ticket_store.list_tickets(
        status=status,
        type_=type_,
        app=app,
        priority=priority,
        search=_sanitize(search) or None,
    )


# ──────────────────────────────────────────────
# Comments
# ──────────────────────────────────────────────

def add_comment(actor, ticket_id, content, is_internal=False):
    """Post a note on a ticket the actor can see.

    Raises:
        NotFoundError: Unknown ticket.
        ForbiddenError: Ticket not visible, or internal note from a plain user.
        ValidationError: Empty or oversized content.
    """
    ticket = _get_visible_ticket(actor, ticket_id)
    is_internal = bool(is_internal)
    if is_internal and not roles.can_post_internal(actor):
        raise ForbiddenError("Only developers and admins can post internal notes.")

    content = _sanitize(content)
    if not content:
        raise ValidationError("Comment cannot be empty.")
    if len(content) > Comment.MAX_LENGTH:
        raise ValidationError(f"Comment must be at most {Comment.MAX_LENGTH} characters.")

    if is_internal:
        kind, message = TicketHistory.INTERNAL_NOTE, f"{actor.display_name} added an internal note"
    else:
        kind, message = TicketHistory.PUBLIC_NOTE, f"{actor.display_name} added a comment"

    try:
        comment = ticket_store.create_comment(
            ticket.id, actor.id, content, is_internal=is_internal
        )
        ticket_store.touch_ticket(ticket)
        ticket_store.create_history(ticket.id, actor, kind, message)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Comment failed for ticket {ticket_id}: {e}")
        raise StorageError() from e
    _commit("Comment")

    logger.info(
        f"{'Internal note' if is_internal else 'Comment'} added to ticket {ticket.id} "
        f"by {actor.username}"
    )
    if not is_internal:
        _notify(notification_service.NOTE_ADDED, ticket, actor, comment=comment)
    return comment


def list_comments(actor, ticket_id):
    ticket = _get_visible_ticket(actor, ticket_id)
    comments = ticket_store.list_comments(
        ticket.id, include_internal=roles.is_staff(actor)
    )
    return visibility_service.filter_comments(actor, comments)


# ──────────────────────────────────────────────
# Attachments
# ──────────────────────────────────────────────

def _read_upload(upload):
    """Return (filename, mime_type, data) for an uploaded file."""
    filename = (getattr(upload, "filename", None) or "").strip()
    mime_type = getattr(upload, "mimetype", None) or getattr(upload, "content_type", None) or ""
    mime_type = mime_type.split(";")[0].strip().lower()
    data = upload.read()
    return filename or "upload", mime_type, data


def add_attachments(actor, ticket_id, files):
    """Attach a batch of files to a ticket, all or nothing.

    The whole batch is validated before any byte is stored. If a blob write
    or the commit fails midway, already-written blobs are removed.

    Returns:
        The created TicketAttachment rows.

    Raises:
        ValidationError: No files, disallowed type or empty file.
        LimitExceededError: Too many attachments or a file over the size cap.
    """
    ticket = _get_visible_ticket(actor, ticket_id)
    files = [f for f in (files or []) if f is not None]
    if not files:
        raise ValidationError("No files uploaded.")

    max_count = current_app.config["ATTACHMENT_MAX_PER_TICKET"]
    max_bytes = current_app.config["ATTACHMENT_MAX_BYTES"]
    allowed = current_app.config["ATTACHMENT_ALLOWED_TYPES"]

    existing = ticket_store.count_attachments(ticket.id)
    if existing + len(files) > max_count:
        raise LimitExceededError(
            f"A ticket can have at most {max_count} attachments "
            f"({existing} already attached, {len(files)} uploaded)."
        )

    uploads = []
    for upload in files:
        filename, mime_type, data = _read_upload(upload)
        if mime_type not in allowed:
            raise ValidationError(
                f"File type '{mime_type or 'unknown'}' is not allowed for {filename}. "
                f"Accepted: {', '.join(allowed)}"
            )
        if not data:
            raise ValidationError(f"File {filename} is empty.")
        if len(data) > max_bytes:
            raise LimitExceededError(
                f"File {filename} is too large ({len(data) / (1024 * 1024):.1f} MB). "
                f"Maximum is {max_bytes // (1024 * 1024)} MB."
            )
        uploads.append((filename, mime_type, data))

    written = []
    try:
        attachments = []
        for filename, mime_type, data in uploads:
            attachment_id = str(uuid.uuid4())
            key = storage_service.build_storage_key(
                ticket.id, attachment_id, filename, mime_type
            )
            storage_service.put_blob(key, data, mime_type)
            written.append(key)
            attachments.append(ticket_store.create_attachment(
                attachment_id, ticket.id, filename, key, mime_type, len(data), actor.id
            ))

        names = ", ".join(a.original_name for a in attachments)
        noun = "attachment" if len(attachments) == 1 else "attachments"
        ticket_store.touch_ticket(ticket)
        ticket_store.create_history(
            ticket.id,
            actor,
            TicketHistory.ATTACHMENT_ADDED,
            f"Added {len(attachments)} {noun}: {names}",
            new_value=str(len(attachments)),
        )
        db.session.commit()
    except (StorageError, SQLAlchemyError) as e:
        db.session.rollback()
        for key in written:
            storage_service.delete_blob(key)
        logger.error(f"Attachment upload failed for ticket {ticket_id}: {e}")
        if isinstance(e, StorageError):
            raise
        raise StorageError() from e

    logger.info(f"{len(attachments)} attachment(s) added to ticket {ticket.id} by {actor.username}")
    return attachments


def list_attachments(actor, ticket_id):
    ticket = _get_visible_ticket(actor, ticket_id)
    return ticket_store.list_attachments(ticket.id)


def get_attachment_for_download(actor, attachment_id):
    """Return (attachment, bytes) if the actor can see the owning ticket."""
    attachment = ticket_store.get_attachment(attachment_id)
    if attachment is None:
        raise NotFoundError("Attachment not found")
    _get_visible_ticket(actor, attachment.ticket_id)
    return attachment, storage_service.get_blob(attachment.storage_key)


# ──────────────────────────────────────────────
# History
# ──────────────────────────────────────────────

def list_history(actor, ticket_id):
    ticket = _get_visible_ticket(actor, ticket_id)
    entries = ticket_store.list_history(
        ticket.id, exclude_kinds=visibility_service.hidden_history_kinds(actor)
    )
    return visibility_service.filter_history(actor, entries)
