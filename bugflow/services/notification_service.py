"""Notification dispatcher: maps workflow events to outbound email jobs.

Events:
    created         admin recipients + confirmation to the submitter
    status_changed  submitter + admin recipients
    assigned        submitter + admin recipients + the new assignee
    note_added      submitter + admin recipients (public notes only)

Recipients are de-duplicated case-insensitively and the actor's own address
is dropped, except for the submission confirmation. Admin recipients come
from AppSettings, falling back to the active admin users' emails.
"""

import logging
from dataclasses import dataclass, field

from flask import current_app

from bugflow.models.ticket import Ticket
from bugflow.services import email_service, settings_service, ticket_store

logger = logging.getLogger(__name__)

CREATED = "created"
STATUS_CHANGED = "status_changed"
ASSIGNED = "assigned"
NOTE_ADDED = "note_added"

EVENTS = [CREATED, STATUS_CHANGED, ASSIGNED, NOTE_ADDED]


@dataclass
class EmailJob:
    recipients: list
    subject: str
    html_body: str
    text_body: str
    event: str = None
    ticket_id: str = None
    template: str = field(default=None, repr=False)


def admin_recipients():
    """Configured admin recipient list, or every active admin's email."""
    configured = settings_service.get_settings().get_recipient_list()
    if configured:
        return configured
    return ticket_store.list_active_admin_emails()


def dedupe_recipients(addresses, exclude=None):
    """Drop blanks, duplicates (case-insensitive) and the excluded address."""
    skip = (exclude or "").strip().lower()
    seen = set()
    result = []
    for address in addresses:
        address = (address or "").strip()
        key = address.lower()
        if not address or key in seen or (skip and key == skip):
            continue
        seen.add(key)
        result.append(address)
    return result


def _ticket_url(ticket):
    base = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return f"{base}/tickets/{ticket.id}"


def _job(event, ticket, recipients, subject, template, context):
    if not recipients:
        return None
    # Header-safe: no line breaks in the Subject
    subject = " ".join(subject.split())
    html_body, text_body = email_service.render_email(template, context)
    return EmailJob(
        recipients=recipients,
        subject=subject,
        html_body=html_body,
        text_body=text_body,
        event=event,
        ticket_id=ticket.id,
        template=template,
    )


def build_jobs(event, ticket, actor, **extra):
    """Return the EmailJobs for one workflow event.

    Args:
        event:  One of EVENTS.
        ticket: The ticket the event happened to.
        actor:  The user who triggered it.
        extra:  Event details: old_status/new_status, old_name/new_name and
                assignee, or comment.

    Raises:
        ValueError: Unknown event.
    """
    if event not in EVENTS:
        raise ValueError(f"Unknown notification event: {event!r}")

    submitter = ticket.submitter
    submitter_email = submitter.email if submitter else None
    actor_email = actor.email if actor is not None else None
    admins = admin_recipients()

    context = {
        "ticket": ticket,
        "actor": actor,
        "submitter": submitter,
        "ticket_url": _ticket_url(ticket),
        **extra,
    }

    jobs = []
    if event == CREATED:
        jobs.append(_job(
            event, ticket,
            dedupe_recipients(admins, exclude=actor_email),
            f'[BugFlow] New {ticket.type_label}: "{ticket.title}"',
            "ticket_created_admin",
            context,
        ))
        # The submitter always gets their confirmation, even as the actor.
        jobs.append(_job(
            event, ticket,
            dedupe_recipients([submitter_email]),
            f'[BugFlow] Ticket received: "{ticket.title}"',
            "ticket_created_confirmation",
            context,
        ))

    elif event == STATUS_CHANGED:
        context["old_label"] = Ticket.status_label(extra.get("old_status"))
        context["new_label"] = Ticket.status_label(extra.get("new_status"))
        jobs.append(_job(
            event, ticket,
            dedupe_recipients([submitter_email, *admins], exclude=actor_email),
            f'[BugFlow] Ticket Update: "{ticket.title}" - {context["new_label"]}',
            "ticket_status_changed",
            context,
        ))

    elif event == ASSIGNED:
        assignee = extra.get("assignee")
        addresses = [submitter_email, *admins]
        if assignee is not None:
            addresses.append(assignee.email)
        jobs.append(_job(
            event, ticket,
            dedupe_recipients(addresses, exclude=actor_email),
            f'[BugFlow] Ticket Assigned: "{ticket.title}" - {extra.get("new_name") or "Unassigned"}',
            "ticket_assigned",
            context,
        ))

    elif event == NOTE_ADDED:
        jobs.append(_job(
            event, ticket,
            dedupe_recipients([submitter_email, *admins], exclude=actor_email),
            f'[BugFlow] New note on "{ticket.title}"',
            "ticket_note_added",
            context,
        ))

    return [job for job in jobs if job is not None]


def dispatch(event, ticket, actor, **extra):
    """Build and send every job for an event. Returns the EmailLog rows.

    Delivery failures end up on the EmailLog; anything else raises and is
    the caller's to swallow.
    """
    logs = []
    for job in build_jobs(event, ticket, actor, **extra):
        log = email_service.send_message(
            job.recipients,
            job.subject,
            job.html_body,
            job.text_body,
            event=job.event,
            ticket_id=job.ticket_id,
        )
        if log is not None:
            logs.append(log)
    logger.info(f"Dispatched {len(logs)} email(s) for {event} on ticket {ticket.id}")
    return logs
