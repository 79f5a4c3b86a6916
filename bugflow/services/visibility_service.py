"""Visibility filter: role-dependent projection of tickets, comments, history.

- Tickets: users read their own; devs read what they submitted or are
  currently assigned to; admins read everything.
- Comments: internal comments only reach devs and admins.
- History: INTERNAL_NOTE entries only reach devs and admins.
"""

from sqlalchemy import or_

from bugflow import roles
from bugflow.models.history import TicketHistory
from bugflow.models.ticket import Ticket
from bugflow.roles import Role


def can_view_ticket(actor, ticket):
    return roles.can_view_ticket(actor, ticket)


def scope_ticket_query(actor, query):
    """Narrow a Ticket query to the rows the actor may read."""
    role = roles.role_of(actor)
    if role is Role.ADMIN:
        return query
    if role is Role.DEV:
        return query.filter(
            or_(
                Ticket.submitter_user_id == actor.id,
                Ticket.assigned_to_user_id == actor.id,
            )
        )
    if role is Role.USER:
        return query.filter(Ticket.submitter_user_id == actor.id)
    raise ValueError(f"Unhandled role: {role!r}")


def filter_comments(actor, comments):
    if roles.is_staff(actor):
        return list(comments)
    return [c for c in comments if not c.is_internal]


def filter_history(actor, entries):
    if roles.is_staff(actor):
        return list(entries)
    return [e for e in entries if e.kind not in TicketHistory.INTERNAL_KINDS]


def hidden_history_kinds(actor):
    """Kinds to exclude at query level for this actor."""
    if roles.is_staff(actor):
        return set()
    return set(TicketHistory.INTERNAL_KINDS)
