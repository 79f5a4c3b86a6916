"""Role model and per-action authorization predicates.

Three tiers:
  user : submits tickets and follows their own tickets.
  dev  : works the tickets they submitted or are assigned to.
  admin: sees and manages everything.

Every predicate dispatches on the closed Role enum and handles each member
explicitly. Unknown roles raise ValueError.
"""

import enum


class Role(str, enum.Enum):
    USER = "user"
    DEV = "dev"
    ADMIN = "admin"

    @property
    def label(self):
        return ROLE_LABELS[self]

    @classmethod
    def values(cls):
        return [r.value for r in cls]


ROLE_LABELS = {
    Role.USER: "User",
    Role.DEV: "Developer",
    Role.ADMIN: "Administrator",
}


def role_of(actor):
    """Return the actor's Role. Accepts enum members or their string values."""
    return Role(actor.role)


def _unhandled(role):
    return ValueError(f"Unhandled role: {role!r}")


def is_staff(actor):
    """Dev or admin: may see internal notes and internal history."""
    role = role_of(actor)
    if role is Role.ADMIN or role is Role.DEV:
        return True
    if role is Role.USER:
        return False
    raise _unhandled(role)


def can_view_ticket(actor, ticket):
    role = role_of(actor)
    if role is Role.ADMIN:
        return True
    if role is Role.DEV:
        return actor.id in (ticket.submitter_user_id, ticket.assigned_to_user_id)
    if role is Role.USER:
        return ticket.submitter_user_id == actor.id
    raise _unhandled(role)


def can_change_status(actor, ticket):
    role = role_of(actor)
    if role is Role.ADMIN:
        return True
    if role is Role.DEV:
        return ticket.assigned_to_user_id == actor.id
    if role is Role.USER:
        return False
    raise _unhandled(role)


def can_post_internal(actor):
    return is_staff(actor)


def can_assign(actor):
    role = role_of(actor)
    if role is Role.ADMIN:
        return True
    if role is Role.DEV or role is Role.USER:
        return False
    raise _unhandled(role)


def can_be_assigned(user):
    """Only devs and admins can own a ticket."""
    return is_staff(user)


# Deleting tickets, managing users and editing settings share the admin gate.
can_delete_ticket = can_assign
can_administer = can_assign
