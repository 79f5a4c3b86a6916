"""
Custom route decorators for access control.

- admin_required: ensures user is logged in AND holds the admin role.
"""

from functools import wraps

from flask_login import current_user, login_required

from bugflow import roles
from bugflow.errors import ForbiddenError


def admin_required(f):
    """Require login + admin role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not roles.can_administer(current_user):
            raise ForbiddenError()
        return f(*args, **kwargs)

    return decorated
