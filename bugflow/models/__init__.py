# Models package: import all models here so Alembic can discover them.

from bugflow.models.user import User  # noqa: F401
from bugflow.models.ticket import Ticket, Comment, TicketAttachment  # noqa: F401
from bugflow.models.history import TicketHistory  # noqa: F401
from bugflow.models.email_log import EmailLog  # noqa: F401
from bugflow.models.settings import AppSettings  # noqa: F401
