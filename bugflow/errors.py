"""Error taxonomy shared by the workflow engine and the HTTP layer.

Every error carries the HTTP status it maps to; the app-level error handler
turns them into ``{"message": ...}`` JSON responses.
"""


class BugflowError(Exception):
    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BugflowError, ValueError):
    """Malformed or out-of-range input. Message names the first violation."""

    status_code = 400
    default_message = "Invalid input."


class AuthenticationError(BugflowError):
    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(BugflowError):
    status_code = 403
    default_message = "Not authorized"


class NotFoundError(BugflowError):
    status_code = 404
    default_message = "Not found"


class LimitExceededError(BugflowError):
    """Attachment count or size limits."""

    status_code = 400
    default_message = "Limit exceeded."


class NotificationDeliveryError(BugflowError):
    """Email transport failure. Recorded on the EmailLog, never raised to callers."""

    status_code = 502
    default_message = "Email delivery failed."


class StorageError(BugflowError):
    """Persistence or blob-store failure. Surfaced without internals."""

    status_code = 500
    default_message = "A storage error occurred. Please try again."
