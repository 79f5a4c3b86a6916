"""
Email service for BugFlow.

Renders a Jinja2 template pair (HTML + plain text), records the job as an
EmailLog row in "queued" state, then hands it to SMTP: in a background
thread by default, inline when MAIL_SEND_ASYNC is off. The log row moves to
"sent" or "failed" once the attempt finishes; transport errors are recorded
there and never raised to the caller.

SMTP connection details come from the AppSettings row when its SMTP override
is enabled, otherwise from the MAIL_* config values.

Usage:
    from bugflow.services.email_service import send_email_sync

    log = send_email_sync(
        to="ops@example.com",
        subject="Hello",
        template="test_email",
        context={"actor": current_user},
    )
"""

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

from bugflow.errors import NotificationDeliveryError
from bugflow.extensions import db
from bugflow.services import settings_service, ticket_store

logger = logging.getLogger(__name__)


def resolve_smtp_config(app):
    """Return the SMTP settings to use right now."""
    settings = settings_service.get_settings()
    if settings.smtp_enabled:
        return {
            "host": settings.smtp_host,
            "port": settings.smtp_port or 587,
            "secure": settings.smtp_secure,
            "username": settings.smtp_user,
            "password": settings.smtp_pass,
            "from_name": settings.smtp_from_name or app.config.get("MAIL_FROM_NAME", "BugFlow"),
            "from_email": settings.smtp_from_email or settings.smtp_user,
        }
    return {
        "host": app.config.get("MAIL_SMTP_HOST"),
        "port": app.config.get("MAIL_SMTP_PORT", 587),
        "secure": app.config.get("MAIL_USE_TLS", True),
        "username": app.config.get("MAIL_USERNAME"),
        "password": app.config.get("MAIL_PASSWORD"),
        "from_name": app.config.get("MAIL_FROM_NAME", "BugFlow"),
        "from_email": app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME"),
    }


def _build_message(smtp, to, subject, html_body, text_body, reply_to=None):
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{smtp['from_name']} <{smtp['from_email']}>"
    msg["To"] = ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    # Plain text first; clients prefer the last alternative they can render.
    msg.attach(MIMEText(text_body, "plain"))
    msg.attach(MIMEText(html_body, "html"))
    return msg


def _send_smtp(smtp, msg):
    """Deliver one message. Raises NotificationDeliveryError on any failure."""
    if not smtp["host"]:
        raise NotificationDeliveryError("SMTP host is not configured.")
    if not smtp["username"] or not smtp["password"]:
        raise NotificationDeliveryError("SMTP credentials are not configured.")

    port = int(smtp["port"] or 587)
    try:
        if port == 465:
            server = smtplib.SMTP_SSL(smtp["host"], port, timeout=30)
        else:
            server = smtplib.SMTP(smtp["host"], port, timeout=30)
        with server:
            server.ehlo()
            if smtp["secure"] and port != 465:
                server.starttls()
                server.ehlo()
            server.login(smtp["username"], smtp["password"])
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationDeliveryError(str(e) or e.__class__.__name__) from e


def _deliver(app, log_id, subject, html_body, text_body, reply_to=None):
    """Attempt delivery for a queued EmailLog and record the outcome."""
    log = ticket_store.get_email_log(log_id)
    if log is None:
        logger.error(f"EmailLog {log_id} vanished before delivery")
        return None

    error = None
    try:
        smtp = resolve_smtp_config(app)
        msg = _build_message(
            smtp, log.to_addresses, subject, html_body, text_body, reply_to
        )
        _send_smtp(smtp, msg)
    except NotificationDeliveryError as e:
        error = e.message
    except Exception as e:
        # Malformed headers surface here, when the message is serialized
        logger.exception(f"Unexpected error delivering EmailLog {log.id}")
        error = str(e) or e.__class__.__name__

    if error is not None:
        ticket_store.mark_email_failed(log, error)
        db.session.commit()
        logger.error(f"Failed to send email to {', '.join(log.to_addresses)}: {error}")
        return log

    ticket_store.mark_email_sent(log)
    db.session.commit()
    logger.info(f"Email sent to {', '.join(log.to_addresses)}: {subject}")
    return log


def _deliver_in_background(app, log_id, subject, html_body, text_body, reply_to=None):
    """Thread target: fresh app context, fresh session."""
    with app.app_context():
        try:
            _deliver(app, log_id, subject, html_body, text_body, reply_to)
        except Exception:
            db.session.rollback()
            logger.exception(f"Background delivery crashed for EmailLog {log_id}")
        finally:
            db.session.remove()


def render_email(template, context=None):
    """Render the HTML and plain-text parts of an email template pair."""
    context = context or {}
    html_body = render_template(f"emails/{template}.html", **context)
    text_body = render_template(f"emails/{template}.txt", **context)
    return html_body, text_body


def _queue(to, subject, html_body, text_body, event=None, ticket_id=None):
    recipients = [addr for addr in dict.fromkeys(to) if addr]
    if not recipients:
        return None
    log = ticket_store.create_email_log(
        recipients, subject, text_body, event=event, ticket_id=ticket_id
    )
    db.session.commit()
    return log


def send_message(to, subject, html_body, text_body, reply_to=None, event=None, ticket_id=None, wait=False):
    """
    Queue and send an already-rendered email.

    Args:
        to:         Recipient address or list of addresses.
        subject:    Email subject line.
        html_body:  Rendered HTML part.
        text_body:  Rendered plain-text part, also stored on the log.
        reply_to:   Optional reply-to address.
        event:      Workflow event name, stored on the log.
        ticket_id:  Ticket the email is about, stored on the log.
        wait:       Deliver inline even when MAIL_SEND_ASYNC is on.

    Returns:
        The EmailLog row, or None when there was nobody to send to.
    """
    app = current_app._get_current_object()
    to = [to] if isinstance(to, str) else list(to)

    log = _queue(to, subject, html_body, text_body, event=event, ticket_id=ticket_id)
    if log is None:
        return None

    if app.config.get("MAIL_SEND_ASYNC", True) and not wait:
        # Send in background thread so the request doesn't block
        thread = threading.Thread(
            target=_deliver_in_background,
            args=(app, log.id, subject, html_body, text_body, reply_to),
        )
        thread.daemon = True
        thread.start()
        return log

    return _deliver(app, log.id, subject, html_body, text_body, reply_to)


def send_email_sync(to, subject, template, context=None, reply_to=None, event=None, ticket_id=None):
    """
    Render templates/emails/<template>.{html,txt} and send, blocking until the
    attempt finishes. Use where the caller needs the outcome, e.g. the admin
    "send test email" button.
    """
    html_body, text_body = render_email(template, context)
    return send_message(
        to, subject, html_body, text_body,
        reply_to=reply_to, event=event, ticket_id=ticket_id, wait=True,
    )
