"""Tickets blueprint: /api/tickets/* and /api/attachments/*

Thin JSON layer over ticket_service: parse the request, call the workflow
operation with current_user as the actor, serialize the result. Errors
raised by the service are turned into JSON by the app-level handlers.
"""

import io

from flask import Blueprint, jsonify, request, send_file
from flask_login import current_user, login_required

from bugflow.errors import ValidationError
from bugflow.services import ticket_service

tickets_bp = Blueprint("tickets", __name__, url_prefix="/api")


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _filters():
    args = request.args
    return {
        "status": args.get("status") or None,
        "type_": args.get("type") or None,
        "app": args.get("app") or None,
        "priority": args.get("priority") or None,
        "search": args.get("q") or None,
    }


# ──────────────────────────────────────────────
# Tickets
# ──────────────────────────────────────────────

@tickets_bp.route("/tickets", methods=["POST"])
@login_required
def create_ticket():
    data = _json_body()
    ticket = ticket_service.create_ticket(
        current_user,
        title=data.get("title"),
        description=data.get("description"),
        type_=data.get("type"),
        app=data.get("app"),
        priority=data.get("priority"),
    )
    return jsonify(ticket.to_dict()), 201


@tickets_bp.route("/tickets", methods=["GET"])
@login_required
def list_tickets():
    tickets = ticket_service.list_tickets(current_user, **_filters())
    return jsonify([t.to_dict() for t in tickets])


@tickets_bp.route("/tickets/<ticket_id>", methods=["GET"])
@login_required
def get_ticket(ticket_id):
    ticket = ticket_service.get_ticket(current_user, ticket_id)
    return jsonify(ticket.to_dict(include_submitter=True))


@tickets_bp.route("/tickets/<ticket_id>/status", methods=["PATCH"])
@login_required
def change_status(ticket_id):
    data = _json_body()
    status = data.get("status")
    if not status:
        raise ValidationError("Status is required.")
    ticket = ticket_service.change_status(
        current_user, ticket_id, status, comment=data.get("comment")
    )
    return jsonify(ticket.to_dict())


@tickets_bp.route("/tickets/<ticket_id>/assign", methods=["PATCH"])
@login_required
def assign_ticket(ticket_id):
    data = _json_body()
    if "assignedToUserId" not in data:
        raise ValidationError("assignedToUserId is required (null to unassign).")
    assignee_id = data.get("assignedToUserId")
    if assignee_id is not None and not isinstance(assignee_id, str):
        raise ValidationError("assignedToUserId must be a string or null.")
    ticket = ticket_service.assign_ticket(current_user, ticket_id, assignee_id or None)
    return jsonify(ticket.to_dict())


@tickets_bp.route("/tickets/<ticket_id>", methods=["DELETE"])
@login_required
def delete_ticket(ticket_id):
    deleted = ticket_service.delete_ticket(current_user, ticket_id)
    return jsonify(message="Ticket deleted", deleted=deleted)


# ──────────────────────────────────────────────
# Comments
# ──────────────────────────────────────────────

@tickets_bp.route("/tickets/<ticket_id>/comments", methods=["GET"])
@login_required
def list_comments(ticket_id):
    comments = ticket_service.list_comments(current_user, ticket_id)
    return jsonify([c.to_dict() for c in comments])


@tickets_bp.route("/tickets/<ticket_id>/comments", methods=["POST"])
@login_required
def add_comment(ticket_id):
    data = _json_body()
    is_internal = data.get("isInternal", False)
    if not isinstance(is_internal, bool):
        raise ValidationError("isInternal must be true or false.")
    comment = ticket_service.add_comment(
        current_user, ticket_id, data.get("content"), is_internal=is_internal
    )
    return jsonify(comment.to_dict()), 201


# ──────────────────────────────────────────────
# Attachments
# ──────────────────────────────────────────────

@tickets_bp.route("/tickets/<ticket_id>/attachments", methods=["GET"])
@login_required
def list_attachments(ticket_id):
    attachments = ticket_service.list_attachments(current_user, ticket_id)
    return jsonify([a.to_dict() for a in attachments])


@tickets_bp.route("/tickets/<ticket_id>/attachments", methods=["POST"])
@login_required
def add_attachments(ticket_id):
    files = [f for f in request.files.getlist("files") if f and f.filename]
    attachments = ticket_service.add_attachments(current_user, ticket_id, files)
    return jsonify([a.to_dict() for a in attachments]), 201


@tickets_bp.route("/attachments/<attachment_id>/download", methods=["GET"])
@login_required
def download_attachment(attachment_id):
    attachment, data = ticket_service.get_attachment_for_download(
        current_user, attachment_id
    )
    return send_file(
        io.BytesIO(data),
        mimetype=attachment.mime_type,
        download_name=attachment.original_name,
    )


# ──────────────────────────────────────────────
# History
# ──────────────────────────────────────────────

@tickets_bp.route("/tickets/<ticket_id>/history", methods=["GET"])
@login_required
def list_history(ticket_id):
    entries = ticket_service.list_history(current_user, ticket_id)
    return jsonify([e.to_dict() for e in entries])
