"""Tests for the /api/tickets/* JSON surface.

Covers:
- Create / list / detail with visibility scoping
- Status and assignment routes (role checks, body validation)
- Comments incl. internal notes
- Multipart attachment upload + download
- History feed
- Delete (admin only)
"""

import io

import pytest

from bugflow.models.email_log import EmailLog
from bugflow.services import ticket_service

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# ─── Helpers ───────────────────────────────────────────────

def _login(client, username, password="secret123"):
    """Log in through the JSON auth endpoint."""
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200
    return resp


def _new_ticket_payload(**overrides):
    payload = {
        "title": "Map freezes on route change",
        "description": "Switching routes while navigating freezes the map view.",
        "type": "bug",
        "app": "driver_app",
        "priority": "high",
    }
    payload.update(overrides)
    return payload


# ─── Create / read ─────────────────────────────────────────

class TestCreateAndRead:

    def test_create_ticket(self, client, users):
        _login(client, "mike_tester")

        resp = client.post("/api/tickets", json=_new_ticket_payload())

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["status"] == "open"
        assert data["userId"] == users["user"].id
        assert data["assignedToUserId"] is None
        assert EmailLog.query.filter_by(event="created").count() == 2

    def test_create_defaults_priority(self, client, users):
        _login(client, "mike_tester")
        resp = client.post("/api/tickets", json=_new_ticket_payload(priority=None))
        assert resp.get_json()["priority"] == "medium"

    @pytest.mark.parametrize("field,value", [
        ("title", "Oops"),
        ("description", "Too short"),
        ("type", "question"),
        ("app", "fridge"),
        ("priority", "urgent"),
    ])
    def test_create_validation(self, client, users, field, value):
        _login(client, "mike_tester")

        resp = client.post("/api/tickets", json=_new_ticket_payload(**{field: value}))

        assert resp.status_code == 400
        assert resp.get_json()["message"]

    def test_title_is_sanitized(self, client, users):
        _login(client, "mike_tester")
        resp = client.post(
            "/api/tickets",
            json=_new_ticket_payload(title="<script>alert(1)</script>Broken map"),
        )
        assert "<script>" not in resp.get_json()["title"]

    def test_list_is_scoped_to_caller(self, client, users, make_ticket):
        mine = make_ticket()
        make_ticket(submitter=users["user2"], title="Jane's report about billing")
        _login(client, "mike_tester")

        resp = client.get("/api/tickets")

        assert [t["id"] for t in resp.get_json()] == [mine.id]

    def test_list_filters(self, client, users, make_ticket):
        make_ticket()
        make_ticket(
            title="Dark mode in dispatch",
            description="Night shift dispatchers want a darker theme.",
            type_="feature_request",
            app="dispatch",
        )
        _login(client, "admin")

        assert len(client.get("/api/tickets?type=feature_request").get_json()) == 1
        assert len(client.get("/api/tickets?q=login").get_json()) == 1
        assert client.get("/api/tickets?status=bogus").status_code == 400

    def test_detail_includes_submitter(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "admin")

        data = client.get(f"/api/tickets/{ticket.id}").get_json()

        assert data["user"] == {"username": "mike_tester", "email": "mike_tester@bugflow.test"}

    def test_outsider_gets_403(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "jane_user")
        assert client.get(f"/api/tickets/{ticket.id}").status_code == 403

    def test_unassigned_dev_gets_403(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "sarah_dev")
        assert client.get(f"/api/tickets/{ticket.id}").status_code == 403

    def test_unknown_ticket_404(self, client, users):
        _login(client, "admin")
        resp = client.get("/api/tickets/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json()["message"]

    def test_anonymous_is_401(self, client, users, make_ticket):
        ticket = make_ticket()
        assert client.get(f"/api/tickets/{ticket.id}").status_code == 401
        assert client.post("/api/tickets", json=_new_ticket_payload()).status_code == 401


# ─── Status / assignment ───────────────────────────────────

class TestWorkflowRoutes:

    def test_admin_changes_status_with_comment(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "admin")

        resp = client.patch(
            f"/api/tickets/{ticket.id}/status",
            json={"status": "in_progress", "comment": "Looking into it"},
        )

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "in_progress"
        comments = client.get(f"/api/tickets/{ticket.id}/comments").get_json()
        assert comments[-1]["content"] == "Looking into it"
        assert comments[-1]["isStatusChange"] is True

    def test_assigned_dev_changes_status(self, client, users, make_ticket):
        ticket = make_ticket()
        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)
        _login(client, "sarah_dev")

        resp = client.patch(f"/api/tickets/{ticket.id}/status", json={"status": "resolved"})

        assert resp.status_code == 200

    def test_submitter_cannot_change_status(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "mike_tester")

        resp = client.patch(f"/api/tickets/{ticket.id}/status", json={"status": "closed"})

        assert resp.status_code == 403

    def test_status_required_and_validated(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "admin")

        assert client.patch(f"/api/tickets/{ticket.id}/status", json={}).status_code == 400
        resp = client.patch(f"/api/tickets/{ticket.id}/status", json={"status": "done"})
        assert resp.status_code == 400

    def test_assign_and_unassign(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "admin")

        resp = client.patch(
            f"/api/tickets/{ticket.id}/assign",
            json={"assignedToUserId": users["dev"].id},
        )
        assert resp.get_json()["assignedToName"] == "Sarah Developer"

        resp = client.patch(f"/api/tickets/{ticket.id}/assign", json={"assignedToUserId": None})
        assert resp.status_code == 200
        assert resp.get_json()["assignedToUserId"] is None

    def test_assign_requires_key(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "admin")
        assert client.patch(f"/api/tickets/{ticket.id}/assign", json={}).status_code == 400

    def test_cannot_assign_plain_user(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "admin")

        resp = client.patch(
            f"/api/tickets/{ticket.id}/assign",
            json={"assignedToUserId": users["user2"].id},
        )

        assert resp.status_code == 400

    def test_dev_cannot_assign(self, client, users, make_ticket):
        ticket = make_ticket(submitter=users["dev"])
        _login(client, "sarah_dev")

        resp = client.patch(
            f"/api/tickets/{ticket.id}/assign",
            json={"assignedToUserId": users["dev"].id},
        )

        assert resp.status_code == 403


# ─── Comments ──────────────────────────────────────────────

class TestCommentRoutes:

    def test_user_posts_public_comment(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "mike_tester")

        resp = client.post(f"/api/tickets/{ticket.id}/comments", json={"content": "Any news?"})

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["isInternal"] is False
        assert data["user"]["username"] == "mike_tester"

    def test_user_cannot_post_internal(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "mike_tester")

        resp = client.post(
            f"/api/tickets/{ticket.id}/comments",
            json={"content": "Sneaky", "isInternal": True},
        )

        assert resp.status_code == 403

    def test_is_internal_must_be_boolean(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "admin")

        resp = client.post(
            f"/api/tickets/{ticket.id}/comments",
            json={"content": "Note", "isInternal": "yes"},
        )

        assert resp.status_code == 400

    def test_empty_comment(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "mike_tester")
        resp = client.post(f"/api/tickets/{ticket.id}/comments", json={"content": "   "})
        assert resp.status_code == 400

    def test_internal_comment_hidden_from_submitter(self, client, users, make_ticket):
        ticket = make_ticket()
        ticket_service.add_comment(users["admin"], ticket.id, "Vendor issue", is_internal=True)
        ticket_service.add_comment(users["admin"], ticket.id, "We're on it")
        _login(client, "mike_tester")

        comments = client.get(f"/api/tickets/{ticket.id}/comments").get_json()

        assert [c["content"] for c in comments] == ["We're on it"]


# ─── Attachments ───────────────────────────────────────────

class TestAttachmentRoutes:

    def test_upload_list_and_download(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "mike_tester")

        resp = client.post(
            f"/api/tickets/{ticket.id}/attachments",
            data={"files": [
                (io.BytesIO(PNG), "crash.png", "image/png"),
                (io.BytesIO(b"\xff\xd8\xff jpeg"), "photo.jpg", "image/jpeg"),
            ]},
            content_type="multipart/form-data",
        )

        assert resp.status_code == 201
        created = resp.get_json()
        assert [a["originalName"] for a in created] == ["crash.png", "photo.jpg"]

        listed = client.get(f"/api/tickets/{ticket.id}/attachments").get_json()
        assert len(listed) == 2

        download = client.get(created[0]["downloadUrl"])
        assert download.status_code == 200
        assert download.data == PNG
        assert download.mimetype == "image/png"
        assert "crash.png" in download.headers["Content-Disposition"]

    def test_rejects_disallowed_type(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "mike_tester")

        resp = client.post(
            f"/api/tickets/{ticket.id}/attachments",
            data={"files": [(io.BytesIO(b"%PDF-1.4"), "report.pdf", "application/pdf")]},
            content_type="multipart/form-data",
        )

        assert resp.status_code == 400
        assert "not allowed" in resp.get_json()["message"]

    def test_no_files(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "mike_tester")

        resp = client.post(
            f"/api/tickets/{ticket.id}/attachments",
            data={},
            content_type="multipart/form-data",
        )

        assert resp.status_code == 400

    def test_outsider_cannot_download(self, client, users, make_ticket, make_upload):
        ticket = make_ticket()
        [attachment] = ticket_service.add_attachments(users["user"], ticket.id, [make_upload()])
        _login(client, "jane_user")

        resp = client.get(f"/api/attachments/{attachment.id}/download")

        assert resp.status_code == 403


# ─── History / delete ──────────────────────────────────────

class TestHistoryAndDelete:

    def test_history_feed(self, client, users, make_ticket):
        ticket = make_ticket()
        ticket_service.change_status(users["admin"], ticket.id, "in_progress")
        ticket_service.add_comment(users["admin"], ticket.id, "Internal only", is_internal=True)
        _login(client, "mike_tester")

        entries = client.get(f"/api/tickets/{ticket.id}/history").get_json()

        assert [e["kind"] for e in entries] == ["CREATED", "STATUS_CHANGED"]
        assert entries[1]["oldValue"] == "open"
        assert entries[1]["newValue"] == "in_progress"
        assert entries[1]["actorName"] == "Admin"

    def test_admin_deletes_ticket(self, client, users, make_ticket):
        ticket = make_ticket()
        ticket_service.add_comment(users["user"], ticket.id, "Extra detail here")
        _login(client, "admin")

        resp = client.delete(f"/api/tickets/{ticket.id}")

        assert resp.status_code == 200
        assert resp.get_json()["deleted"] >= 1
        assert client.get(f"/api/tickets/{ticket.id}").status_code == 404

    def test_submitter_cannot_delete(self, client, users, make_ticket):
        ticket = make_ticket()
        _login(client, "mike_tester")
        assert client.delete(f"/api/tickets/{ticket.id}").status_code == 403
