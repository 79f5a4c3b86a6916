"""Tests for the ticket workflow engine.

Covers:
- CreateTicket validation + CREATED history
- ChangeStatus authorization, history message, status comments, no-op
- AssignTicket rules, name snapshots, unassign round-trip
- AddComment sanitization and internal-note gating
- DeleteTicket cascade
- updated_at monotonicity
"""

import pytest

from bugflow.errors import ForbiddenError, NotFoundError, StorageError, ValidationError
from bugflow.extensions import db
from bugflow.models.email_log import EmailLog
from bugflow.models.history import TicketHistory
from bugflow.models.ticket import Comment, Ticket, TicketAttachment
from bugflow.services import ticket_service, ticket_store
from bugflow.utils import as_utc


def _history_kinds(ticket_id):
    return [e.kind for e in ticket_store.list_history(ticket_id)]


# ─── CreateTicket ─────────────────────────────────────────

class TestCreateTicket:

    def test_creates_open_ticket_with_history(self, users, make_ticket):
        ticket = make_ticket()

        assert ticket.id
        assert ticket.status == "open"
        assert ticket.priority == "high"
        assert ticket.submitter_user_id == users["user"].id
        assert ticket.assigned_to_user_id is None
        assert as_utc(ticket.created_at) == as_utc(ticket.updated_at)

        history = ticket_store.list_history(ticket.id)
        assert len(history) == 1
        assert history[0].kind == TicketHistory.CREATED
        assert history[0].actor_name == "Mike Tester"

    def test_priority_defaults_to_medium(self, users, make_ticket):
        ticket = make_ticket(priority=None)
        assert ticket.priority == "medium"

    def test_four_character_title_rejected_before_any_write(self, users, make_ticket):
        before = Ticket.query.count()

        with pytest.raises(ValidationError, match="Title"):
            make_ticket(title="Oops")

        assert Ticket.query.count() == before
        assert TicketHistory.query.count() == 0
        assert EmailLog.query.count() == 0

    def test_title_too_long(self, users, make_ticket):
        with pytest.raises(ValidationError, match="at most 200"):
            make_ticket(title="x" * 201)

    @pytest.mark.parametrize("title", [
        "Broken login\nBcc: attacker@evil.test",
        "Broken login\r\nX-Injected: yes",
    ])
    def test_multiline_title_rejected(self, users, make_ticket, title):
        with pytest.raises(ValidationError, match="single line"):
            make_ticket(title=title)
        assert Ticket.query.count() == 0

    def test_short_description_rejected(self, users, make_ticket):
        with pytest.raises(ValidationError, match="Description"):
            make_ticket(description="Too short")

    def test_html_is_stripped_before_length_check(self, users, make_ticket):
        # 25 characters of markup but only 4 of text
        with pytest.raises(ValidationError, match="Title"):
            make_ticket(title="<b><i><u>Oops</u></i></b>")

    def test_html_stripped_from_stored_fields(self, users, make_ticket):
        ticket = make_ticket(
            title="<script>alert(1)</script>Crash on save",
            description="<p>The app <b>crashes</b> every time I press save.</p>",
        )
        assert "<" not in ticket.title
        assert "<" not in ticket.description
        assert "Crash on save" in ticket.title

    @pytest.mark.parametrize("field,value", [
        ("type_", "question"),
        ("app", "mainframe"),
        ("priority", "urgent"),
    ])
    def test_rejects_unknown_enumerations(self, users, make_ticket, field, value):
        with pytest.raises(ValidationError):
            make_ticket(**{field: value})


# ─── ChangeStatus ─────────────────────────────────────────

class TestChangeStatus:

    def test_admin_changes_status_and_writes_history(self, users, make_ticket):
        ticket = make_ticket()

        ticket_service.change_status(users["admin"], ticket.id, "in_progress")

        ticket = ticket_store.get_ticket(ticket.id)
        assert ticket.status == "in_progress"
        entry = ticket_store.list_history(ticket.id)[-1]
        assert entry.kind == TicketHistory.STATUS_CHANGED
        assert entry.old_value == "open"
        assert entry.new_value == "in_progress"
        assert entry.message == "Status changed from Open to In Progress"
        assert entry.actor_name == "Admin"

    def test_assigned_dev_can_change_status(self, users, make_ticket):
        ticket = make_ticket()
        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)

        ticket_service.change_status(users["dev"], ticket.id, "under_review")

        assert ticket_store.get_ticket(ticket.id).status == "under_review"

    def test_unassigned_dev_forbidden_and_nothing_changes(self, users, make_ticket):
        ticket = make_ticket()
        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev2"].id)
        ticket = ticket_store.get_ticket(ticket.id)
        updated_before = as_utc(ticket.updated_at)
        history_before = TicketHistory.query.count()
        emails_before = EmailLog.query.count()

        with pytest.raises(ForbiddenError):
            ticket_service.change_status(users["dev"], ticket.id, "resolved", comment="Done")

        db.session.expire_all()
        ticket = ticket_store.get_ticket(ticket.id)
        assert ticket.status == "open"
        assert as_utc(ticket.updated_at) == updated_before
        assert TicketHistory.query.count() == history_before
        assert EmailLog.query.count() == emails_before
        assert Comment.query.count() == 0

    def test_dev_who_submitted_but_is_not_assignee_is_forbidden(self, users, make_ticket):
        ticket = make_ticket(submitter=users["dev"])
        with pytest.raises(ForbiddenError):
            ticket_service.change_status(users["dev"], ticket.id, "closed")

    def test_plain_user_cannot_change_status_of_own_ticket(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(ForbiddenError):
            ticket_service.change_status(users["user"], ticket.id, "closed")

    def test_unknown_ticket(self, users):
        with pytest.raises(NotFoundError):
            ticket_service.change_status(users["admin"], "missing-id", "closed")

    def test_unknown_status(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(ValidationError, match="Invalid status"):
            ticket_service.change_status(users["admin"], ticket.id, "archived")

    def test_status_set(self, users, make_ticket):
        assert Ticket.STATUSES == ["open", "in_progress", "under_review", "resolved", "closed"]
        assert set(Ticket.STATUS_LABELS) == set(Ticket.STATUSES)

        ticket = make_ticket()
        with pytest.raises(ValidationError, match="Invalid status"):
            ticket_service.change_status(users["admin"], ticket.id, "waiting_on_user")

    def test_any_status_can_follow_any_other(self, users, make_ticket):
        ticket = make_ticket()
        for status in ["closed", "open", "resolved", "under_review", "in_progress"]:
            ticket_service.change_status(users["admin"], ticket.id, status)
            assert ticket_store.get_ticket(ticket.id).status == status

    def test_status_comment_is_flagged(self, users, make_ticket):
        ticket = make_ticket()

        ticket_service.change_status(
            users["admin"], ticket.id, "resolved", comment="Fixed in <b>2.4.1</b>"
        )

        comments = ticket_store.list_comments(ticket.id)
        assert len(comments) == 1
        assert comments[0].is_status_change is True
        assert comments[0].is_internal is False
        assert comments[0].content == "Fixed in 2.4.1"

    def test_same_status_is_a_no_op(self, users, make_ticket):
        ticket = make_ticket()
        updated_before = as_utc(ticket_store.get_ticket(ticket.id).updated_at)
        emails_before = EmailLog.query.count()

        ticket_service.change_status(users["admin"], ticket.id, "open")

        ticket = ticket_store.get_ticket(ticket.id)
        assert as_utc(ticket.updated_at) == updated_before
        assert _history_kinds(ticket.id) == [TicketHistory.CREATED]
        assert EmailLog.query.count() == emails_before

    def test_same_status_with_comment_stores_a_regular_note(self, users, make_ticket):
        ticket = make_ticket()

        ticket_service.change_status(users["admin"], ticket.id, "open", comment="Still looking")

        comments = ticket_store.list_comments(ticket.id)
        assert [c.content for c in comments] == ["Still looking"]
        assert comments[0].is_status_change is False
        assert TicketHistory.STATUS_CHANGED not in _history_kinds(ticket.id)
        assert TicketHistory.PUBLIC_NOTE in _history_kinds(ticket.id)


# ─── AssignTicket ─────────────────────────────────────────

class TestAssignTicket:

    def test_assign_stores_id_and_name_snapshot(self, users, make_ticket):
        ticket = make_ticket()

        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)

        ticket = ticket_store.get_ticket(ticket.id)
        assert ticket.assigned_to_user_id == users["dev"].id
        assert ticket.assigned_to_name == "Sarah Developer"
        entry = ticket_store.list_history(ticket.id)[-1]
        assert entry.kind == TicketHistory.ASSIGNED
        assert entry.message == "Assigned to Sarah Developer"
        assert entry.old_value == "Unassigned"

    def test_assign_then_unassign_round_trip(self, users, make_ticket):
        ticket = make_ticket()

        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)
        ticket_service.assign_ticket(users["admin"], ticket.id, None)

        ticket = ticket_store.get_ticket(ticket.id)
        assert ticket.assigned_to_user_id is None
        assert ticket.assigned_to_name is None
        assigned = [
            e for e in ticket_store.list_history(ticket.id)
            if e.kind == TicketHistory.ASSIGNED
        ]
        assert [e.new_value for e in assigned] == ["Sarah Developer", "Unassigned"]
        assert assigned[1].old_value == "Sarah Developer"

    def test_name_snapshot_survives_rename(self, users, make_ticket):
        ticket = make_ticket()
        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)

        users["dev"].name = "Sarah Renamed"
        db.session.commit()

        assert ticket_store.get_ticket(ticket.id).assigned_to_name == "Sarah Developer"

    def test_admin_can_be_assigned(self, users, make_ticket):
        ticket = make_ticket()
        ticket_service.assign_ticket(users["admin"], ticket.id, users["admin"].id)
        assert ticket_store.get_ticket(ticket.id).assigned_to_name == "Admin"

    def test_only_admin_can_assign(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(ForbiddenError):
            ticket_service.assign_ticket(users["dev"], ticket.id, users["dev"].id)

    def test_unknown_assignee(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(NotFoundError):
            ticket_service.assign_ticket(users["admin"], ticket.id, "no-such-user")

    def test_plain_user_cannot_be_assignee(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(ValidationError):
            ticket_service.assign_ticket(users["admin"], ticket.id, users["user2"].id)

    def test_inactive_dev_cannot_be_assignee(self, users, make_ticket):
        ticket = make_ticket()
        users["dev2"].is_active = False
        db.session.commit()
        with pytest.raises(ValidationError, match="inactive"):
            ticket_service.assign_ticket(users["admin"], ticket.id, users["dev2"].id)

    def test_reassigning_same_user_is_a_no_op(self, users, make_ticket):
        ticket = make_ticket()
        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)
        count = TicketHistory.query.count()

        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)

        assert TicketHistory.query.count() == count


# ─── AddComment ───────────────────────────────────────────

class TestAddComment:

    def test_submitter_can_comment(self, users, make_ticket):
        ticket = make_ticket()

        comment = ticket_service.add_comment(users["user"], ticket.id, "Still broken on 17.2")

        assert comment.is_internal is False
        assert _history_kinds(ticket.id)[-1] == TicketHistory.PUBLIC_NOTE

    def test_internal_note_by_dev(self, users, make_ticket):
        ticket = make_ticket()
        ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)

        comment = ticket_service.add_comment(
            users["dev"], ticket.id, "Repro'd on staging", is_internal=True
        )

        assert comment.is_internal is True
        assert _history_kinds(ticket.id)[-1] == TicketHistory.INTERNAL_NOTE

    def test_plain_user_cannot_post_internal(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(ForbiddenError):
            ticket_service.add_comment(users["user"], ticket.id, "psst", is_internal=True)
        assert Comment.query.count() == 0

    def test_other_user_cannot_comment(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(ForbiddenError):
            ticket_service.add_comment(users["user2"], ticket.id, "Me too")

    def test_empty_after_sanitizing(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(ValidationError, match="empty"):
            ticket_service.add_comment(users["user"], ticket.id, "<p>  </p>")

    def test_too_long(self, users, make_ticket):
        ticket = make_ticket()
        with pytest.raises(ValidationError, match="5000"):
            ticket_service.add_comment(users["user"], ticket.id, "x" * 5001)

    def test_comment_bumps_updated_at(self, users, make_ticket):
        ticket = make_ticket()
        before = as_utc(ticket_store.get_ticket(ticket.id).updated_at)

        ticket_service.add_comment(users["user"], ticket.id, "Any news?")

        assert as_utc(ticket_store.get_ticket(ticket.id).updated_at) > before


# ─── updated_at ───────────────────────────────────────────

def test_updated_at_strictly_increases_across_mutations(users, make_ticket):
    ticket = make_ticket()
    ticket = ticket_store.get_ticket(ticket.id)
    assert as_utc(ticket.updated_at) >= as_utc(ticket.created_at)
    stamps = [as_utc(ticket.updated_at)]

    ticket_service.assign_ticket(users["admin"], ticket.id, users["dev"].id)
    stamps.append(as_utc(ticket_store.get_ticket(ticket.id).updated_at))
    ticket_service.change_status(users["dev"], ticket.id, "in_progress")
    stamps.append(as_utc(ticket_store.get_ticket(ticket.id).updated_at))
    ticket_service.change_status(users["admin"], ticket.id, "resolved")
    stamps.append(as_utc(ticket_store.get_ticket(ticket.id).updated_at))
    ticket_service.assign_ticket(users["admin"], ticket.id, None)
    stamps.append(as_utc(ticket_store.get_ticket(ticket.id).updated_at))

    assert all(a < b for a, b in zip(stamps, stamps[1:]))


# ─── DeleteTicket ─────────────────────────────────────────

class TestDeleteTicket:

    def test_cascade_removes_every_row(self, users, make_ticket, make_upload, uploads):
        ticket = make_ticket()
        admin = users["admin"]
        ticket_service.add_attachments(
            users["user"], ticket.id, [make_upload("a.png"), make_upload("b.png")]
        )
        for text in ["one", "two", "three"]:
            ticket_store.create_comment(ticket.id, admin.id, text)
        ticket_store.create_history(ticket.id, admin, TicketHistory.PUBLIC_NOTE, "note")
        ticket_store.create_history(ticket.id, admin, TicketHistory.INTERNAL_NOTE, "note")
        db.session.commit()

        assert TicketAttachment.query.filter_by(ticket_id=ticket.id).count() == 2
        assert Comment.query.filter_by(ticket_id=ticket.id).count() == 3
        assert TicketHistory.query.filter_by(ticket_id=ticket.id).count() == 4
        ticket_id = ticket.id

        deleted = ticket_service.delete_ticket(admin, ticket_id)

        assert deleted == 10
        assert TicketAttachment.query.filter_by(ticket_id=ticket_id).count() == 0
        assert Comment.query.filter_by(ticket_id=ticket_id).count() == 0
        assert TicketHistory.query.filter_by(ticket_id=ticket_id).count() == 0
        with pytest.raises(NotFoundError):
            ticket_service.get_ticket(admin, ticket_id)
        # Blob bytes go too
        assert not any(p.is_file() for p in uploads.rglob("*"))

    def test_email_logs_outlive_the_ticket(self, users, make_ticket):
        ticket = make_ticket()
        ticket_id = ticket.id

        ticket_service.delete_ticket(users["admin"], ticket_id)

        assert EmailLog.query.filter_by(ticket_id=ticket_id).count() > 0

    def test_only_admin_can_delete(self, users, make_ticket):
        ticket = make_ticket()
        for actor in (users["dev"], users["user"]):
            with pytest.raises(ForbiddenError):
                ticket_service.delete_ticket(actor, ticket.id)
        assert ticket_store.get_ticket(ticket.id) is not None

    def test_unknown_ticket(self, users):
        with pytest.raises(NotFoundError):
            ticket_service.delete_ticket(users["admin"], "missing-id")

    def test_commit_failure_rolls_back_and_raises_storage_error(
        self, users, make_ticket, monkeypatch
    ):
        from sqlalchemy.exc import OperationalError

        ticket = make_ticket()
        ticket_id = ticket.id

        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with monkeypatch.context() as m:
            m.setattr(db.session, "commit", broken_commit)
            with pytest.raises(StorageError):
                ticket_service.delete_ticket(users["admin"], ticket_id)

        assert ticket_store.get_ticket(ticket_id) is not None
        assert TicketHistory.query.filter_by(ticket_id=ticket_id).count() == 1
