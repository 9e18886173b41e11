"""Issue status lifecycle, timeline entries and admin removal"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from models import IssuePriority, IssueTimelineEntry, IssueUpvote, PaymentType
from services.issue_service import TimelineNote
from services.payment_ledger import IssueSubject, PaymentDraft
from utils.exception_handler import InvalidStatusTransitionError, NotFoundError, ValidationError
from utils.issue_state_machine import IssueStateMachine

STAFF = "staff@city.gov"


def move(issue_service, issue_id, status, message=None):
    return issue_service.update_issue(issue_id, {"status": status}, TimelineNote(updated_by=STAFF, message=message))


class TestIssueStateMachine:

    @pytest.mark.parametrize("current,target", [
        ("reported", "in_review"),
        ("in_review", "resolved"),
        ("in_review", "rejected"),
    ])
    def test_allowed(self, current, target):
        assert IssueStateMachine.can_transition(current, target)
        IssueStateMachine.validate_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        ("reported", "resolved"),
        ("reported", "rejected"),
        ("resolved", "in_review"),
        ("rejected", "reported"),
        ("in_review", "reported"),
        ("in_review", "in_review"),
    ])
    def test_rejected(self, current, target):
        with pytest.raises(InvalidStatusTransitionError):
            IssueStateMachine.validate_transition(current, target)

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            IssueStateMachine.validate_transition("reported", "archived")

    def test_terminal_states(self):
        assert IssueStateMachine.is_terminal("resolved")
        assert IssueStateMachine.is_terminal("rejected")
        assert not IssueStateMachine.is_terminal("in_review")


class TestStatusUpdates:

    def test_full_lifecycle_writes_one_entry_per_change(self, issue_service, sample_issue):
        move(issue_service, sample_issue.id, "in_review", "Crew assigned")
        issue = move(issue_service, sample_issue.id, "resolved")

        assert issue.status == "resolved"
        assert [e.status for e in issue.timeline] == ["in_review", "resolved"]
        assert issue.timeline[0].message == "Crew assigned"
        assert issue.timeline[1].message == "Status changed from in_review to resolved"
        assert all(e.updated_by == STAFF for e in issue.timeline)
        assert all(e.created_at is not None for e in issue.timeline)

    def test_status_from_timeline_note(self, issue_service, sample_issue):
        issue = issue_service.update_issue(
            sample_issue.id, {}, TimelineNote(updated_by=STAFF, status="in_review", message="Looking into it")
        )

        assert issue.status == "in_review"
        assert len(issue.timeline) == 1

    def test_skipping_review_is_rejected(self, issue_service, sample_issue):
        with pytest.raises(InvalidStatusTransitionError):
            move(issue_service, sample_issue.id, "resolved")

        issue = issue_service.get_issue(sample_issue.id)
        assert issue.status == "reported"
        assert issue.timeline == []

    def test_terminal_state_is_final(self, issue_service, sample_issue):
        move(issue_service, sample_issue.id, "in_review")
        move(issue_service, sample_issue.id, "rejected")

        with pytest.raises(InvalidStatusTransitionError):
            move(issue_service, sample_issue.id, "in_review")

    def test_status_change_requires_actor(self, issue_service, sample_issue):
        with pytest.raises(ValidationError):
            issue_service.update_issue(sample_issue.id, {"status": "in_review"})

        assert issue_service.get_issue(sample_issue.id).status == "reported"

    def test_boosted_kind_is_reserved(self, issue_service, sample_issue):
        with pytest.raises(ValidationError):
            issue_service.update_issue(sample_issue.id, {}, TimelineNote(updated_by=STAFF, status="boosted"))

    def test_free_form_note(self, issue_service, sample_issue):
        issue = issue_service.update_issue(
            sample_issue.id, {}, TimelineNote(updated_by=STAFF, status="assigned", message="Sent to roads team")
        )

        assert issue.status == "reported"
        assert [(e.status, e.message) for e in issue.timeline] == [("assigned", "Sent to roads team")]

    @pytest.mark.parametrize("field", ["boosted", "upvotes", "upvotedBy", "boostPaidBy", "id"])
    def test_protected_fields(self, issue_service, sample_issue, field):
        with pytest.raises(ValidationError):
            issue_service.update_issue(sample_issue.id, {field: "x"})

    def test_field_edit(self, issue_service, sample_issue):
        issue = issue_service.update_issue(sample_issue.id, {"description": "Now two lamps are out"})

        assert issue.description == "Now two lamps are out"
        assert issue.timeline == []

    def test_nothing_to_update(self, issue_service, sample_issue):
        with pytest.raises(ValidationError):
            issue_service.update_issue(sample_issue.id, {})

    def test_missing_issue(self, issue_service):
        with pytest.raises(NotFoundError):
            move(issue_service, "ISSMISSING", "in_review")

    def test_boost_is_orthogonal_to_status(self, issue_service, sample_issue):
        move(issue_service, sample_issue.id, "in_review")
        move(issue_service, sample_issue.id, "resolved")

        outcome = issue_service.apply_boost(sample_issue.id, "payer@example.com")

        issue = issue_service.get_issue(sample_issue.id)
        assert outcome.subject_found is True
        assert issue.status == "resolved"
        assert issue.boosted is True
        assert issue.priority == IssuePriority.HIGH.value
        assert [e.status for e in issue.timeline] == ["in_review", "resolved", "boosted"]

    def test_boost_missing_issue(self, issue_service):
        assert issue_service.apply_boost("ISSMISSING", "payer@example.com").subject_found is False

    def test_boosted_issue_keeps_high_priority(self, issue_service, sample_issue):
        issue_service.apply_boost(sample_issue.id, "payer@example.com")

        with pytest.raises(ValidationError):
            issue_service.update_issue(sample_issue.id, {"priority": IssuePriority.NORMAL.value})

        issue = issue_service.get_issue(sample_issue.id)
        assert issue.boosted is True
        assert issue.priority == IssuePriority.HIGH.value

    def test_priority_editable_before_boost(self, issue_service, sample_issue):
        raised = issue_service.update_issue(sample_issue.id, {"priority": IssuePriority.HIGH.value})
        lowered = issue_service.update_issue(sample_issue.id, {"priority": IssuePriority.NORMAL.value})

        assert raised.priority == IssuePriority.HIGH.value
        assert lowered.priority == IssuePriority.NORMAL.value


class TestTimelineNotes:

    def test_conflicting_status_values_are_rejected(self, issue_service, sample_issue):
        with pytest.raises(ValidationError):
            issue_service.update_issue(
                sample_issue.id,
                {"status": "reported"},
                TimelineNote(updated_by=STAFF, status="resolved", message="done"),
            )

        issue = issue_service.get_issue(sample_issue.id)
        assert issue.status == "reported"
        assert issue.timeline == []

    def test_note_naming_current_status_is_a_plain_note(self, issue_service, sample_issue):
        issue = issue_service.update_issue(
            sample_issue.id,
            {"status": "reported"},
            TimelineNote(updated_by=STAFF, status="reported", message="Still waiting on the crew"),
        )

        assert issue.status == "reported"
        assert [(e.status, e.message) for e in issue.timeline] == [("note", "Still waiting on the crew")]

    def test_message_only_note(self, issue_service, sample_issue):
        issue = issue_service.update_issue(sample_issue.id, {}, TimelineNote(updated_by=STAFF, message="Photo added"))

        assert [e.status for e in issue.timeline] == ["note"]

    def test_lifecycle_entries_only_for_real_changes(self, issue_service, sample_issue):
        move(issue_service, sample_issue.id, "in_review")
        issue_service.update_issue(sample_issue.id, {"description": "Updated"}, TimelineNote(updated_by=STAFF))
        issue = issue_service.update_issue(
            sample_issue.id, {}, TimelineNote(updated_by=STAFF, status="in_review", message="Re-checked")
        )

        lifecycle = [e.status for e in issue.timeline if IssueStateMachine.is_lifecycle_status(e.status)]
        assert lifecycle == ["in_review"]
        assert issue.status == "in_review"


class TestDeleteIssue:

    def test_delete_cascades_but_keeps_payments(self, issue_service, ledger, sample_issue, db):
        issue_service.upvote(sample_issue.id, "alice@example.com")
        move(issue_service, sample_issue.id, "in_review")
        ledger.record_once(PaymentDraft(
            external_transaction_id="pi_keep",
            subject=IssueSubject(sample_issue.id),
            payer_email="payer@example.com",
            payment_type=PaymentType.BOOST,
            amount=Decimal("100.00"),
        ))

        issue_service.delete_issue(sample_issue.id)

        with pytest.raises(NotFoundError):
            issue_service.get_issue(sample_issue.id)
        with db.managed_session() as session:
            assert session.scalar(select(func.count()).select_from(IssueTimelineEntry)) == 0
            assert session.scalar(select(func.count()).select_from(IssueUpvote)) == 0
        assert ledger.find_by_transaction("pi_keep") is not None

    def test_delete_missing(self, issue_service):
        with pytest.raises(NotFoundError):
            issue_service.delete_issue("ISSMISSING")
