"""Upvote deduplication: one vote per voter per issue, counter always equals membership"""

import pytest
from sqlalchemy import func, select

from models import Issue, IssueUpvote
from services.issue_service import IssueService
from utils.exception_handler import NotFoundError, ValidationError


def assert_counter_matches_members(db, issue_id):
    with db.managed_session() as session:
        counter = session.scalar(select(Issue.upvotes).where(Issue.id == issue_id))
        members = session.scalar(
            select(func.count()).select_from(IssueUpvote).where(IssueUpvote.issue_id == issue_id)
        )
    assert counter == members
    return counter


class TestUpvote:

    def test_first_vote_applies(self, issue_service, sample_issue, db):
        result = issue_service.upvote(sample_issue.id, "alice@example.com")

        assert result.applied is True
        assert result.upvotes == 1
        assert result.message == "Upvote added"
        assert assert_counter_matches_members(db, sample_issue.id) == 1
        assert issue_service.get_issue(sample_issue.id).upvoted_by == ["alice@example.com"]

    def test_duplicate_vote_is_noop(self, issue_service, sample_issue, db):
        issue_service.upvote(sample_issue.id, "alice@example.com")
        before = issue_service.get_issue(sample_issue.id)

        result = issue_service.upvote(sample_issue.id, "alice@example.com")

        assert result.applied is False
        assert result.message == "You already upvoted this issue"
        after = issue_service.get_issue(sample_issue.id)
        assert after.upvotes == before.upvotes == 1
        assert after.updated_at == before.updated_at
        assert assert_counter_matches_members(db, sample_issue.id) == 1

    def test_distinct_voters_accumulate(self, issue_service, sample_issue, db):
        for voter in ("a@example.com", "b@example.com", "a@example.com", "c@example.com", "b@example.com"):
            issue_service.upvote(sample_issue.id, voter)
            assert_counter_matches_members(db, sample_issue.id)

        issue = issue_service.get_issue(sample_issue.id)
        assert issue.upvotes == 3
        assert sorted(issue.upvoted_by) == ["a@example.com", "b@example.com", "c@example.com"]

    def test_stale_membership_check_is_caught_by_write_guard(self, issue_service, sample_issue, db, monkeypatch):
        issue_service.upvote(sample_issue.id, "alice@example.com")
        monkeypatch.setattr(IssueService, "_has_voted", lambda self, session, issue_id, voter: False)

        result = issue_service.upvote(sample_issue.id, "alice@example.com")

        assert result.applied is False
        assert assert_counter_matches_members(db, sample_issue.id) == 1

    def test_missing_issue(self, issue_service):
        with pytest.raises(NotFoundError):
            issue_service.upvote("ISSMISSING", "alice@example.com")

    @pytest.mark.parametrize("voter", [None, "", "   "])
    def test_blank_voter(self, issue_service, sample_issue, voter):
        with pytest.raises(ValidationError):
            issue_service.upvote(sample_issue.id, voter)

    def test_malformed_issue_id(self, issue_service):
        with pytest.raises(ValidationError):
            issue_service.upvote("not an id!", "alice@example.com")
