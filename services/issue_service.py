"""
Issue Service
Report submission, upvote deduplication, status timeline updates and the
boost side effect for issues.

Every invariant-bearing write is a single transaction guarded in the write
itself:
- upvote: conditional counter increment + membership insert under
  UNIQUE(issue_id, voter)
- status change: conditional status update + timeline insert
- boost: flag/priority update + "boosted" timeline insert
- report: insert under UNIQUE(title_key)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from database import Database
from models import (
    Issue, IssueTimelineEntry, IssueUpvote, IssueStatus, IssuePriority,
    BOOSTED_TIMELINE_STATUS, NOTE_TIMELINE_STATUS,
)
from utils.exception_handler import NotFoundError, ValidationError, InvalidStatusTransitionError
from utils.helpers import generate_id, utc_now, validate_entity_id
from utils.issue_state_machine import IssueStateMachine

logger = logging.getLogger(__name__)


# ============================================================================
# Title match policies (duplicate report detection)
# ============================================================================

class ExactTitleMatch:
    """Byte-for-byte title equality"""

    name = "exact"

    def clause(self, title: str):
        return Issue.title == title

    def key(self, title: str) -> str:
        return title


class CaseInsensitiveTitleMatch:
    """Titles equal after trimming surrounding whitespace and lowercasing"""

    name = "case_insensitive"

    def clause(self, title: str):
        return func.lower(func.trim(Issue.title)) == title.strip().lower()

    def key(self, title: str) -> str:
        return title.strip().lower()


TITLE_MATCH_POLICIES = {
    ExactTitleMatch.name: ExactTitleMatch,
    CaseInsensitiveTitleMatch.name: CaseInsensitiveTitleMatch,
}


def title_match_policy(name: str):
    try:
        return TITLE_MATCH_POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown title match policy: {name!r}")


# ============================================================================
# Inputs / results
# ============================================================================

@dataclass
class IssueDraft:
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    image: Optional[str] = None
    reporter_email: Optional[str] = None


@dataclass(frozen=True)
class AlreadyExists:
    """Soft failure: an issue with a matching title is already on record"""
    existing_id: str
    title: str


@dataclass(frozen=True)
class UpvoteResult:
    applied: bool
    upvotes: Optional[int] = None

    @property
    def message(self) -> str:
        return "Upvote added" if self.applied else "You already upvoted this issue"


@dataclass
class TimelineNote:
    """Client part of a timeline entry; the timestamp is always set by the server"""
    updated_by: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class BoostOutcome:
    subject_found: bool
    issue_id: str


# Fields a PUT /issues/{id} may change directly
EDITABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "category": "category",
    "location": "location",
    "image": "image",
    "priority": "priority",
    "status": "status",
}


class IssueService:
    """Issue record store operations"""

    def __init__(self, db: Database, title_policy=None):
        self.db = db
        self.title_policy = title_policy or ExactTitleMatch()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_issue(self, issue_id: str) -> Issue:
        issue_id = validate_entity_id(issue_id, "issue id")
        with self.db.managed_session() as session:
            issue = self._load(session, issue_id)
            if issue is None:
                raise NotFoundError(f"Issue not found: {issue_id}")
            return issue

    def _load(self, session, issue_id: str) -> Optional[Issue]:
        return session.execute(
            select(Issue)
            .where(Issue.id == issue_id)
            .options(selectinload(Issue.timeline), selectinload(Issue.upvoters))
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Report submission
    # ------------------------------------------------------------------

    def report(self, draft: IssueDraft) -> Union[Issue, AlreadyExists]:
        """
        Create a new issue unless one with a matching title exists.

        The lookup answers the common case; two identical reports racing past
        it meet at UNIQUE(title_key) and the loser gets AlreadyExists.
        """
        title = (draft.title or "").strip() if isinstance(draft.title, str) else ""
        if not title:
            raise ValidationError("Issue title is required")
        title_key = self.title_policy.key(draft.title)

        try:
            with self.db.managed_session() as session:
                existing = session.execute(
                    select(Issue.id, Issue.title).where(self.title_policy.clause(draft.title)).limit(1)
                ).first()
                if existing is not None:
                    logger.info(f"♻️ REPORT_DUPLICATE: '{draft.title}' matches issue {existing.id} ({self.title_policy.name})")
                    return AlreadyExists(existing_id=existing.id, title=existing.title)

                issue = self._new_issue(draft, title_key)
                session.add(issue)
                session.flush()
        except IntegrityError as e:
            logger.warning(f"🔄 CONCURRENCY_DETECTED: report '{draft.title}' rejected by constraint: {e.orig}")
            with self.db.managed_session() as session:
                existing = session.execute(
                    select(Issue.id, Issue.title).where(Issue.title_key == title_key)
                ).first()
            if existing is None:
                raise
            return AlreadyExists(existing_id=existing.id, title=existing.title)

        logger.info(f"✅ ISSUE_REPORTED: {issue.id} '{issue.title}'")
        return issue

    def _new_issue(self, draft: IssueDraft, title_key: str) -> Issue:
        now = utc_now()
        return Issue(
            id=generate_id("issue"),
            title=draft.title,
            title_key=title_key,
            description=draft.description,
            category=draft.category,
            location=draft.location,
            image=draft.image,
            reporter_email=draft.reporter_email,
            status=IssueStateMachine.initial_state,
            priority=IssuePriority.NORMAL.value,
            boosted=False,
            boost_paid_by=None,
            upvotes=0,
            created_at=now,
            updated_at=now,
            timeline=[],
            upvoters=[],
        )

    # ------------------------------------------------------------------
    # Upvotes
    # ------------------------------------------------------------------

    def upvote(self, issue_id: str, voter: str) -> UpvoteResult:
        """
        Register one vote per voter per issue.

        The counter increment is conditional on the voter not being a member
        yet, and the membership row is inserted under UNIQUE(issue_id, voter)
        in the same transaction. Whichever guard trips first, the transaction
        is rolled back and the call reports applied=False.
        """
        issue_id = validate_entity_id(issue_id, "issue id")
        if not voter or not isinstance(voter, str) or not voter.strip():
            raise ValidationError("Voter identifier is required")
        voter = voter.strip()

        try:
            with self.db.managed_session() as session:
                current = session.execute(
                    select(Issue.upvotes).where(Issue.id == issue_id)
                ).scalar_one_or_none()
                if current is None:
                    raise NotFoundError(f"Issue not found: {issue_id}")

                if self._has_voted(session, issue_id, voter):
                    logger.info(f"♻️ UPVOTE_DUPLICATE: {voter} already upvoted {issue_id}")
                    return UpvoteResult(applied=False, upvotes=current)

                not_yet_voted = ~exists().where(
                    IssueUpvote.issue_id == issue_id,
                    IssueUpvote.voter == voter,
                )
                result = session.execute(
                    update(Issue)
                    .where(Issue.id == issue_id, not_yet_voted)
                    .values(upvotes=Issue.upvotes + 1, updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    # Vote landed between the membership check and the write
                    session.rollback()
                    logger.warning(f"🔄 CONCURRENCY_DETECTED: upvote {issue_id} by {voter} already counted")
                    return UpvoteResult(applied=False)

                session.add(IssueUpvote(issue_id=issue_id, voter=voter, created_at=utc_now()))
                session.flush()
                upvotes = session.execute(
                    select(Issue.upvotes).where(Issue.id == issue_id)
                ).scalar_one()
        except IntegrityError as e:
            logger.warning(f"🔄 CONCURRENCY_DETECTED: upvote {issue_id} by {voter} rejected by constraint: {e.orig}")
            return UpvoteResult(applied=False)

        logger.info(f"👍 UPVOTE_ADDED: {issue_id} by {voter} (total {upvotes})")
        return UpvoteResult(applied=True, upvotes=upvotes)

    def _has_voted(self, session, issue_id: str, voter: str) -> bool:
        return session.execute(
            select(IssueUpvote.id).where(
                IssueUpvote.issue_id == issue_id,
                IssueUpvote.voter == voter,
            )
        ).first() is not None

    # ------------------------------------------------------------------
    # Field / status updates
    # ------------------------------------------------------------------

    def update_issue(
        self,
        issue_id: str,
        changes: Dict[str, Any],
        note: Optional[TimelineNote] = None,
    ) -> Issue:
        """
        Apply field edits and status changes.

        A status change and its timeline entry are written in one
        transaction, and the status write only matches if the status is
        still the one the transition was validated against. Lowering the
        priority only matches while the issue is not boosted.
        """
        issue_id = validate_entity_id(issue_id, "issue id")
        changes = dict(changes or {})

        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
        if "title" in changes and not (isinstance(changes["title"], str) and changes["title"].strip()):
            raise ValidationError("Issue title cannot be empty")
        if "priority" in changes and changes["priority"] not in {p.value for p in IssuePriority}:
            raise ValidationError(f"Unknown priority: {changes['priority']!r}")

        note_kind = note.status if note else None
        if note_kind == BOOSTED_TIMELINE_STATUS:
            raise ValidationError("'boosted' timeline entries are only written by payment confirmation")

        requested_status = changes.pop("status", None)
        if IssueStateMachine.is_lifecycle_status(note_kind):
            if requested_status is not None and requested_status != note_kind:
                raise ValidationError(
                    f"Conflicting status: '{requested_status}' in the update, '{note_kind}' in the timeline note"
                )
            requested_status = note_kind

        lowers_priority = "priority" in changes and changes["priority"] != IssuePriority.HIGH.value

        try:
            with self.db.managed_session() as session:
                issue, values, status_changes, current_status = self._apply_update(
                    session, issue_id, changes, note, note_kind, requested_status, lowers_priority
                )
        except IntegrityError as e:
            logger.warning(f"🔄 CONCURRENCY_DETECTED: update {issue_id} rejected by constraint: {e.orig}")
            raise ValidationError("Another issue already has this title")

        if status_changes:
            logger.info(f"📋 ISSUE_STATUS_CHANGED: {issue_id} {current_status} -> {requested_status} by {note.updated_by}")
        else:
            logger.info(f"✏️ ISSUE_UPDATED: {issue_id} fields={sorted(values)}")
        return issue

    def _apply_update(self, session, issue_id, changes, note, note_kind, requested_status, lowers_priority):
        current_status = session.execute(
            select(Issue.status).where(Issue.id == issue_id)
        ).scalar_one_or_none()
        if current_status is None:
            raise NotFoundError(f"Issue not found: {issue_id}")

        now = utc_now()
        values = {EDITABLE_FIELDS[key]: value for key, value in changes.items()}
        if "title" in values:
            values["title_key"] = self.title_policy.key(values["title"])
        entry = None

        status_changes = requested_status is not None and requested_status != current_status
        if status_changes:
            IssueStateMachine.validate_transition(current_status, requested_status)
            if not note or not note.updated_by:
                raise ValidationError("A status change requires the acting identity (updatedBy)")
            values["status"] = requested_status
            entry = IssueTimelineEntry(
                issue_id=issue_id,
                status=requested_status,
                message=note.message or f"Status changed from {current_status} to {requested_status}",
                updated_by=note.updated_by,
                created_at=now,
            )
        elif note is not None:
            # Lifecycle kinds are only written by an actual status change
            free_form_kind = note_kind if not IssueStateMachine.is_lifecycle_status(note_kind) else None
            if note.message or free_form_kind:
                entry = IssueTimelineEntry(
                    issue_id=issue_id,
                    status=free_form_kind or NOTE_TIMELINE_STATUS,
                    message=note.message,
                    updated_by=note.updated_by,
                    created_at=now,
                )

        if not values and entry is None:
            raise ValidationError("Nothing to update")

        conditions = [Issue.id == issue_id, Issue.status == current_status]
        if lowers_priority:
            conditions.append(Issue.boosted.is_(False))

        values["updated_at"] = now
        result = session.execute(
            update(Issue)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            boosted = session.execute(select(Issue.boosted).where(Issue.id == issue_id)).scalar_one_or_none()
            if lowers_priority and boosted:
                raise ValidationError("A boosted issue keeps High priority")
            raise InvalidStatusTransitionError(
                current_status,
                requested_status or current_status,
                f"Issue {issue_id} changed concurrently, reload and retry",
            )
        if entry is not None:
            session.add(entry)
        session.flush()
        session.expire_all()
        return self._load(session, issue_id), values, status_changes, current_status

    def delete_issue(self, issue_id: str) -> None:
        """Explicit admin removal; timeline and upvotes go with it, payments stay"""
        issue_id = validate_entity_id(issue_id, "issue id")
        with self.db.managed_session() as session:
            issue = session.get(Issue, issue_id)
            if issue is None:
                raise NotFoundError(f"Issue not found: {issue_id}")
            session.delete(issue)
        logger.info(f"🗑️ ISSUE_DELETED: {issue_id}")

    # ------------------------------------------------------------------
    # Boost side effect (called by payment confirmation only)
    # ------------------------------------------------------------------

    def apply_boost(self, issue_id: str, paid_by: Optional[str]) -> BoostOutcome:
        """
        Set priority=High, boosted=True, boost_paid_by and append exactly one
        'boosted' timeline entry, all in one transaction. A missing issue
        leaves the store untouched and reports subject_found=False.
        """
        with self.db.managed_session() as session:
            now = utc_now()
            result = session.execute(
                update(Issue)
                .where(Issue.id == issue_id)
                .values(
                    priority=IssuePriority.HIGH.value,
                    boosted=True,
                    boost_paid_by=paid_by,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return BoostOutcome(subject_found=False, issue_id=issue_id)

            session.add(IssueTimelineEntry(
                issue_id=issue_id,
                status=BOOSTED_TIMELINE_STATUS,
                message=f"Issue boosted by {paid_by}",
                updated_by=paid_by,
                created_at=now,
            ))

        logger.info(f"🚀 ISSUE_BOOSTED: {issue_id} by {paid_by}")
        return BoostOutcome(subject_found=True, issue_id=issue_id)
