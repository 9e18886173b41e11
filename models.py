"""
Civic Issue Reporting - Database Schema
=======================================

Tables backing the issue lifecycle and payment reconciliation:
- issues with their status timeline and upvote membership
- the append-only payment ledger
- users with premium/block status

Invariant-bearing data is guarded by the schema itself:
UNIQUE(issue_id, voter) on upvotes, UNIQUE(title_key) on issues and
UNIQUE(external_transaction_id) on payments.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text,
    ForeignKey, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class IssueStatus(Enum):
    """Issue lifecycle states"""
    REPORTED = "reported"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class IssuePriority(Enum):
    NORMAL = "Normal"
    HIGH = "High"


class PaymentType(Enum):
    BOOST = "boost"
    SUBSCRIBE = "subscribe"


class SubjectKind(Enum):
    """Entity a payment's side effect applies to"""
    ISSUE = "issue"
    USER = "user"


class UserRole(Enum):
    CITIZEN = "citizen"
    STAFF = "staff"
    ADMIN = "admin"


# Timeline entry kind written by a successful boost payment
BOOSTED_TIMELINE_STATUS = "boosted"

# Timeline entry kind for a comment that does not change the status
NOTE_TIMELINE_STATUS = "note"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on read; stored values are always UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value is not None else None


# ============================================================================
# ISSUES
# ============================================================================

class Issue(Base):
    """Citizen-reported issue"""
    __tablename__ = 'issues'

    id = Column(String(32), primary_key=True)
    title = Column(String(255), nullable=False, index=True)
    # Title normalized by the active match policy; UNIQUE backs duplicate detection
    title_key = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True, index=True)
    location = Column(String(255), nullable=True)
    image = Column(Text, nullable=True)
    reporter_email = Column(String(255), nullable=True, index=True)

    status = Column(String(20), default=IssueStatus.REPORTED.value, nullable=False, index=True)
    priority = Column(String(20), default=IssuePriority.NORMAL.value, nullable=False)

    # Boost state (orthogonal to status)
    boosted = Column(Boolean, default=False, nullable=False)
    boost_paid_by = Column(String(255), nullable=True)

    # Counter kept equal to the number of issue_upvotes rows
    upvotes = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    timeline = relationship(
        "IssueTimelineEntry",
        back_populates="issue",
        order_by="IssueTimelineEntry.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    upvoters = relationship(
        "IssueUpvote",
        back_populates="issue",
        order_by="IssueUpvote.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint('upvotes >= 0', name='ck_issues_upvotes_non_negative'),
        Index('ix_issues_status_created', 'status', 'created_at'),
    )

    @property
    def upvoted_by(self) -> list:
        return [vote.voter for vote in self.upvoters]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "location": self.location,
            "image": self.image,
            "reporterEmail": self.reporter_email,
            "status": self.status,
            "priority": self.priority,
            "boosted": self.boosted,
            "boostPaidBy": self.boost_paid_by,
            "upvotes": self.upvotes,
            "upvotedBy": self.upvoted_by,
            "timeline": [entry.to_dict() for entry in self.timeline],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class IssueTimelineEntry(Base):
    """Audit trail entry; written in the same transaction as the change it records"""
    __tablename__ = 'issue_timeline'

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(String(32), ForeignKey('issues.id', ondelete='CASCADE'), nullable=False, index=True)
    status = Column(String(32), nullable=False)
    message = Column(Text, nullable=True)
    updated_by = Column(String(255), nullable=True)
    # Always server generated
    created_at = Column(DateTime(timezone=True), nullable=False)

    issue = relationship("Issue", back_populates="timeline")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "createdAt": _iso(self.created_at),
            "updatedBy": self.updated_by,
        }


class IssueUpvote(Base):
    """Upvote membership; one row per (issue, voter)"""
    __tablename__ = 'issue_upvotes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(String(32), ForeignKey('issues.id', ondelete='CASCADE'), nullable=False, index=True)
    voter = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    issue = relationship("Issue", back_populates="upvoters")

    __table_args__ = (
        UniqueConstraint('issue_id', 'voter', name='uq_issue_upvote_voter'),
    )


# ============================================================================
# PAYMENT LEDGER
# ============================================================================

class Payment(Base):
    """
    Confirmed payment. Append-only: rows are never updated or deleted.

    subject_kind/subject_id is a weak reference into issues or users with
    no foreign key: a payment row outlives its subject.
    """
    __tablename__ = 'payments'

    id = Column(String(32), primary_key=True)
    external_transaction_id = Column(String(255), nullable=False)
    subject_kind = Column(String(10), nullable=False)
    subject_id = Column(String(64), nullable=False)
    payer_email = Column(String(255), nullable=True, index=True)
    payment_type = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('external_transaction_id', name='uq_payments_external_transaction_id'),
        CheckConstraint("subject_kind IN ('issue', 'user')", name='ck_payments_subject_kind'),
        CheckConstraint("payment_type IN ('boost', 'subscribe')", name='ck_payments_payment_type'),
        Index('ix_payments_subject', 'subject_kind', 'subject_id'),
    )


# ============================================================================
# USERS
# ============================================================================

class User(Base):
    """Platform user with role, premium and block status"""
    __tablename__ = 'users'

    id = Column(String(32), primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    image = Column(Text, nullable=True)
    role = Column(String(20), default=UserRole.CITIZEN.value, nullable=False)

    is_premium = Column(Boolean, default=False, nullable=False)
    subscribed_by = Column(String(255), nullable=True)

    is_blocked = Column(Boolean, default=False, nullable=False)
    blocked_by = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "image": self.image,
            "role": self.role,
            "isPremium": self.is_premium,
            "subscribedBy": self.subscribed_by,
            "isBlocked": self.is_blocked,
            "blockedBy": self.blocked_by,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "lastLoginAt": _iso(self.last_login_at),
        }
