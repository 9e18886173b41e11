"""
Payment Ledger
Append-only record of confirmed payments, keyed by the processor's
transaction id. UNIQUE(external_transaction_id) is the serialization point
for payment confirmation: a losing concurrent insert is reported as
"already recorded", never as an error and never as a second credit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from database import Database
from models import Payment, PaymentType, SubjectKind, as_utc
from utils.helpers import generate_id, utc_now

logger = logging.getLogger(__name__)


# ============================================================================
# Payment subject: tagged reference to the entity a payment benefits
# ============================================================================

@dataclass(frozen=True)
class IssueSubject:
    id: str
    kind = SubjectKind.ISSUE


@dataclass(frozen=True)
class UserSubject:
    id: str
    kind = SubjectKind.USER


PaymentSubject = Union[IssueSubject, UserSubject]


def subject_from(kind: str, subject_id: str) -> PaymentSubject:
    if kind == SubjectKind.ISSUE.value:
        return IssueSubject(subject_id)
    if kind == SubjectKind.USER.value:
        return UserSubject(subject_id)
    raise ValueError(f"Unknown payment subject kind: {kind!r}")


# Which subject kind each payment type credits
SUBJECT_KIND_FOR_PAYMENT = {
    PaymentType.BOOST: SubjectKind.ISSUE,
    PaymentType.SUBSCRIBE: SubjectKind.USER,
}


@dataclass(frozen=True)
class PaymentDraft:
    external_transaction_id: str
    subject: PaymentSubject
    payer_email: Optional[str]
    payment_type: PaymentType
    amount: Decimal
    currency: Optional[str] = None


@dataclass(frozen=True)
class PaymentRecord:
    """Immutable view of a ledger row"""
    id: str
    external_transaction_id: str
    subject: PaymentSubject
    payer_email: Optional[str]
    payment_type: PaymentType
    amount: Decimal
    currency: Optional[str]
    created_at: datetime

    @classmethod
    def from_model(cls, row: Payment) -> "PaymentRecord":
        return cls(
            id=row.id,
            external_transaction_id=row.external_transaction_id,
            subject=subject_from(row.subject_kind, row.subject_id),
            payer_email=row.payer_email,
            payment_type=PaymentType(row.payment_type),
            amount=Decimal(row.amount),
            currency=row.currency,
            created_at=as_utc(row.created_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transactionId": self.external_transaction_id,
            "subject": {"kind": self.subject.kind.value, "id": self.subject.id},
            "paidBy": self.payer_email,
            "paymentType": self.payment_type.value,
            "amount": float(self.amount),
            "currency": self.currency,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class PaymentLedger:
    """Append-only ledger: no update or delete operations"""

    def __init__(self, db: Database):
        self.db = db

    def find_by_transaction(self, external_transaction_id: str) -> Optional[PaymentRecord]:
        with self.db.managed_session() as session:
            row = session.execute(
                select(Payment).where(Payment.external_transaction_id == external_transaction_id)
            ).scalar_one_or_none()
            return PaymentRecord.from_model(row) if row is not None else None

    def record_once(self, draft: PaymentDraft) -> Tuple[PaymentRecord, bool]:
        """
        Record a confirmed payment exactly once.

        Returns (record, inserted). inserted is True only for the call whose
        INSERT won; every other call gets the stored record back.
        """
        existing = self.find_by_transaction(draft.external_transaction_id)
        if existing is not None:
            logger.info(f"♻️ PAYMENT_ALREADY_RECORDED: {draft.external_transaction_id} -> {existing.id}")
            return existing, False

        try:
            with self.db.managed_session() as session:
                row = Payment(
                    id=generate_id("payment"),
                    external_transaction_id=draft.external_transaction_id,
                    subject_kind=draft.subject.kind.value,
                    subject_id=draft.subject.id,
                    payer_email=draft.payer_email,
                    payment_type=draft.payment_type.value,
                    amount=draft.amount,
                    currency=draft.currency,
                    created_at=utc_now(),
                )
                session.add(row)
                session.flush()
                record = PaymentRecord.from_model(row)
        except IntegrityError as e:
            logger.warning(
                f"🔄 CONCURRENCY_DETECTED: {draft.external_transaction_id} - checking if already recorded: {e.orig}"
            )
            existing = self.find_by_transaction(draft.external_transaction_id)
            if existing is None:
                # Constraint other than the transaction id uniqueness
                raise
            return existing, False

        logger.info(
            f"✅ PAYMENT_RECORDED: {record.id} tx={record.external_transaction_id} "
            f"{record.payment_type.value} {record.subject.kind.value}:{record.subject.id} amount={record.amount}"
        )
        return record, True
