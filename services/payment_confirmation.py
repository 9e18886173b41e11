"""
Payment Confirmation Coordinator

Turns a client-supplied checkout session reference into at most one ledger
record and one side effect:

1. Ask the processor for the session (the only trusted source)
2. Unpaid session -> nothing recorded, not an error
3. Record the payment under the ledger's uniqueness constraint
4. Only the call that inserted the record applies the side effect
   (boost an issue or elevate a user to premium)

Consistency model: ledger first, effect eventually. A side effect that cannot
be applied is logged as a reconciliation gap; the ledger row is never rolled
back. Calling confirm again for the same session is always safe.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from models import PaymentType
from services.issue_service import IssueService
from services.payment_ledger import (
    IssueSubject, UserSubject, PaymentDraft, PaymentLedger, PaymentRecord,
    PaymentSubject, SUBJECT_KIND_FOR_PAYMENT, subject_from,
)
from services.payment_processor import PaymentProcessor, ProcessorSession
from services.user_role_service import UserRoleService
from utils.exception_handler import InvalidSessionError

logger = logging.getLogger(__name__)
reconciliation_logger = logging.getLogger("reconciliation")

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class ConfirmationResult:
    record: Optional[PaymentRecord]
    applied: bool
    # Whether the subject was found and updated; None when no effect was attempted
    effect_applied: Optional[bool] = None
    session_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.to_dict() if self.record else None,
            "applied": self.applied,
            "effectApplied": self.effect_applied,
        }


class PaymentConfirmationCoordinator:

    def __init__(
        self,
        processor: PaymentProcessor,
        ledger: PaymentLedger,
        issues: IssueService,
        users: UserRoleService,
    ):
        self.processor = processor
        self.ledger = ledger
        self.issues = issues
        self.users = users

    def confirm(self, session_reference: str) -> ConfirmationResult:
        if not session_reference or not isinstance(session_reference, str) or not session_reference.strip():
            raise InvalidSessionError("Session reference is required", session_reference)
        session_reference = session_reference.strip()

        session = self.processor.retrieve_session(session_reference)
        if not session.is_complete:
            logger.info(f"⏳ PAYMENT_NOT_COMPLETE: {session_reference} status={session.status}")
            return ConfirmationResult(record=None, applied=False, session_status=session.status)

        draft = self._draft_from_session(session)
        record, inserted = self.ledger.record_once(draft)
        if not inserted:
            return ConfirmationResult(record=record, applied=False, session_status=session.status)

        effect_applied = self._apply_side_effect(record)
        return ConfirmationResult(
            record=record,
            applied=True,
            effect_applied=effect_applied,
            session_status=session.status,
        )

    def _draft_from_session(self, session: ProcessorSession) -> PaymentDraft:
        """Validate a completed session and turn it into a ledger draft"""
        metadata = session.metadata or {}
        reference = session.session_id

        if not session.payment_intent_id:
            raise InvalidSessionError(f"Completed session {reference} has no payment intent", reference)

        raw_type = metadata.get("payment_type") or metadata.get("type") or PaymentType.BOOST.value
        try:
            payment_type = PaymentType(raw_type)
        except ValueError:
            raise InvalidSessionError(f"Session {reference} has unknown payment type {raw_type!r}", reference)

        subject_id = metadata.get("subject_id") or metadata.get("id")
        if not subject_id:
            raise InvalidSessionError(f"Session {reference} carries no payment subject", reference)

        expected_kind = SUBJECT_KIND_FOR_PAYMENT[payment_type]
        raw_kind = metadata.get("subject_kind") or expected_kind.value
        if raw_kind != expected_kind.value:
            raise InvalidSessionError(
                f"Session {reference}: {payment_type.value} payments apply to {expected_kind.value}, not {raw_kind!r}",
                reference,
            )

        amount = (Decimal(session.amount_total or 0) / 100).quantize(CENTS)
        return PaymentDraft(
            external_transaction_id=session.payment_intent_id,
            subject=subject_from(raw_kind, subject_id),
            payer_email=session.customer_email,
            payment_type=payment_type,
            amount=amount,
            currency=session.currency,
        )

    def _apply_side_effect(self, record: PaymentRecord) -> bool:
        subject: PaymentSubject = record.subject
        try:
            if isinstance(subject, IssueSubject):
                found = self.issues.apply_boost(subject.id, record.payer_email).subject_found
            elif isinstance(subject, UserSubject):
                found = self.users.elevate_to_premium(subject.id, record.payer_email)
            else:
                raise TypeError(f"Unhandled payment subject: {subject!r}")
        except Exception as e:
            reconciliation_logger.error(
                f"🚨 RECONCILIATION_GAP: payment {record.id} (tx {record.external_transaction_id}) recorded "
                f"but {record.payment_type.value} for {subject.kind.value}:{subject.id} failed: {e}",
                exc_info=True,
            )
            return False

        if not found:
            reconciliation_logger.error(
                f"🚨 RECONCILIATION_GAP: payment {record.id} (tx {record.external_transaction_id}) recorded "
                f"but {subject.kind.value} {subject.id} does not exist; {record.payment_type.value} not applied"
            )
        return found
