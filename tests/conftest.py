"""
Shared test fixtures for the civic issue backend

1. In-memory SQLite storage handle (fresh schema per test)
2. Service fixtures wired to that handle
3. Fake payment processor and identity verifier standing in for Stripe and
   the identity provider
"""

import logging
from typing import Dict, List, Optional

import pytest

from database import Database
from services.identity import Identity
from services.issue_service import IssueDraft, IssueService
from services.payment_confirmation import PaymentConfirmationCoordinator
from services.payment_ledger import PaymentLedger
from services.payment_processor import CheckoutLink, LineItem, ProcessorSession
from services.user_role_service import UserRoleService
from utils.exception_handler import AuthError, InvalidSessionError

logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


class FakePaymentProcessor:
    """In-memory processor: sessions are registered by tests, retrievals are counted"""

    def __init__(self):
        self.sessions: Dict[str, ProcessorSession] = {}
        self.created: List[dict] = []
        self.retrievals = 0

    def add_session(
        self,
        session_id: str,
        payment_type: str = "boost",
        subject_id: str = "issue123",
        status: str = "complete",
        payment_intent_id: Optional[str] = "pi_default",
        customer_email: Optional[str] = "payer@example.com",
        amount_total: Optional[int] = 10000,
        subject_kind: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProcessorSession:
        if metadata is None:
            metadata = {"payment_type": payment_type, "subject_id": subject_id}
            if subject_kind is not None:
                metadata["subject_kind"] = subject_kind
        session = ProcessorSession(
            session_id=session_id,
            status=status,
            payment_intent_id=payment_intent_id,
            customer_email=customer_email,
            amount_total=amount_total,
            currency="usd",
            metadata=metadata,
        )
        self.sessions[session_id] = session
        return session

    def create_checkout_session(
        self,
        line_item: LineItem,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutLink:
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append({
            "session_id": session_id,
            "line_item": line_item,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
        })
        return CheckoutLink(url=f"https://checkout.example.com/{session_id}", session_id=session_id)

    def retrieve_session(self, session_id: str) -> ProcessorSession:
        self.retrievals += 1
        try:
            return self.sessions[session_id]
        except KeyError:
            raise InvalidSessionError(f"Unknown checkout session: {session_id}", session_id)


class FakeIdentityVerifier:
    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens = tokens or {"admin-token": "admin@city.gov"}

    def verify(self, token: str) -> Identity:
        email = self.tokens.get(token)
        if email is None:
            raise AuthError("Unauthorized Access!")
        return Identity(email=email)


@pytest.fixture
def db():
    database = Database("sqlite://").init()
    yield database
    database.shutdown()


@pytest.fixture
def issue_service(db):
    return IssueService(db)


@pytest.fixture
def user_service(db):
    return UserRoleService(db)


@pytest.fixture
def ledger(db):
    return PaymentLedger(db)


@pytest.fixture
def processor():
    return FakePaymentProcessor()


@pytest.fixture
def identity_verifier():
    return FakeIdentityVerifier()


@pytest.fixture
def coordinator(processor, ledger, issue_service, user_service):
    return PaymentConfirmationCoordinator(processor, ledger, issue_service, user_service)


@pytest.fixture
def sample_issue(issue_service):
    return issue_service.report(IssueDraft(
        title="Broken streetlight on 5th Ave",
        description="Lamp post 42 has been dark for a week",
        category="lighting",
        location="5th Ave & Main",
        reporter_email="reporter@example.com",
    ))


@pytest.fixture
def sample_user(user_service):
    user, _ = user_service.ensure_user("citizen@example.com", name="Casey Citizen")
    return user
