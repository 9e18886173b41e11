"""Checkout session requests for boosts and subscriptions"""

import pytest

from services.checkout_service import CheckoutRequest, CheckoutService
from utils.exception_handler import ValidationError


@pytest.fixture
def checkout(processor):
    return CheckoutService(
        processor,
        client_domain="http://localhost:5173/",
        boost_price_cents=10000,
        subscription_price_cents=100000,
    )


class TestCheckoutService:

    def test_boost_checkout(self, checkout, processor):
        link = checkout.create_checkout(CheckoutRequest(
            payment_type="boost", subject_id="ISS1", email="payer@example.com", name="Pothole on Elm St",
        ))

        call = processor.created[-1]
        assert link.session_id == call["session_id"]
        assert call["line_item"].unit_amount == 10000
        assert call["line_item"].name == "Pothole on Elm St"
        assert call["metadata"] == {"payment_type": "boost", "subject_kind": "issue", "subject_id": "ISS1"}
        assert call["cancel_url"] == "http://localhost:5173/issues/ISS1"
        assert call["success_url"] == "http://localhost:5173/payment/success?session_id={CHECKOUT_SESSION_ID}"
        assert call["customer_email"] == "payer@example.com"

    def test_subscription_checkout(self, checkout, processor):
        checkout.create_checkout(CheckoutRequest(payment_type="subscribe", subject_id="USR1"))

        call = processor.created[-1]
        assert call["line_item"].unit_amount == 100000
        assert call["line_item"].name == "Premium subscription"
        assert call["metadata"]["subject_kind"] == "user"
        assert call["cancel_url"] == "http://localhost:5173/dashboard/profile"

    def test_missing_type_defaults_to_boost(self, checkout, processor):
        checkout.create_checkout(CheckoutRequest(payment_type="", subject_id="ISS1"))
        assert processor.created[-1]["metadata"]["payment_type"] == "boost"

    def test_unknown_type(self, checkout):
        with pytest.raises(ValidationError):
            checkout.create_checkout(CheckoutRequest(payment_type="donation", subject_id="ISS1"))

    @pytest.mark.parametrize("subject_id", [None, "", "../etc"])
    def test_invalid_subject(self, checkout, subject_id):
        with pytest.raises(ValidationError):
            checkout.create_checkout(CheckoutRequest(payment_type="boost", subject_id=subject_id))
