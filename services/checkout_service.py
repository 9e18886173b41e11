"""
Checkout Service
Builds processor checkout sessions for issue boosts and premium
subscriptions. The session metadata carries the tagged payment subject that
confirmation later reads back from the processor.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from models import PaymentType
from services.payment_ledger import SUBJECT_KIND_FOR_PAYMENT
from services.payment_processor import CheckoutLink, LineItem, PaymentProcessor
from utils.exception_handler import ValidationError
from utils.helpers import validate_entity_id

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


@dataclass
class CheckoutRequest:
    payment_type: str
    subject_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class CheckoutService:

    def __init__(
        self,
        processor: PaymentProcessor,
        client_domain: str,
        boost_price_cents: int,
        subscription_price_cents: int,
        currency: str = "usd",
    ):
        self.processor = processor
        self.client_domain = client_domain.rstrip("/")
        self.prices = {
            PaymentType.BOOST: boost_price_cents,
            PaymentType.SUBSCRIBE: subscription_price_cents,
        }
        self.currency = currency

    def create_checkout(self, request: CheckoutRequest) -> CheckoutLink:
        try:
            payment_type = PaymentType(request.payment_type or PaymentType.BOOST.value)
        except ValueError:
            raise ValidationError(f"Unknown payment type: {request.payment_type!r}")
        subject_id = validate_entity_id(request.subject_id, "subject id")
        subject_kind = SUBJECT_KIND_FOR_PAYMENT[payment_type]

        if payment_type is PaymentType.SUBSCRIBE:
            default_name = "Premium subscription"
            cancel_url = f"{self.client_domain}/dashboard/profile"
        else:
            default_name = "Issue boost"
            cancel_url = f"{self.client_domain}/issues/{subject_id}"

        line_item = LineItem(
            name=request.name or default_name,
            unit_amount=self.prices[payment_type],
            currency=self.currency,
            description=request.description,
            images=[request.image] if request.image else [],
        )
        metadata = {
            "payment_type": payment_type.value,
            "subject_kind": subject_kind.value,
            "subject_id": subject_id,
        }
        success_url = f"{self.client_domain}/payment/success?session_id={CHECKOUT_SESSION_PLACEHOLDER}"

        link = self.processor.create_checkout_session(
            line_item=line_item,
            metadata=metadata,
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=request.email,
        )
        logger.info(f"🧾 CHECKOUT_REQUESTED: {payment_type.value} for {subject_kind.value}:{subject_id} -> {link.session_id}")
        return link
