"""
Payment Processor
Capability interface for the external payment processor and its Stripe
Checkout implementation.

The processor is consulted for the truth about a payment; nothing the client
sends besides the session reference is trusted.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import stripe

from utils.exception_handler import ExternalServiceError, InvalidSessionError

logger = logging.getLogger(__name__)


# Checkout Session status reported once the customer has paid
SESSION_STATUS_COMPLETE = "complete"


@dataclass(frozen=True)
class LineItem:
    name: str
    unit_amount: int  # smallest currency unit (cents)
    currency: str = "usd"
    description: Optional[str] = None
    images: List[str] = field(default_factory=list)
    quantity: int = 1


@dataclass(frozen=True)
class CheckoutLink:
    url: str
    session_id: str


@dataclass(frozen=True)
class ProcessorSession:
    """Processor-side state of a checkout session"""
    session_id: str
    status: Optional[str]
    payment_intent_id: Optional[str]
    customer_email: Optional[str]
    amount_total: Optional[int]
    currency: Optional[str]
    metadata: Dict[str, str]

    @property
    def is_complete(self) -> bool:
        return self.status == SESSION_STATUS_COMPLETE


class PaymentProcessor(Protocol):
    """Operations the confirmation flow consumes from a payment processor"""

    def create_checkout_session(
        self,
        line_item: LineItem,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutLink:
        ...

    def retrieve_session(self, session_id: str) -> ProcessorSession:
        ...


def _as_dict(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return dict(value)


def _id_of(value: Any) -> Optional[str]:
    """payment_intent is an id string unless the session was retrieved with expansion"""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


class StripePaymentProcessor:
    """Stripe Checkout adapter"""

    SESSION_ID_PATTERN = re.compile(r"^cs_[A-Za-z0-9_]+$")

    def __init__(self, api_key: str):
        self.api_key = api_key

    def create_checkout_session(
        self,
        line_item: LineItem,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutLink:
        product_data: Dict[str, Any] = {"name": line_item.name}
        if line_item.description:
            product_data["description"] = line_item.description
        images = [image for image in line_item.images if image]
        if images:
            product_data["images"] = images

        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": line_item.currency,
                    "unit_amount": line_item.unit_amount,
                    "product_data": product_data,
                },
                "quantity": line_item.quantity,
            }],
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"❌ STRIPE_CHECKOUT_FAILED: {type(e).__name__}: {e}")
            raise ExternalServiceError("stripe", str(e))

        logger.info(f"💳 CHECKOUT_CREATED: {session.id} ({metadata.get('payment_type')} {metadata.get('subject_id')})")
        return CheckoutLink(url=session.url, session_id=session.id)

    def retrieve_session(self, session_id: str) -> ProcessorSession:
        if not session_id or not self.SESSION_ID_PATTERN.match(session_id):
            raise InvalidSessionError(f"Malformed checkout session id: {session_id!r}", session_id)

        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            logger.warning(f"⚠️ STRIPE_SESSION_UNKNOWN: {session_id}: {e}")
            raise InvalidSessionError(f"Unknown checkout session: {session_id}", session_id)
        except stripe.StripeError as e:
            logger.error(f"❌ STRIPE_RETRIEVE_FAILED: {session_id}: {type(e).__name__}: {e}")
            raise ExternalServiceError("stripe", str(e))

        customer_email = getattr(session, "customer_email", None)
        if not customer_email:
            details = getattr(session, "customer_details", None)
            customer_email = getattr(details, "email", None) if details is not None else None

        return ProcessorSession(
            session_id=session.id,
            status=getattr(session, "status", None),
            payment_intent_id=_id_of(getattr(session, "payment_intent", None)),
            customer_email=customer_email,
            amount_total=getattr(session, "amount_total", None),
            currency=getattr(session, "currency", None),
            metadata={str(k): str(v) for k, v in _as_dict(getattr(session, "metadata", None)).items()},
        )
