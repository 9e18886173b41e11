"""
Payment routes

- POST /create-checkout-session: start a Stripe Checkout for a boost or a
  premium subscription
- POST /payment/success: confirm a checkout session; safe to call any number
  of times for the same session
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from handlers.common import first_of, read_json_body, translate_error
from services.checkout_service import CheckoutRequest
from utils.exception_handler import ExternalServiceError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-checkout-session")
async def create_checkout_session(request: Request):
    try:
        data = await read_json_body(request)
        checkout = request.app.state.checkout_service
        if checkout is None:
            raise ExternalServiceError("stripe", "Payment processor is not configured")

        checkout_request = CheckoutRequest(
            payment_type=data.get("type") or data.get("paymentType") or "",
            subject_id=first_of(data, "subjectId", "id", "userId"),
            email=data.get("email"),
            name=first_of(data, "name", "title"),
            description=data.get("description"),
            image=data.get("image"),
        )
        link = checkout.create_checkout(checkout_request)
        return {"url": link.url, "sessionId": link.session_id}

    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "CHECKOUT_SESSION")


@router.post("/payment/success")
async def payment_success(request: Request):
    """
    Confirm a checkout session.

    First confirmation of a paid session records the payment and applies its
    effect (applied=true). Any later call for the same session returns the
    stored record with applied=false. An unpaid session records nothing.
    """
    try:
        data = await read_json_body(request)
        session_id = first_of(data, "sessionId", "session_id") or request.query_params.get("session_id")

        coordinator = request.app.state.confirmation
        if coordinator is None:
            raise ExternalServiceError("stripe", "Payment processor is not configured")

        result = coordinator.confirm(session_id)

        if result.record is None:
            return {
                "success": False,
                "applied": False,
                "message": f"Payment not completed (session status: {result.session_status})",
            }

        if result.applied:
            return {
                "success": True,
                "applied": True,
                "effectApplied": result.effect_applied,
                "record": result.record.to_dict(),
                "orderId": result.record.id,
            }

        return {
            "success": True,
            "applied": False,
            "existingRecord": result.record.to_dict(),
        }

    except HTTPException:
        raise
    except Exception as e:
        raise translate_error(e, "PAYMENT_SUCCESS")
