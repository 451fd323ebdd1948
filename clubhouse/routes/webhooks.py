"""Stripe webhook handler.

Processes payment_intent.succeeded and payment_intent.payment_failed events.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from clubhouse.core.database import async_session_factory
from clubhouse.core.exceptions import NotFoundError
from clubhouse.models.resource import ResourceKind
from clubhouse.services.booking_flow import confirm_booking
from clubhouse.services.stripe_service import construct_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request):
    """Handle Stripe webhook events.

    Uses a dedicated DB session (not the request-scoped one) because webhook
    processing must commit independently of any ongoing request.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = construct_webhook_event(payload, sig_header)
    except Exception:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature") from None

    event_type = event["type"]
    data = event["data"]["object"]

    if event_type == "payment_intent.succeeded":
        await _handle_payment_succeeded(data)
    elif event_type == "payment_intent.payment_failed":
        _handle_payment_failed(data)

    return {"status": "ok"}


def _booking_ref(payment_intent: dict) -> tuple[ResourceKind, int] | None:
    metadata = payment_intent.get("metadata") or {}
    try:
        return ResourceKind(str(metadata["booking_type"]).upper()), int(metadata["booking_id"])
    except (KeyError, ValueError):
        return None


async def _handle_payment_succeeded(payment_intent: dict) -> None:
    """Confirm the booking the intent was created for. Duplicate events are no-ops."""
    ref = _booking_ref(payment_intent)
    if ref is None:
        logger.warning("Payment intent %s has no booking reference; ignored", payment_intent.get("id"))
        return

    booking_type, booking_id = ref
    amount = payment_intent.get("amount_received") or payment_intent.get("amount")
    async with async_session_factory() as db:
        try:
            await confirm_booking(db, booking_type, booking_id, amount=amount, transaction_id=payment_intent["id"])
        except NotFoundError:
            logger.warning("Payment intent %s references unknown booking %s", payment_intent["id"], ref)
            return
        await db.commit()


def _handle_payment_failed(payment_intent: dict) -> None:
    """Leave the booking pending; its hold lapses on its own if no retry succeeds."""
    logger.info("Payment intent %s failed for %s", payment_intent.get("id"), _booking_ref(payment_intent))
