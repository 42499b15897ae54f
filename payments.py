"""Payment Intent Tracker for the simulated Razorpay flow."""
import logging
import uuid
from datetime import datetime, timezone

import policy
from errors import PaymentNotFoundError, ValidationError
from repository import Repository
from schemas import Actor, PaymentIntent

logger = logging.getLogger(__name__)

CURRENCY = "INR"
PROVIDER = "razorpay_simulated"


def create_payment(repo: Repository, actor: Actor, amount: int) -> PaymentIntent:
    policy.require(actor, "create_payment")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Invalid amount")
    payment = PaymentIntent(
        id=uuid.uuid4().hex,
        user_id=actor.user_id,
        amount=amount,
        currency=CURRENCY,
        provider=PROVIDER,
        status="created",
        created_at=datetime.now(timezone.utc),
    )
    repo.insert_payment(payment.model_dump())
    return payment


def get_owned_payment(repo: Repository, payment_id: str, user_id: str) -> PaymentIntent:
    doc = repo.get_payment(payment_id)
    # another user's payment is indistinguishable from a missing one
    if not doc or doc["user_id"] != user_id:
        raise PaymentNotFoundError(payment_id)
    return PaymentIntent(**doc)


def confirm_payment(repo: Repository, actor: Actor, payment_id: str) -> PaymentIntent:
    """Mark the caller's payment as paid. Confirming twice returns the stored intent unchanged."""
    policy.require(actor, "confirm_payment")
    if not payment_id:
        raise ValidationError("Missing payment_id")
    get_owned_payment(repo, payment_id, actor.user_id)
    doc = repo.mark_payment_paid(payment_id, datetime.now(timezone.utc))
    logger.info("Payment %s confirmed for user %s", payment_id, actor.user_id)
    return PaymentIntent(**doc)
