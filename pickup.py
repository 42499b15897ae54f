"""
Pickup Token Authority.

Every order gets one unguessable token at placement. Staff redeem it once,
from a scanned QR code or manual entry, after the order is marked Ready;
redemption deducts the order's stock and completes it.
"""
import logging
import secrets
from io import BytesIO

import qrcode

import orders
import policy
from errors import (
    AlreadyCompletedError,
    ConflictError,
    InvalidPickupTokenError,
    NotReadyError,
    ValidationError,
)
from repository import Repository
from schemas import Actor, Order, OrderStatus

logger = logging.getLogger(__name__)

TOKEN_BYTES = 24


def new_pickup_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def parse_scanned_token(raw: str) -> str:
    """Normalize a decoded QR payload or manually typed token."""
    token = (raw or "").strip()
    if not token:
        raise ValidationError("Missing token")
    return token


def _redeem(repo: Repository, order: Order) -> Order:
    status = OrderStatus(order.status)
    if status is OrderStatus.COMPLETED:
        raise AlreadyCompletedError(order.order_number)
    if status is not OrderStatus.READY:
        raise NotReadyError(order.order_number, status.value)
    try:
        return orders.fulfil(repo, order, [OrderStatus.READY], redeemed=True)
    except ConflictError as e:
        logger.warning("Pickup for order #%s rejected: %s", order.order_number, e)
        raise


def redeem_by_token(repo: Repository, actor: Actor, token: str) -> Order:
    """Complete the Ready order that owns this token."""
    policy.require(actor, "redeem_pickup")
    token = parse_scanned_token(token)
    doc = repo.find_order_by_token(token)
    if not doc:
        raise InvalidPickupTokenError()
    return _redeem(repo, Order(**doc))


def redeem_for_order(repo: Repository, actor: Actor, order_id: str, token: str) -> Order:
    """Complete a specific order, checking the presented token against it."""
    policy.require(actor, "redeem_pickup")
    token = parse_scanned_token(token)
    order = orders.load_order(repo, order_id)
    if not secrets.compare_digest(order.pickup_token.encode(), token.encode()):
        raise InvalidPickupTokenError()
    return _redeem(repo, order)


def render_pickup_qr(token: str) -> bytes:
    """PNG QR code carrying the bare pickup token."""
    img = qrcode.make(token)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
