"""
Order Ledger: placement, the status state machine and fulfilment.

Stock is deducted when an order is completed (directly by an admin or via
pickup redemption), never at placement. Every status change is a
compare-and-set on the status the caller observed, so concurrent requests
cannot complete an order twice or deduct its stock twice.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import catalog
import pickup
import policy
from errors import (
    AlreadyCompletedError,
    ConflictError,
    EmptyCartError,
    InsufficientStockError,
    InvalidItemError,
    InvalidStatusError,
    InvalidTransitionError,
    ItemUnavailableError,
    OrderChangedError,
    OrderNotFoundError,
    PaymentAlreadyUsedError,
    PaymentMismatchError,
    PaymentRequiredError,
    ValidationError,
)
from payments import get_owned_payment
from repository import Repository, merge_lines
from schemas import (
    Actor,
    CartLine,
    Order,
    OrderLineItem,
    OrderStatus,
    OrderView,
    PaymentMethod,
)

logger = logging.getLogger(__name__)

MIN_ETA_MINUTES = 5
ORDER_NUMBER_WIDTH = 4


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatusError(str(value))


def parse_payment_method(value: Optional[str]) -> PaymentMethod:
    try:
        return PaymentMethod(value or PaymentMethod.PAY_ON_PICKUP.value)
    except ValueError:
        raise ValidationError("Invalid payment method")


def format_order_number(seq: int) -> str:
    return str(seq).zfill(ORDER_NUMBER_WIDTH)


def estimate_eta(prep_minutes: float) -> int:
    return max(MIN_ETA_MINUTES, int(round(prep_minutes)))


# -----------------------------
# Placement
# -----------------------------

def build_line_items(repo: Repository, cart: Sequence[CartLine]) -> tuple:
    """Resolve cart lines against the catalog. Returns (line_items, total, raw_eta_minutes)."""
    line_items: List[OrderLineItem] = []
    docs: Dict[str, dict] = {}
    total = 0
    prep_minutes = 0
    for line in cart:
        if line.qty <= 0:
            raise InvalidItemError(line.item_id, "quantity must be positive")
        doc = docs.get(line.item_id) or repo.get_menu_item(line.item_id)
        if not doc:
            raise InvalidItemError(line.item_id)
        if not doc["available"]:
            raise ItemUnavailableError(doc["id"], doc["name"])
        docs[doc["id"]] = doc
        line_items.append(OrderLineItem(item_id=doc["id"], name=doc["name"], price=doc["price"], qty=line.qty))
        total += doc["price"] * line.qty
        prep_minutes += doc["prep_time"] * line.qty

    # repeated lines for one item must fit the stock together
    for item_id, qty in merge_lines((li.item_id, li.qty) for li in line_items):
        doc = docs[item_id]
        if doc["stock"] < qty:
            raise InsufficientStockError(item_id, doc["name"])
    return line_items, total, prep_minutes


def _check_payment(repo: Repository, actor: Actor, payment_id: Optional[str], total: int) -> None:
    if not payment_id:
        raise PaymentRequiredError()
    payment = get_owned_payment(repo, payment_id, actor.user_id)
    if payment.status != "paid":
        raise PaymentRequiredError("Payment not confirmed")
    if payment.amount != total:
        raise PaymentMismatchError(total, payment.amount)
    if payment.order_id:
        raise PaymentAlreadyUsedError(payment_id)


def place_order(
    repo: Repository,
    actor: Actor,
    items: Sequence[CartLine],
    payment_method: Optional[str] = None,
    payment_id: Optional[str] = None,
) -> Order:
    """Validate a cart and admit it as a Pending order. No stock is deducted here."""
    policy.require(actor, "place_order")
    if not items:
        raise EmptyCartError()
    method = parse_payment_method(payment_method)

    line_items, total, prep_minutes = build_line_items(repo, items)

    if method.requires_confirmation:
        _check_payment(repo, actor, payment_id, total)
    else:
        payment_id = None

    order_id = uuid.uuid4().hex
    if payment_id and not repo.claim_payment(payment_id, order_id):
        raise PaymentAlreadyUsedError(payment_id)

    # the claim is released if anything fails before the order is stored
    try:
        now = _utc_now()
        order = Order(
            id=order_id,
            order_number=format_order_number(repo.next_order_number()),
            user_id=actor.user_id,
            customer_name=actor.name,
            items=line_items,
            total=total,
            status=OrderStatus.PENDING,
            created_at=now,
            eta_minutes=estimate_eta(prep_minutes),
            payment_method=method,
            payment_method_label=method.label,
            payment_id=payment_id,
            pickup_token=pickup.new_pickup_token(),
            pickup_token_issued_at=now,
        )
        repo.insert_order(order.model_dump())
    except Exception:
        if payment_id:
            repo.release_payment(payment_id, order_id)
        raise
    logger.info("Order #%s placed by %s, total %s", order.order_number, actor.user_id, order.total)
    return order


# -----------------------------
# Status transitions
# -----------------------------

def load_order(repo: Repository, order_id: str) -> Order:
    doc = repo.get_order(order_id)
    if not doc:
        raise OrderNotFoundError(order_id)
    return Order(**doc)


def fulfil(
    repo: Repository,
    order: Order,
    expected: Iterable[OrderStatus],
    redeemed: bool = False,
) -> Order:
    """
    Deduct stock for every line of the order and mark it Completed.

    The deduction happens first and is returned to stock if the order's
    status changed underneath us, so an order's stock is taken exactly once.
    """
    lines = [(li.item_id, li.qty) for li in order.items]
    catalog.deduct_lines(repo, lines)

    now = _utc_now()
    fields: Dict[str, object] = {"status": OrderStatus.COMPLETED.value, "completed_at": now}
    if redeemed:
        fields["pickup_token_redeemed_at"] = now
    doc = repo.transition_order(order.id, [s.value for s in expected], fields)
    if doc is None:
        repo.restock(lines)
        current = repo.get_order(order.id)
        if current and current["status"] == OrderStatus.COMPLETED.value:
            raise AlreadyCompletedError(order.order_number)
        raise OrderChangedError(order.id)
    logger.info("Order #%s completed%s", order.order_number, " via pickup token" if redeemed else "")
    return Order(**doc)


def update_status(repo: Repository, actor: Actor, order_id: str, status: str) -> Order:
    target = parse_status(status)
    policy.require(actor, "update_status")
    if target is OrderStatus.COMPLETED:
        policy.require(actor, "complete_order")

    order = load_order(repo, order_id)
    current = OrderStatus(order.status)
    if current is OrderStatus.COMPLETED:
        raise AlreadyCompletedError(order.order_number)
    if target is current:
        return order
    if target.rank < current.rank:
        raise InvalidTransitionError(current.value, target.value)

    if target is OrderStatus.COMPLETED:
        try:
            return fulfil(repo, order, [current])
        except ConflictError as e:
            logger.warning("Completing order #%s rejected: %s", order.order_number, e)
            raise

    doc = repo.transition_order(order.id, [current.value], {"status": target.value})
    if doc is None:
        raise OrderChangedError(order.id)
    logger.info("Order #%s moved %s -> %s by %s", order.order_number, current.value, target.value, actor.user_id)
    return Order(**doc)


# -----------------------------
# Read side
# -----------------------------

def to_view(order: Order, include_token: bool) -> OrderView:
    data = order.model_dump()
    if not include_token:
        data["pickup_token"] = None
        data["pickup_token_issued_at"] = None
    return OrderView(**data)


def list_orders(repo: Repository, actor: Actor) -> List[OrderView]:
    """Newest first. Staff see every order; students see their own, with pickup tokens."""
    if policy.is_allowed(actor.role, "view_all_orders"):
        docs = repo.list_orders()
    else:
        docs = repo.list_orders(user_id=actor.user_id)
    include_token = policy.is_allowed(actor.role, "view_pickup_token")
    return [to_view(Order(**doc), include_token) for doc in docs]


def get_order(repo: Repository, actor: Actor, order_id: str) -> OrderView:
    order = load_order(repo, order_id)
    if not policy.is_allowed(actor.role, "view_all_orders") and order.user_id != actor.user_id:
        raise OrderNotFoundError(order_id)
    return to_view(order, policy.is_allowed(actor.role, "view_pickup_token"))
