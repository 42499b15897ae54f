"""
Catalog Store: menu lookup, stock deduction and menu administration.

Stock only ever goes down through deduct()/deduct_lines(), each call backed
by one order's fulfilment; administrative overrides replace the value.
"""
import logging
import uuid
from typing import List, Optional, Sequence, Tuple

import policy
from errors import (
    InsufficientStockError,
    InvalidItemError,
    ItemInUseError,
    ItemNotFoundError,
    ValidationError,
)
from repository import Repository
from schemas import Actor, MenuCreate, MenuItem, MenuUpdate

logger = logging.getLogger(__name__)


def get_item(repo: Repository, item_id: str) -> MenuItem:
    doc = repo.get_menu_item(item_id)
    if not doc:
        raise ItemNotFoundError(item_id)
    return MenuItem(**doc)


def list_items(repo: Repository) -> List[MenuItem]:
    return [MenuItem(**doc) for doc in repo.list_menu_items()]


def deduct(repo: Repository, item_id: str, qty: int) -> None:
    deduct_lines(repo, [(item_id, qty)])


def deduct_lines(repo: Repository, lines: Sequence[Tuple[str, int]]) -> None:
    """Deduct every (item_id, qty) line atomically, or raise and deduct nothing."""
    for item_id, qty in lines:
        if qty <= 0:
            raise InvalidItemError(item_id, "quantity must be positive")
    failed = repo.deduct_stock(lines)
    if failed is None:
        return
    doc = repo.get_menu_item(failed)
    if not doc:
        raise InvalidItemError(failed, "no longer on the menu")
    raise InsufficientStockError(failed, doc["name"])


def set_stock_and_availability(
    repo: Repository,
    actor: Actor,
    item_id: str,
    stock: Optional[int] = None,
    available: Optional[bool] = None,
) -> MenuItem:
    policy.require(actor, "set_stock")
    if stock is not None and stock < 0:
        raise ValidationError("Stock cannot be negative")
    fields = {}
    if stock is not None:
        fields["stock"] = stock
    if available is not None:
        fields["available"] = available
    doc = repo.update_menu_item(item_id, fields) if fields else repo.get_menu_item(item_id)
    if not doc:
        raise ItemNotFoundError(item_id)
    logger.info("Stock override on %s by %s: %s", item_id, actor.user_id, fields)
    return MenuItem(**doc)


# -----------------------------
# Menu administration
# -----------------------------

def create_item(repo: Repository, actor: Actor, payload: MenuCreate) -> MenuItem:
    policy.require(actor, "manage_menu")
    item = MenuItem(id=uuid.uuid4().hex, **payload.model_dump())
    repo.insert_menu_item(item.model_dump())
    logger.info("Menu item %s (%s) created", item.id, item.name)
    return item


def update_item(repo: Repository, actor: Actor, item_id: str, payload: MenuUpdate) -> MenuItem:
    policy.require(actor, "manage_menu")
    fields = {k: v for k, v in payload.model_dump().items() if v is not None}
    doc = repo.update_menu_item(item_id, fields) if fields else repo.get_menu_item(item_id)
    if not doc:
        raise ItemNotFoundError(item_id)
    return MenuItem(**doc)


def delete_item(repo: Repository, actor: Actor, item_id: str) -> None:
    policy.require(actor, "manage_menu")
    if not repo.get_menu_item(item_id):
        raise ItemNotFoundError(item_id)
    if repo.has_open_orders_for_item(item_id):
        raise ItemInUseError(item_id)
    repo.delete_menu_item(item_id)
    logger.info("Menu item %s deleted", item_id)
