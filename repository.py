"""
Storage for the canteen: menu items, orders, payment intents, users, sessions.

Two implementations share the Repository protocol. MongoRepository keeps
every multi-step mutation safe with conditional single-document updates;
MemoryRepository does the same under one re-entrant lock. Both hand out
plain dicts keyed by "id".
"""
import copy
import threading
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

StockLines = Sequence[Tuple[str, int]]

OPEN_STATUSES = ["Pending", "Preparing", "Ready"]


def merge_lines(lines: Iterable[Tuple[str, int]]) -> List[Tuple[str, int]]:
    """Combine repeated item ids so each item is checked against its total quantity."""
    totals: Counter = Counter()
    for item_id, qty in lines:
        totals[item_id] += qty
    return list(totals.items())


class Repository(Protocol):
    """Persistence contract consumed by the catalog, ledger, payment and auth modules."""

    # catalog
    def get_menu_item(self, item_id: str) -> Optional[Dict[str, Any]]: ...

    def list_menu_items(self) -> List[Dict[str, Any]]: ...

    def insert_menu_item(self, item: Dict[str, Any]) -> None: ...

    def update_menu_item(self, item_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...

    def delete_menu_item(self, item_id: str) -> bool: ...

    def deduct_stock(self, lines: StockLines) -> Optional[str]:
        """Deduct every line or none. Returns the id of the first unsatisfiable item, else None."""
        ...

    def restock(self, lines: StockLines) -> None: ...

    # orders
    def next_order_number(self) -> int: ...

    def insert_order(self, order: Dict[str, Any]) -> None: ...

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]: ...

    def find_order_by_token(self, token: str) -> Optional[Dict[str, Any]]: ...

    def list_orders(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]: ...

    def transition_order(
        self, order_id: str, expected: Sequence[str], fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Apply fields only if the order's status is one of expected. Returns the new order or None."""
        ...

    def has_open_orders_for_item(self, item_id: str) -> bool: ...

    # payments
    def insert_payment(self, payment: Dict[str, Any]) -> None: ...

    def get_payment(self, payment_id: str) -> Optional[Dict[str, Any]]: ...

    def mark_payment_paid(self, payment_id: str, paid_at: Any) -> Optional[Dict[str, Any]]: ...

    def claim_payment(self, payment_id: str, order_id: str) -> bool: ...

    def release_payment(self, payment_id: str, order_id: str) -> None: ...

    # users and sessions
    def count_users(self) -> int: ...

    def insert_user(self, user: Dict[str, Any]) -> None: ...

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]: ...

    def insert_session(self, session: Dict[str, Any]) -> None: ...

    def get_session(self, token: str) -> Optional[Dict[str, Any]]: ...

    def delete_session(self, token: str) -> None: ...


# -----------------------------
# MongoDB
# -----------------------------

def to_document(data: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(data)
    doc["_id"] = doc.pop("id")
    return doc


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


class MongoRepository:
    """Repository backed by a pymongo Database (or a compatible stand-in)."""

    def __init__(self, db: Database):
        self.db = db

    def ensure_indexes(self) -> None:
        self.db["order"].create_index("pickup_token", unique=True)
        self.db["order"].create_index([("created_at", DESCENDING)])
        self.db["order"].create_index("user_id")
        self.db["user"].create_index("email", unique=True)

    # catalog

    def get_menu_item(self, item_id):
        return serialize_doc(self.db["menuitem"].find_one({"_id": item_id}))

    def list_menu_items(self):
        cursor = self.db["menuitem"].find({}).sort([("category", ASCENDING), ("name", ASCENDING)])
        return [serialize_doc(d) for d in cursor]

    def insert_menu_item(self, item):
        self.db["menuitem"].insert_one(to_document(item))

    def update_menu_item(self, item_id, fields):
        doc = self.db["menuitem"].find_one_and_update(
            {"_id": item_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(doc)

    def delete_menu_item(self, item_id):
        return self.db["menuitem"].delete_one({"_id": item_id}).deleted_count > 0

    def deduct_stock(self, lines):
        applied: List[Tuple[str, int]] = []
        for item_id, qty in merge_lines(lines):
            doc = self.db["menuitem"].find_one_and_update(
                {"_id": item_id, "stock": {"$gte": qty}},
                {"$inc": {"stock": -qty}},
            )
            if doc is None:
                # compensate the lines already taken so the batch is all or nothing
                self.restock(applied)
                return item_id
            applied.append((item_id, qty))
        return None

    def restock(self, lines):
        for item_id, qty in merge_lines(lines):
            self.db["menuitem"].update_one({"_id": item_id}, {"$inc": {"stock": qty}})

    # orders

    def next_order_number(self):
        doc = self.db["counters"].find_one_and_update(
            {"_id": "order_number"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    def insert_order(self, order):
        self.db["order"].insert_one(to_document(order))

    def get_order(self, order_id):
        return serialize_doc(self.db["order"].find_one({"_id": order_id}))

    def find_order_by_token(self, token):
        return serialize_doc(self.db["order"].find_one({"pickup_token": token}))

    def list_orders(self, user_id=None):
        filt = {"user_id": user_id} if user_id else {}
        cursor = self.db["order"].find(filt).sort([("created_at", DESCENDING), ("order_number", DESCENDING)])
        return [serialize_doc(d) for d in cursor]

    def transition_order(self, order_id, expected, fields):
        doc = self.db["order"].find_one_and_update(
            {"_id": order_id, "status": {"$in": list(expected)}},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def has_open_orders_for_item(self, item_id):
        filt = {"items.item_id": item_id, "status": {"$in": OPEN_STATUSES}}
        return self.db["order"].find_one(filt) is not None

    # payments

    def insert_payment(self, payment):
        self.db["paymentintent"].insert_one(to_document(payment))

    def get_payment(self, payment_id):
        return serialize_doc(self.db["paymentintent"].find_one({"_id": payment_id}))

    def mark_payment_paid(self, payment_id, paid_at):
        # only the first confirmation stamps paid_at
        self.db["paymentintent"].update_one(
            {"_id": payment_id, "status": {"$ne": "paid"}},
            {"$set": {"status": "paid", "paid_at": paid_at}},
        )
        return self.get_payment(payment_id)

    def claim_payment(self, payment_id, order_id):
        doc = self.db["paymentintent"].find_one_and_update(
            {"_id": payment_id, "status": "paid", "order_id": None},
            {"$set": {"order_id": order_id}},
        )
        return doc is not None

    def release_payment(self, payment_id, order_id):
        self.db["paymentintent"].update_one(
            {"_id": payment_id, "order_id": order_id}, {"$set": {"order_id": None}}
        )

    # users and sessions

    def count_users(self):
        return self.db["user"].count_documents({})

    def insert_user(self, user):
        self.db["user"].insert_one(to_document(user))

    def get_user(self, user_id):
        return serialize_doc(self.db["user"].find_one({"_id": user_id}))

    def find_user_by_email(self, email):
        return serialize_doc(self.db["user"].find_one({"email": email}))

    def insert_session(self, session):
        doc = dict(session)
        doc["_id"] = doc.pop("token")
        self.db["session"].insert_one(doc)

    def get_session(self, token):
        doc = self.db["session"].find_one({"_id": token})
        if not doc:
            return None
        doc = dict(doc)
        doc["token"] = doc.pop("_id")
        return doc

    def delete_session(self, token):
        self.db["session"].delete_one({"_id": token})


# -----------------------------
# In-memory
# -----------------------------

class MemoryRepository:
    """Process-local repository. All reads and writes run under one lock."""

    def __init__(self):
        self._lock = threading.RLock()
        self._menu: Dict[str, Dict[str, Any]] = {}
        self._orders: Dict[str, Dict[str, Any]] = {}
        self._payments: Dict[str, Dict[str, Any]] = {}
        self._users: Dict[str, Dict[str, Any]] = {}
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._order_seq = 0

    # catalog

    def get_menu_item(self, item_id):
        with self._lock:
            return copy.deepcopy(self._menu.get(item_id))

    def list_menu_items(self):
        with self._lock:
            items = [copy.deepcopy(i) for i in self._menu.values()]
        return sorted(items, key=lambda i: (i["category"], i["name"]))

    def insert_menu_item(self, item):
        with self._lock:
            if item["id"] in self._menu:
                raise DuplicateKeyError(f"menu item {item['id']} exists")
            self._menu[item["id"]] = copy.deepcopy(item)

    def update_menu_item(self, item_id, fields):
        with self._lock:
            item = self._menu.get(item_id)
            if item is None:
                return None
            item.update(copy.deepcopy(fields))
            return copy.deepcopy(item)

    def delete_menu_item(self, item_id):
        with self._lock:
            return self._menu.pop(item_id, None) is not None

    def deduct_stock(self, lines):
        merged = merge_lines(lines)
        with self._lock:
            for item_id, qty in merged:
                item = self._menu.get(item_id)
                if item is None or item["stock"] < qty:
                    return item_id
            for item_id, qty in merged:
                self._menu[item_id]["stock"] -= qty
        return None

    def restock(self, lines):
        with self._lock:
            for item_id, qty in merge_lines(lines):
                if item_id in self._menu:
                    self._menu[item_id]["stock"] += qty

    # orders

    def next_order_number(self):
        with self._lock:
            self._order_seq += 1
            return self._order_seq

    def insert_order(self, order):
        with self._lock:
            if order["id"] in self._orders:
                raise DuplicateKeyError(f"order {order['id']} exists")
            if any(o["pickup_token"] == order["pickup_token"] for o in self._orders.values()):
                raise DuplicateKeyError("pickup token already issued")
            self._orders[order["id"]] = copy.deepcopy(order)

    def get_order(self, order_id):
        with self._lock:
            return copy.deepcopy(self._orders.get(order_id))

    def find_order_by_token(self, token):
        with self._lock:
            for order in self._orders.values():
                if order["pickup_token"] == token:
                    return copy.deepcopy(order)
        return None

    def list_orders(self, user_id=None):
        with self._lock:
            orders = [
                copy.deepcopy(o) for o in self._orders.values()
                if user_id is None or o["user_id"] == user_id
            ]
        return sorted(orders, key=lambda o: (o["created_at"], o["order_number"]), reverse=True)

    def transition_order(self, order_id, expected, fields):
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order["status"] not in expected:
                return None
            order.update(copy.deepcopy(fields))
            return copy.deepcopy(order)

    def has_open_orders_for_item(self, item_id):
        with self._lock:
            return any(
                o["status"] in OPEN_STATUSES and any(li["item_id"] == item_id for li in o["items"])
                for o in self._orders.values()
            )

    # payments

    def insert_payment(self, payment):
        with self._lock:
            self._payments[payment["id"]] = copy.deepcopy(payment)

    def get_payment(self, payment_id):
        with self._lock:
            return copy.deepcopy(self._payments.get(payment_id))

    def mark_payment_paid(self, payment_id, paid_at):
        with self._lock:
            payment = self._payments.get(payment_id)
            if payment is None:
                return None
            if payment["status"] != "paid":
                payment["status"] = "paid"
                payment["paid_at"] = paid_at
            return copy.deepcopy(payment)

    def claim_payment(self, payment_id, order_id):
        with self._lock:
            payment = self._payments.get(payment_id)
            if payment is None or payment["status"] != "paid" or payment.get("order_id"):
                return False
            payment["order_id"] = order_id
            return True

    def release_payment(self, payment_id, order_id):
        with self._lock:
            payment = self._payments.get(payment_id)
            if payment is not None and payment.get("order_id") == order_id:
                payment["order_id"] = None

    # users and sessions

    def count_users(self):
        with self._lock:
            return len(self._users)

    def insert_user(self, user):
        with self._lock:
            if any(u["email"] == user["email"] for u in self._users.values()):
                raise DuplicateKeyError(f"email {user['email']} exists")
            self._users[user["id"]] = copy.deepcopy(user)

    def get_user(self, user_id):
        with self._lock:
            return copy.deepcopy(self._users.get(user_id))

    def find_user_by_email(self, email):
        with self._lock:
            for user in self._users.values():
                if user["email"] == email:
                    return copy.deepcopy(user)
        return None

    def insert_session(self, session):
        with self._lock:
            self._sessions[session["token"]] = copy.deepcopy(session)

    def get_session(self, token):
        with self._lock:
            return copy.deepcopy(self._sessions.get(token))

    def delete_session(self, token):
        with self._lock:
            self._sessions.pop(token, None)
