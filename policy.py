"""Role-based authorization: one table, consulted once per core call."""
from typing import Dict, FrozenSet

from errors import AuthorizationError
from schemas import Actor, Role

STAFF = frozenset({Role.ADMIN, Role.VENDOR})

POLICY: Dict[str, FrozenSet[Role]] = {
    "place_order": frozenset({Role.STUDENT}),
    "create_payment": frozenset({Role.STUDENT}),
    "confirm_payment": frozenset({Role.STUDENT}),
    "update_status": STAFF,
    # vendors complete orders through pickup verification only
    "complete_order": frozenset({Role.ADMIN}),
    "redeem_pickup": STAFF,
    "set_stock": STAFF,
    "view_all_orders": STAFF,
    "manage_menu": frozenset({Role.ADMIN}),
    "view_pickup_token": frozenset({Role.STUDENT}),
}

DENIAL_MESSAGES = {
    "complete_order": "Use pickup verification to complete orders",
}


def is_allowed(role: Role, operation: str) -> bool:
    return Role(role) in POLICY.get(operation, frozenset())


def require(actor: Actor, operation: str) -> None:
    """Raise AuthorizationError unless the actor's role may perform the operation."""
    if not is_allowed(actor.role, operation):
        raise AuthorizationError(DENIAL_MESSAGES.get(operation, "Forbidden"))
