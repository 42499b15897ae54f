"""Custom exceptions for the canteen ordering API."""

from typing import Optional


class CanteenError(Exception):
    """Base exception for all canteen errors."""

    pass


# -----------------------------
# Families
# -----------------------------

class ValidationError(CanteenError):
    """Missing or malformed input. Raised before any state change."""

    pass


class NotFoundError(CanteenError):
    """Unknown item, order or payment id."""

    pass


class ConflictError(CanteenError):
    """The request is well formed but conflicts with current state."""

    pass


class AuthorizationError(CanteenError):
    """The caller's role may not perform the operation."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class AuthenticationError(CanteenError):
    """Missing, unknown or expired credentials."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


# -----------------------------
# Validation
# -----------------------------

class EmptyCartError(ValidationError):
    def __init__(self):
        super().__init__("Cart is empty")


class InvalidItemError(ValidationError):
    """Raised when a cart line references an unknown item or a bad quantity."""

    def __init__(self, item_id: str, reason: Optional[str] = None):
        self.item_id = item_id
        msg = f"Invalid item in cart: {item_id}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class InvalidStatusError(ValidationError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Invalid status: {status}")


# -----------------------------
# Not found
# -----------------------------

class ItemNotFoundError(NotFoundError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Menu item not found: {item_id}")


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class PickupTokenNotFoundError(NotFoundError):
    """The caller may not see this order's pickup token."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("No pickup token for this order")


# -----------------------------
# Conflicts
# -----------------------------

class InsufficientStockError(ConflictError):
    def __init__(self, item_id: str, name: Optional[str] = None):
        self.item_id = item_id
        self.name = name
        super().__init__(f"Insufficient stock for {name or item_id}")


class ItemUnavailableError(ConflictError):
    def __init__(self, item_id: str, name: Optional[str] = None):
        self.item_id = item_id
        self.name = name
        super().__init__(f"{name or item_id} is currently unavailable")


class ItemInUseError(ConflictError):
    """Raised when deleting a menu item that open orders still reference."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Menu item {item_id} is referenced by open orders")


class PaymentRequiredError(ConflictError):
    def __init__(self, reason: str = "Payment required"):
        super().__init__(reason)


class PaymentMismatchError(ConflictError):
    def __init__(self, expected: int, found: int):
        self.expected = expected
        self.found = found
        super().__init__(f"Payment amount mismatch: order total is {expected}, payment is {found}")


class PaymentAlreadyUsedError(ConflictError):
    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} has already been used for another order")


class AlreadyCompletedError(ConflictError):
    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order #{order_number} already picked up")


class NotReadyError(ConflictError):
    def __init__(self, order_number: str, status: str):
        self.order_number = order_number
        self.status = status
        super().__init__(f"Order #{order_number} not ready for pickup (status: {status})")


class InvalidPickupTokenError(ConflictError):
    def __init__(self):
        super().__init__("Invalid pickup token")


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from {current} back to {target}")


class OrderChangedError(ConflictError):
    """Raised when a compare-and-set on an order's status loses a race."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} was modified concurrently, reload and retry")


class EmailTakenError(ConflictError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("Email already registered")
