"""Tests for order placement, status transitions and order listing."""

from concurrent.futures import ThreadPoolExecutor

import pytest

import catalog
import orders
import payments
from errors import (
    AlreadyCompletedError,
    AuthorizationError,
    EmptyCartError,
    InsufficientStockError,
    InvalidItemError,
    InvalidStatusError,
    InvalidTransitionError,
    ItemUnavailableError,
    OrderNotFoundError,
    PaymentAlreadyUsedError,
    PaymentMismatchError,
    PaymentNotFoundError,
    PaymentRequiredError,
    ValidationError,
)
from schemas import MenuUpdate


def paid_intent(repo, actor, amount):
    intent = payments.create_payment(repo, actor, amount)
    return payments.confirm_payment(repo, actor, intent.id)


class TestPlaceOrder:
    def test_pay_on_pickup_order(self, repo, student, cart):
        order = orders.place_order(repo, student, cart(("m1", 2)), "pay_on_pickup")

        assert order.total == 80
        assert order.eta_minutes == 16
        assert order.status == "Pending"
        assert order.order_number == "0001"
        assert order.user_id == "u-student"
        assert order.customer_name == "Demo Student"
        assert order.payment_method == "pay_on_pickup"
        assert order.payment_method_label == "Pay on pickup"
        assert order.payment_id is None
        assert order.pickup_token
        assert order.pickup_token_issued_at == order.created_at
        assert order.pickup_token_redeemed_at is None
        # stock is only taken at completion
        assert catalog.get_item(repo, "m1").stock == 25

    def test_default_payment_method(self, repo, student, cart):
        order = orders.place_order(repo, student, cart(("m4", 1)))
        assert order.payment_method == "pay_on_pickup"

    def test_order_is_persisted(self, repo, student, cart):
        order = orders.place_order(repo, student, cart(("m1", 1), ("m4", 2)))
        stored = orders.load_order(repo, order.id)
        assert stored == order
        assert [(li.item_id, li.name, li.price, li.qty) for li in stored.items] == [
            ("m1", "Veg Sandwich", 40, 1),
            ("m4", "Lemon Soda", 25, 2),
        ]

    def test_order_numbers_increase(self, repo, student, cart):
        numbers = [orders.place_order(repo, student, cart(("m4", 1))).order_number for _ in range(3)]
        assert numbers == ["0001", "0002", "0003"]

    def test_concurrent_order_numbers_are_distinct(self, repo, student, cart):
        def attempt(_):
            return orders.place_order(repo, student, cart(("m4", 1))).order_number

        with ThreadPoolExecutor(max_workers=8) as pool:
            numbers = list(pool.map(attempt, range(20)))

        assert sorted(numbers) == [orders.format_order_number(n) for n in range(1, 21)]
        assert len(repo.list_orders()) == 20

    def test_each_item_read_once(self, repo, student, cart, monkeypatch):
        reads = []
        real_get = repo.get_menu_item

        def get_once(item_id):
            reads.append(item_id)
            # the item disappears after its first read
            return real_get(item_id) if reads.count(item_id) == 1 else None

        monkeypatch.setattr(repo, "get_menu_item", get_once)
        order = orders.place_order(repo, student, cart(("m5", 2), ("m1", 1), ("m5", 3)))

        assert sorted(reads) == ["m1", "m5"]
        assert [(li.item_id, li.qty) for li in order.items] == [("m5", 2), ("m1", 1), ("m5", 3)]

    def test_pickup_tokens_unique(self, repo, student, cart):
        tokens = {orders.place_order(repo, student, cart(("m4", 1))).pickup_token for _ in range(25)}
        assert len(tokens) == 25

    def test_empty_cart(self, repo, student):
        with pytest.raises(EmptyCartError):
            orders.place_order(repo, student, [])
        assert repo.list_orders() == []

    def test_insufficient_stock_creates_nothing(self, repo, student, vendor, cart):
        catalog.set_stock_and_availability(repo, vendor, "m2", stock=3)
        with pytest.raises(InsufficientStockError) as exc_info:
            orders.place_order(repo, student, cart(("m2", 4)))
        assert "Paneer Wrap" in str(exc_info.value)
        assert catalog.get_item(repo, "m2").stock == 3
        assert repo.list_orders() == []

    def test_repeated_lines_checked_together(self, repo, student, cart):
        with pytest.raises(InsufficientStockError):
            orders.place_order(repo, student, cart(("m5", 7), ("m5", 6)))
        assert repo.list_orders() == []

    def test_unknown_item(self, repo, student, cart):
        with pytest.raises(InvalidItemError) as exc_info:
            orders.place_order(repo, student, cart(("m1", 1), ("ghost", 1)))
        assert exc_info.value.item_id == "ghost"
        assert repo.list_orders() == []

    def test_non_positive_qty(self, repo, student, cart):
        with pytest.raises(InvalidItemError):
            orders.place_order(repo, student, cart(("m1", 0)))

    def test_unavailable_item(self, repo, student, vendor, cart):
        catalog.set_stock_and_availability(repo, vendor, "m3", available=False)
        with pytest.raises(ItemUnavailableError) as exc_info:
            orders.place_order(repo, student, cart(("m3", 1)))
        assert "Masala Dosa" in str(exc_info.value)

    def test_invalid_payment_method(self, repo, student, cart):
        with pytest.raises(ValidationError):
            orders.place_order(repo, student, cart(("m1", 1)), "barter")

    def test_staff_cannot_place_orders(self, repo, vendor, cart):
        with pytest.raises(AuthorizationError):
            orders.place_order(repo, vendor, cart(("m1", 1)))


class TestEta:
    def test_eta_clamped_to_minimum(self, repo, student, cart):
        assert orders.place_order(repo, student, cart(("m4", 1))).eta_minutes == 5

    def test_eta_sums_prep_time(self, repo, student, cart):
        order = orders.place_order(repo, student, cart(("m4", 2), ("m2", 1)))
        assert order.eta_minutes == 18

    @pytest.mark.parametrize("raw,expected", [(0, 5), (4.4, 5), (5, 5), (6, 6), (7.6, 8)])
    def test_estimate_eta(self, raw, expected):
        assert orders.estimate_eta(raw) == expected


class TestSnapshot:
    def test_total_unchanged_after_price_edit(self, repo, student, admin, cart):
        order = orders.place_order(repo, student, cart(("m1", 2), ("m3", 1)))
        assert order.total == 140

        catalog.update_item(repo, admin, "m1", MenuUpdate(price=99, name="Deluxe Sandwich"))

        stored = orders.load_order(repo, order.id)
        assert stored.total == 140
        assert stored.items[0].price == 40
        assert stored.items[0].name == "Veg Sandwich"
        assert stored.total == sum(li.price * li.qty for li in stored.items)


class TestOnlinePayment:
    def test_paid_intent_admits_order(self, repo, student, cart):
        intent = paid_intent(repo, student, 80)
        order = orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)
        assert order.payment_id == intent.id
        assert order.payment_method_label == "Razorpay (simulated)"
        assert repo.get_payment(intent.id)["order_id"] == order.id

    def test_missing_payment_id(self, repo, student, cart):
        with pytest.raises(PaymentRequiredError):
            orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated")
        assert repo.list_orders() == []

    def test_unconfirmed_intent(self, repo, student, cart):
        intent = payments.create_payment(repo, student, 80)
        with pytest.raises(PaymentRequiredError):
            orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)
        assert repo.list_orders() == []

    def test_amount_mismatch(self, repo, student, cart):
        intent = paid_intent(repo, student, 79)
        with pytest.raises(PaymentMismatchError):
            orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)
        assert repo.list_orders() == []

    def test_someone_elses_payment(self, repo, student, other_student, cart):
        intent = paid_intent(repo, other_student, 80)
        with pytest.raises(PaymentNotFoundError):
            orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)

    def test_payment_admits_only_one_order(self, repo, student, cart):
        intent = paid_intent(repo, student, 80)
        orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)
        with pytest.raises(PaymentAlreadyUsedError):
            orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)
        assert len(repo.list_orders()) == 1

    def test_failed_placement_releases_payment(self, repo, student, cart, monkeypatch):
        intent = paid_intent(repo, student, 80)

        def counter_down():
            raise RuntimeError("counter unavailable")

        monkeypatch.setattr(repo, "next_order_number", counter_down)
        with pytest.raises(RuntimeError):
            orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)
        assert repo.get_payment(intent.id)["order_id"] is None
        assert repo.list_orders() == []

        monkeypatch.undo()
        order = orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)
        assert repo.get_payment(intent.id)["order_id"] == order.id

    def test_concurrent_placements_share_one_payment(self, repo, student, cart):
        intent = paid_intent(repo, student, 80)

        def attempt(_):
            try:
                orders.place_order(repo, student, cart(("m1", 2)), "razorpay_simulated", intent.id)
                return "ok"
            except PaymentAlreadyUsedError as e:
                return type(e).__name__

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(20)))

        assert results.count("ok") == 1
        assert results.count("PaymentAlreadyUsedError") == 19
        placed = repo.list_orders()
        assert len(placed) == 1
        assert repo.get_payment(intent.id)["order_id"] == placed[0]["id"]

    def test_pay_on_pickup_ignores_payment_id(self, repo, student, cart):
        order = orders.place_order(repo, student, cart(("m1", 1)), "pay_on_pickup", "whatever")
        assert order.payment_id is None


class TestUpdateStatus:
    @pytest.fixture
    def order(self, repo, student, cart):
        return orders.place_order(repo, student, cart(("m1", 2), ("m4", 3)))

    def test_forward_moves(self, repo, vendor, order):
        assert orders.update_status(repo, vendor, order.id, "Preparing").status == "Preparing"
        assert orders.update_status(repo, vendor, order.id, "Ready").status == "Ready"
        assert orders.load_order(repo, order.id).status == "Ready"

    def test_skip_forward(self, repo, vendor, order):
        assert orders.update_status(repo, vendor, order.id, "Ready").status == "Ready"

    def test_backward_move_rejected(self, repo, vendor, order):
        orders.update_status(repo, vendor, order.id, "Ready")
        with pytest.raises(InvalidTransitionError):
            orders.update_status(repo, vendor, order.id, "Pending")
        assert orders.load_order(repo, order.id).status == "Ready"

    def test_same_status_is_noop(self, repo, vendor, order):
        assert orders.update_status(repo, vendor, order.id, "Pending").status == "Pending"

    def test_unknown_status(self, repo, vendor, order):
        with pytest.raises(InvalidStatusError):
            orders.update_status(repo, vendor, order.id, "Cancelled")

    def test_unknown_order(self, repo, vendor):
        with pytest.raises(OrderNotFoundError):
            orders.update_status(repo, vendor, "missing", "Ready")

    def test_student_cannot_update(self, repo, student, order):
        with pytest.raises(AuthorizationError):
            orders.update_status(repo, student, order.id, "Preparing")

    def test_vendor_cannot_complete_directly(self, repo, vendor, order):
        with pytest.raises(AuthorizationError) as exc_info:
            orders.update_status(repo, vendor, order.id, "Completed")
        assert "pickup verification" in str(exc_info.value)
        assert catalog.get_item(repo, "m1").stock == 25

    def test_admin_completion_deducts_stock(self, repo, admin, order):
        completed = orders.update_status(repo, admin, order.id, "Completed")
        assert completed.status == "Completed"
        assert completed.completed_at is not None
        assert completed.pickup_token_redeemed_at is None
        assert catalog.get_item(repo, "m1").stock == 23
        assert catalog.get_item(repo, "m4").stock == 37

    def test_completed_is_terminal(self, repo, admin, order):
        orders.update_status(repo, admin, order.id, "Completed")
        for status in ("Pending", "Ready", "Completed"):
            with pytest.raises(AlreadyCompletedError):
                orders.update_status(repo, admin, order.id, status)
        assert catalog.get_item(repo, "m1").stock == 23

    def test_completion_without_stock_leaves_order(self, repo, admin, vendor, order):
        catalog.set_stock_and_availability(repo, vendor, "m4", stock=1)
        with pytest.raises(InsufficientStockError):
            orders.update_status(repo, admin, order.id, "Completed")
        assert orders.load_order(repo, order.id).status == "Pending"
        assert catalog.get_item(repo, "m1").stock == 25
        assert catalog.get_item(repo, "m4").stock == 1


class TestListOrders:
    def test_student_sees_own_orders_with_tokens(self, repo, student, other_student, cart):
        mine = orders.place_order(repo, student, cart(("m1", 1)))
        orders.place_order(repo, other_student, cart(("m2", 1)))

        views = orders.list_orders(repo, student)
        assert [v.id for v in views] == [mine.id]
        assert views[0].pickup_token == mine.pickup_token

    def test_staff_sees_all_without_tokens(self, repo, student, other_student, vendor, cart):
        orders.place_order(repo, student, cart(("m1", 1)))
        orders.place_order(repo, other_student, cart(("m2", 1)))

        views = orders.list_orders(repo, vendor)
        assert len(views) == 2
        assert all(v.pickup_token is None for v in views)

    def test_newest_first(self, repo, student, admin, cart):
        first = orders.place_order(repo, student, cart(("m1", 1)))
        second = orders.place_order(repo, student, cart(("m2", 1)))
        assert [v.id for v in orders.list_orders(repo, admin)] == [second.id, first.id]

    def test_get_order_hides_other_students_orders(self, repo, student, other_student, cart):
        order = orders.place_order(repo, student, cart(("m1", 1)))
        with pytest.raises(OrderNotFoundError):
            orders.get_order(repo, other_student, order.id)
        assert orders.get_order(repo, student, order.id).pickup_token == order.pickup_token
