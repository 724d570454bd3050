import re
import sqlite3

import pytest

from pcguide.errors import CartNotFoundError, EmptyCartError, OrderNotFoundError, PartNotFoundError
from pcguide.schemas import PCRequest
from pcguide.service import CartService, generate_order_number


class RecordingSender:
    def __init__(self):
        self.orders = []

    def send_receipt(self, order):
        self.orders.append(order)


class BrokenSender:
    def send_receipt(self, order):
        raise RuntimeError("smtp unavailable")


def test_add_merges_quantities_and_totals(repo):
    service = CartService(repo)
    service.add_item("s1", "cpu-r5-7600")
    service.add_item("s1", "ram-corsair-32gb-ddr5", quantity=2)
    cart = service.add_item("s1", "cpu-r5-7600")

    assert [(line.part_id, line.quantity) for line in cart.items] == [
        ("cpu-r5-7600", 2),
        ("ram-corsair-32gb-ddr5", 2),
    ]
    assert cart.item_count == 2
    assert cart.total == pytest.approx(229 * 2 + 110 * 2)


def test_unknown_session_has_empty_cart(repo):
    cart = CartService(repo).get_cart("nobody")
    assert cart.id is None
    assert cart.items == []
    assert cart.total == 0


def test_add_unknown_part_is_rejected(repo):
    with pytest.raises(PartNotFoundError):
        CartService(repo).add_item("s1", "no-such-part")


def test_update_to_zero_removes_line(repo):
    service = CartService(repo)
    service.add_item("s1", "cpu-r5-7600")
    service.add_item("s1", "psu-evga-750w")

    cart = service.update_item("s1", "cpu-r5-7600", 3)
    assert cart.items[0].quantity == 3

    cart = service.update_item("s1", "cpu-r5-7600", 0)
    assert [line.part_id for line in cart.items] == ["psu-evga-750w"]


def test_mutations_without_cart_raise(repo):
    service = CartService(repo)
    with pytest.raises(CartNotFoundError):
        service.update_item("s1", "cpu-r5-7600", 1)
    with pytest.raises(CartNotFoundError):
        service.remove_item("s1", "cpu-r5-7600")
    with pytest.raises(CartNotFoundError):
        service.clear("s1")


def test_sessions_are_isolated(repo):
    service = CartService(repo)
    service.add_item("a", "cpu-r5-7600")
    assert service.get_cart("b").items == []


def test_checkout_computes_tax_and_clears_cart(repo):
    sender = RecordingSender()
    service = CartService(repo, receipt_sender=sender)
    service.add_item("s1", "cpu-r5-7600")
    service.add_item("s1", "ram-corsair-32gb-ddr5", quantity=2)

    result = service.checkout("s1", "Ada", "ada@example.com")

    assert result.subtotal == pytest.approx(449.0)
    assert result.tax == pytest.approx(37.04)
    assert result.total == pytest.approx(486.04)
    assert result.item_count == 2
    assert result.email_sent is True
    assert result.message == "Receipt emailed to ada@example.com"
    assert [o.order_number for o in sender.orders] == [result.order_number]
    assert service.get_cart("s1").items == []

    order = service.get_order(result.order_number)
    assert order.status == "completed"
    assert order.billing_email_sent is True
    assert [item.part_name for item in order.items] == [
        "AMD Ryzen 5 7600",
        "Corsair Vengeance 32GB (2x16GB) DDR5-6000",
    ]


def test_checkout_records_receipt_failure(repo):
    service = CartService(repo, receipt_sender=BrokenSender())
    service.add_item("s1", "psu-evga-600w")

    result = service.checkout("s1", "Ada", "ada@example.com")

    assert result.email_sent is False
    assert result.email_error == "smtp unavailable"
    assert "could not be sent" in result.message
    assert service.get_order(result.order_number).billing_email_error == "smtp unavailable"


def test_checkout_without_sender(repo):
    service = CartService(repo)
    service.add_item("s1", "psu-evga-600w")
    result = service.checkout("s1", "Ada", "ada@example.com")
    assert result.email_sent is False
    assert result.email_error is None
    assert result.message == "Order completed"


def test_checkout_empty_cart(repo):
    service = CartService(repo)
    with pytest.raises(EmptyCartError):
        service.checkout("s1", "Ada", "ada@example.com")
    service.add_item("s1", "cpu-r5-7600")
    service.clear("s1")
    with pytest.raises(EmptyCartError):
        service.checkout("s1", "Ada", "ada@example.com")


def test_unknown_order(repo):
    with pytest.raises(OrderNotFoundError):
        CartService(repo).get_order("PCG-NOPE-0000")


def test_order_number_format():
    assert re.fullmatch(r"PCG-[0-9A-Z]+-[0-9A-Z]{4}", generate_order_number())


def test_sqlite_store_survives_restart(repo, tmp_path):
    db_path = tmp_path / "pcguide.db"
    first = CartService(repo, store="sqlite", db_path=db_path)
    first.add_item("s1", "gpu-rtx-4070s")
    first.add_item("s1", "cpu-i5-13600k", quantity=2)

    second = CartService(repo, store="sqlite", db_path=db_path)
    cart = second.get_cart("s1")
    assert [(line.part_id, line.quantity) for line in cart.items] == [
        ("gpu-rtx-4070s", 1),
        ("cpu-i5-13600k", 2),
    ]

    result = second.checkout("s1", "Ada", "ada@example.com")
    third = CartService(repo, store="sqlite", db_path=db_path)
    assert third.get_order(result.order_number).total == pytest.approx(result.total)
    assert third.get_cart("s1").items == []


def test_sqlite_store_requires_path(repo):
    with pytest.raises(ValueError):
        CartService(repo, store="sqlite")


def test_tables_need_a_database_path(repo):
    with pytest.raises(RuntimeError, match="requires db_path"):
        CartService(repo)._init_tables()


def test_reading_unknown_session_leaves_no_state(repo):
    service = CartService(repo)
    for i in range(50):
        service.get_cart(f"visitor-{i}")
    assert service._session_locks == {}
    assert service.carts == {}


def test_idle_carts_are_evicted_from_memory(repo):
    service = CartService(repo, session_ttl_seconds=60, session_cleanup_interval_seconds=3600)
    service.add_item("idle", "cpu-r5-7600")
    service.add_item("active", "cpu-r5-7600")
    service._session_last_seen["idle"] -= 3600
    service._lock_last_seen["idle"] -= 3600

    service._cleanup_in_memory_cache(force=True)

    assert "idle" not in service.carts
    assert "idle" not in service._session_locks
    assert "active" in service.carts
    assert service.get_cart("idle").items == []


def test_zero_ttl_keeps_sessions(repo):
    service = CartService(repo, session_ttl_seconds=0)
    service.add_item("s1", "cpu-r5-7600")
    service._session_last_seen["s1"] -= 10**6

    service._cleanup_in_memory_cache(force=True)

    assert "s1" in service.carts


def test_sqlite_expired_cart_not_loaded(repo, tmp_path):
    db_path = tmp_path / "pcguide.db"
    service = CartService(repo, store="sqlite", db_path=db_path, session_ttl_seconds=5)
    service.add_item("ttl-s1", "cpu-r5-7600")
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            UPDATE carts
            SET updated_at = datetime('now', '-999 seconds')
            WHERE session_id = ?
            """,
            ("ttl-s1",),
        )
        conn.commit()

    service.carts.pop("ttl-s1", None)
    assert service.get_cart("ttl-s1").items == []

    cart = service.add_item("ttl-s1", "psu-evga-750w")
    assert [line.part_id for line in cart.items] == ["psu-evga-750w"]


def test_sqlite_cleanup_removes_expired_cart_rows(repo, tmp_path):
    db_path = tmp_path / "pcguide.db"
    service = CartService(repo, store="sqlite", db_path=db_path, session_ttl_seconds=10)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO carts (session_id, cart_id, items_json, currency, region, updated_at)
            VALUES (?, ?, ?, ?, ?, datetime('now', '-999 seconds'))
            """,
            ("expired-s1", "c1", "[]", "USD", "US"),
        )
        conn.commit()

    service._cleanup_expired_sessions(force=True)

    with sqlite3.connect(db_path) as conn:
        after = conn.execute("SELECT COUNT(*) FROM carts WHERE session_id = ?", ("expired-s1",)).fetchone()[0]
    assert after == 0


class RecordingRequestSender:
    def __init__(self):
        self.requests = []

    def send_pc_request(self, request):
        self.requests.append(request)


class BrokenRequestSender:
    def send_pc_request(self, request):
        raise RuntimeError("smtp unavailable")


def _pc_request():
    return PCRequest(
        customer_name="Ada",
        customer_email="ada@example.com",
        customer_budget=1500,
        items=[
            {
                "partId": "cpu-r5-7600",
                "quantity": 1,
                "partName": "AMD Ryzen 5 7600",
                "partType": "cpu",
                "partBrand": "AMD",
                "price": 229,
            }
        ],
        subtotal=229,
        tax=18.89,
        total=247.89,
    )


def test_pc_request_is_sent_and_clears_cart(repo):
    sender = RecordingRequestSender()
    service = CartService(repo, request_sender=sender)
    service.add_item("s1", "cpu-r5-7600")

    result = service.submit_pc_request("s1", _pc_request())

    assert result.success is True
    assert result.email_sent is True
    assert result.message.startswith("Your PC request has been sent to an expert builder.")
    assert [r.customer_email for r in sender.requests] == ["ada@example.com"]
    assert service.get_cart("s1").items == []


def test_pc_request_send_failure_is_reported(repo):
    service = CartService(repo, request_sender=BrokenRequestSender())

    result = service.submit_pc_request("nobody", _pc_request())

    assert result.email_sent is False
    assert result.email_error == "smtp unavailable"
    assert service._session_locks == {}
