from __future__ import annotations

import json
import logging
import secrets
import sqlite3
import string
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .config import CartStore
from .db import PartsRepository
from .errors import (
    CartNotFoundError,
    EmptyCartError,
    InvalidRequestError,
    OrderNotFoundError,
    PartNotFoundError,
)
from .schemas import (
    CartLine,
    CartView,
    CheckoutResult,
    Order,
    OrderItem,
    PCRequest,
    PCRequestResult,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase

PC_REQUEST_MESSAGE = (
    "Your PC request has been sent to an expert builder. "
    "We will contact you through your email soon."
)


class ReceiptSender(Protocol):
    def send_receipt(self, order: Order) -> None: ...


class PCRequestSender(Protocol):
    def send_pc_request(self, request: PCRequest) -> None: ...


@dataclass
class CartState:
    cart_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    # part id -> quantity, insertion ordered
    items: Dict[str, int] = field(default_factory=dict)
    currency: str = "USD"
    region: str = "US"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    """``PCG-<millisecond timestamp in base 36>-<4 random base-36 chars>``."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"PCG-{timestamp}-{suffix}"


class CartService:
    """
    Session carts, checkout and orders.

    Carts are keyed by the caller's session id. With ``store="sqlite"`` carts
    and orders survive a restart and ``carts`` is only a cache; with
    ``store="memory"`` the ``carts`` and ``orders`` dicts are the only copy.

    Sessions with no write for longer than ``session_ttl_seconds`` expire:
    their cache entry and lock are dropped, and SQLite rows past the TTL
    are neither loaded nor kept. A TTL of 0 or ``None`` disables expiry.
    """

    def __init__(
        self,
        repo: PartsRepository,
        store: CartStore = "memory",
        db_path: Path | None = None,
        tax_rate: float = 0.0825,
        currency: str = "USD",
        region: str = "US",
        receipt_sender: Optional[ReceiptSender] = None,
        request_sender: Optional[PCRequestSender] = None,
        session_ttl_seconds: int | None = 7 * 24 * 3600,
        session_cleanup_interval_seconds: int = 3600,
    ):
        self.repo = repo
        self.store = store
        self.db_path = db_path
        self.tax_rate = tax_rate
        self.currency = currency
        self.region = region
        self.receipt_sender = receipt_sender
        self.request_sender = request_sender
        self.carts: Dict[str, CartState] = {}
        self.orders: Dict[str, Order] = {}
        self._sessions_lock = threading.Lock()
        self._session_locks: Dict[str, threading.Lock] = {}
        self._session_last_seen: Dict[str, float] = {}
        self._lock_last_seen: Dict[str, float] = {}
        self._cleanup_lock = threading.Lock()
        self._last_session_cleanup_monotonic = 0.0
        self._last_memory_cleanup_monotonic = 0.0
        self.session_ttl_seconds = max(0, int(session_ttl_seconds or 0))
        self.session_cleanup_interval_seconds = max(1, int(session_cleanup_interval_seconds))

        if self.store == "sqlite":
            if not self.db_path:
                raise ValueError("store=sqlite requires db_path.")
            self._init_tables()
            self._cleanup_expired_sessions(force=True)

    # === Cart ===

    def get_cart(self, session_id: str) -> CartView:
        """
        Current cart for a session, or an empty view when it has none.

        Read-only: a session that has never written gets no lock and no
        cache entry.
        """
        lock = self._existing_session_lock(session_id)
        if lock is None:
            cart = self._load_state(session_id)
            if cart is None:
                return self._empty_view()
            return self._view(cart)
        with lock:
            cart = self._get_state(session_id)
            if cart is None:
                return self._empty_view()
            return self._view(cart)

    def add_item(self, session_id: str, part_id: str, quantity: int = 1) -> CartView:
        """Add ``quantity`` of a catalog part, merging with an existing line.

        Creates the session's cart on first use.

        Raises:
            InvalidRequestError: ``quantity`` is below 1.
            PartNotFoundError: the part is not in the catalog.
        """
        if quantity < 1:
            raise InvalidRequestError("quantity must be at least 1")
        if self.repo.find_by_id(part_id) is None:
            raise PartNotFoundError(part_id)
        with self._get_session_lock(session_id):
            cart = self._get_state(session_id)
            if cart is None:
                cart = CartState(currency=self.currency, region=self.region)
                self.carts[session_id] = cart
            cart.items[part_id] = cart.items.get(part_id, 0) + quantity
            self._save_state(session_id, cart)
            logger.info("cart %s: added %s x%d", cart.cart_id, part_id, quantity)
            view = self._view(cart)
        self._after_write()
        return view

    def update_item(self, session_id: str, part_id: str, quantity: int) -> CartView:
        """Set a line's quantity; zero or less removes the line."""
        with self._get_session_lock(session_id):
            cart = self._require_state(session_id)
            if quantity <= 0:
                cart.items.pop(part_id, None)
            elif part_id in cart.items:
                cart.items[part_id] = quantity
            self._save_state(session_id, cart)
            view = self._view(cart)
        self._after_write()
        return view

    def remove_item(self, session_id: str, part_id: str) -> CartView:
        """Drop one line. Removing a part that is not in the cart is a no-op."""
        with self._get_session_lock(session_id):
            cart = self._require_state(session_id)
            cart.items.pop(part_id, None)
            self._save_state(session_id, cart)
            view = self._view(cart)
        self._after_write()
        return view

    def clear(self, session_id: str) -> CartView:
        with self._get_session_lock(session_id):
            cart = self._require_state(session_id)
            cart.items = {}
            self._save_state(session_id, cart)
            view = self._view(cart)
        self._after_write()
        return view

    # === Checkout ===

    def checkout(self, session_id: str, customer_name: str, customer_email: str) -> CheckoutResult:
        """
        Turn the session's cart into a completed order.

        Prices are snapshotted onto the order lines; tax is ``tax_rate`` of
        the subtotal, both rounded to cents. A receipt is offered to the
        ``receipt_sender`` when one is configured; a send failure is recorded
        on the order and does not fail the checkout. The cart is emptied.

        Raises:
            EmptyCartError: the session has no cart or it has no lines.
        """
        with self._get_session_lock(session_id):
            cart = self._get_state(session_id)
            if cart is None or not cart.items:
                raise EmptyCartError()

            parts = {p.id: p for p in self.repo.get_parts_by_ids(cart.items)}
            items: List[OrderItem] = []
            for part_id, quantity in cart.items.items():
                part = parts.get(part_id)
                if part is None:
                    raise InvalidRequestError(f"Part {part_id} not found")
                items.append(
                    OrderItem(
                        part_id=part.id,
                        part_name=part.name,
                        part_type=part.type,
                        part_brand=part.brand,
                        price=part.price,
                        quantity=quantity,
                    )
                )

            subtotal = round(sum(item.price * item.quantity for item in items), 2)
            tax = round(subtotal * self.tax_rate, 2)
            order = Order(
                order_number=generate_order_number(),
                session_id=session_id,
                customer_name=customer_name,
                customer_email=customer_email,
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=round(subtotal + tax, 2),
                currency=cart.currency,
                created_at=datetime.now(timezone.utc),
            )
            self._deliver_receipt(order)
            self._save_order(order)

            cart.items = {}
            self._save_state(session_id, cart)
            logger.info("order %s completed: %d lines, total %.2f", order.order_number, len(items), order.total)
        self._after_write()

        if order.billing_email_sent:
            message = f"Receipt emailed to {order.customer_email}"
        elif order.billing_email_error:
            message = "Order completed but email could not be sent. Please contact support."
        else:
            message = "Order completed"
        return CheckoutResult(
            order_number=order.order_number,
            total=order.total,
            subtotal=order.subtotal,
            tax=order.tax,
            currency=order.currency,
            item_count=len(order.items),
            email_sent=order.billing_email_sent,
            email_error=order.billing_email_error,
            message=message,
        )

    def get_order(self, order_number: str) -> Order:
        """Look up an order by number.

        Raises:
            OrderNotFoundError: no order has this number.
        """
        order = self.orders.get(order_number)
        if order is None:
            order = self._load_order(order_number)
        if order is None:
            raise OrderNotFoundError(order_number)
        return order

    def submit_pc_request(self, session_id: str, request: PCRequest) -> PCRequestResult:
        """
        Hand a "build it for me" request to an expert builder.

        Nothing is stored: the request goes to ``request_sender`` and the
        session's cart, if it has one, is emptied. A send failure is reported
        in the result rather than raised.
        """
        email_error: Optional[str] = None
        email_sent = False
        if self.request_sender is not None:
            try:
                self.request_sender.send_pc_request(request)
                email_sent = True
            except Exception as err:
                logger.warning("pc request from %s not sent: %s", request.customer_email, err)
                email_error = str(err) or "Unknown error sending email"

        known = self._existing_session_lock(session_id) is not None
        if known or self._load_state(session_id) is not None:
            with self._get_session_lock(session_id):
                cart = self._get_state(session_id)
                if cart is not None:
                    cart.items = {}
                    self._save_state(session_id, cart)
            self._after_write()
        logger.info("pc request from %s with %d items", request.customer_email, len(request.items))
        return PCRequestResult(
            message=PC_REQUEST_MESSAGE,
            email_sent=email_sent,
            email_error=email_error,
        )

    def _deliver_receipt(self, order: Order) -> None:
        if self.receipt_sender is None:
            return
        try:
            self.receipt_sender.send_receipt(order)
        except Exception as err:
            logger.warning("receipt for order %s not sent: %s", order.order_number, err)
            order.billing_email_error = str(err) or "Unknown error sending email"
            return
        order.billing_email_sent = True
        order.billing_email_sent_at = datetime.now(timezone.utc)

    def _empty_view(self) -> CartView:
        return CartView(currency=self.currency, region=self.region)

    def _view(self, cart: CartState) -> CartView:
        parts = {p.id: p for p in self.repo.get_parts_by_ids(cart.items)}
        lines = [
            CartLine(part_id=part_id, quantity=quantity, part=parts[part_id])
            for part_id, quantity in cart.items.items()
            if part_id in parts
        ]
        return CartView(
            id=cart.cart_id,
            items=lines,
            total=round(sum(line.part.price * line.quantity for line in lines), 2),
            currency=cart.currency,
            region=cart.region,
            item_count=len(lines),
        )

    # === Sessions ===

    def _get_session_lock(self, session_id: str) -> threading.Lock:
        with self._sessions_lock:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._session_locks[session_id] = lock
            now = time.monotonic()
            self._lock_last_seen[session_id] = now
            self._session_last_seen[session_id] = now
            return lock

    def _existing_session_lock(self, session_id: str) -> threading.Lock | None:
        with self._sessions_lock:
            return self._session_locks.get(session_id)

    def _require_state(self, session_id: str) -> CartState:
        cart = self._get_state(session_id)
        if cart is None:
            raise CartNotFoundError()
        return cart

    def _get_state(self, session_id: str) -> CartState | None:
        cart = self.carts.get(session_id)
        if cart is None:
            cart = self._load_state(session_id)
            if cart is not None:
                self.carts[session_id] = cart
        return cart

    def _after_write(self) -> None:
        self._cleanup_expired_sessions()
        self._cleanup_in_memory_cache()

    def _cleanup_expired_sessions(self, force: bool = False) -> None:
        if self.store != "sqlite":
            return
        if self.session_ttl_seconds <= 0:
            return

        now = time.monotonic()
        if not force and (now - self._last_session_cleanup_monotonic) < self.session_cleanup_interval_seconds:
            return

        with self._cleanup_lock:
            now = time.monotonic()
            if not force and (now - self._last_session_cleanup_monotonic) < self.session_cleanup_interval_seconds:
                return
            with sqlite3.connect(self._require_db_path()) as conn:
                deleted = conn.execute(
                    "DELETE FROM carts WHERE updated_at < datetime('now', ?)",
                    (f"-{self.session_ttl_seconds} seconds",),
                ).rowcount
                conn.commit()
            if deleted:
                logger.info("removed %d expired carts", deleted)
            self._last_session_cleanup_monotonic = now

    def _cleanup_in_memory_cache(self, force: bool = False) -> None:
        if self.session_ttl_seconds <= 0:
            return
        now = time.monotonic()
        if not force and (now - self._last_memory_cleanup_monotonic) < self.session_cleanup_interval_seconds:
            return
        with self._cleanup_lock:
            now = time.monotonic()
            if not force and (now - self._last_memory_cleanup_monotonic) < self.session_cleanup_interval_seconds:
                return
            expire_before = now - float(self.session_ttl_seconds)
            with self._sessions_lock:
                stale_sessions = [sid for sid, seen in self._session_last_seen.items() if seen < expire_before]
                for sid in stale_sessions:
                    self.carts.pop(sid, None)
                    self._session_last_seen.pop(sid, None)
                    self._lock_last_seen.pop(sid, None)
                    lock = self._session_locks.get(sid)
                    if lock is not None and not lock.locked():
                        self._session_locks.pop(sid, None)

                stale_locks = [sid for sid, seen in self._lock_last_seen.items() if seen < expire_before]
                for sid in stale_locks:
                    lock = self._session_locks.get(sid)
                    if lock is not None and not lock.locked():
                        self._session_locks.pop(sid, None)
                        self._lock_last_seen.pop(sid, None)
            self._last_memory_cleanup_monotonic = now

    # === Persistence ===

    def _require_db_path(self) -> Path:
        if self.db_path is None:
            raise RuntimeError("store=sqlite requires db_path.")
        return self.db_path

    def _init_tables(self) -> None:
        db_path = self._require_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS carts (
                    session_id TEXT PRIMARY KEY,
                    cart_id TEXT NOT NULL,
                    items_json TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    region TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS orders (
                    order_number TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    order_json TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()

    def _load_state(self, session_id: str) -> CartState | None:
        if self.store != "sqlite":
            return None
        sql = "SELECT cart_id, items_json, currency, region FROM carts WHERE session_id = ?"
        params: tuple = (session_id,)
        if self.session_ttl_seconds > 0:
            sql += " AND updated_at >= datetime('now', ?)"
            params = (session_id, f"-{self.session_ttl_seconds} seconds")
        with sqlite3.connect(self._require_db_path()) as conn:
            row = conn.execute(sql, params).fetchone()
        if row is None:
            return None
        return CartState(
            cart_id=row[0],
            items={k: int(v) for k, v in json.loads(row[1])},
            currency=row[2],
            region=row[3],
        )

    def _save_state(self, session_id: str, cart: CartState) -> None:
        if self.store != "sqlite":
            return
        with sqlite3.connect(self._require_db_path()) as conn:
            conn.execute(
                """
                INSERT INTO carts (session_id, cart_id, items_json, currency, region, updated_at)
                VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(session_id) DO UPDATE SET
                    cart_id = excluded.cart_id,
                    items_json = excluded.items_json,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    session_id,
                    cart.cart_id,
                    # list of pairs keeps line order
                    json.dumps(list(cart.items.items())),
                    cart.currency,
                    cart.region,
                ),
            )
            conn.commit()

    def _save_order(self, order: Order) -> None:
        if self.store != "sqlite":
            self.orders[order.order_number] = order
            return
        with sqlite3.connect(self._require_db_path()) as conn:
            conn.execute(
                "INSERT INTO orders (order_number, session_id, order_json) VALUES (?, ?, ?)",
                (order.order_number, order.session_id, order.model_dump_json()),
            )
            conn.commit()

    def _load_order(self, order_number: str) -> Order | None:
        if self.store != "sqlite":
            return None
        with sqlite3.connect(self._require_db_path()) as conn:
            row = conn.execute(
                "SELECT order_json FROM orders WHERE order_number = ?",
                (order_number,),
            ).fetchone()
        if row is None:
            return None
        return Order.model_validate_json(row[0])
