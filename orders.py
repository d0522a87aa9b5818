"""
Order placement and the order status state machine.

Placing an order snapshots the cart into ``OrderItem`` values, prices it and
then empties the cart. The two steps are not one transaction: if emptying the
cart fails the order still stands and the user is queued in a
:class:`CartCleanupQueue`, which later requests drain.

Status flow: pending -> packed -> dispatched -> shipped -> delivered, with
cancelled reachable from every state that is not terminal.
"""
import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

import structlog

import settings
from cart import unit_price
from errors import InvalidStatusTransition, NotFound, ValidationError
from schemas import Order, OrderItem, ShippingAddress
from storage import Storage

logger = structlog.get_logger(__name__)

TRANSITIONS = {
    "pending": frozenset({"packed", "cancelled"}),
    "packed": frozenset({"dispatched", "cancelled"}),
    "dispatched": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered", "cancelled"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

CENTS = Decimal("0.01")


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, frozenset())


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def shipping_fee_for(subtotal: Decimal) -> Decimal:
    if subtotal >= _money(settings.FREE_SHIPPING_THRESHOLD):
        return Decimal("0.00")
    return _money(settings.SHIPPING_FEE)


def compute_totals(items: Iterable[OrderItem]):
    """Return ``(subtotal, shipping_fee, total)`` as floats rounded to cents."""
    subtotal = sum((_money(item.price) * item.quantity for item in items), Decimal("0.00"))
    shipping = shipping_fee_for(subtotal)
    return float(subtotal), float(shipping), float(subtotal + shipping)


def snapshot_item(line: dict) -> OrderItem:
    """Freeze a cart line (as returned by ``cart.list_items``) into an order item."""
    price = unit_price(line)
    if line.get("kind") == "custom_design":
        design = line["custom_design"]
        return OrderItem(
            name="Custom T-Shirt",
            price=price,
            quantity=line["quantity"],
            size=line.get("size") or design.get("size"),
            color=line.get("color") or design.get("color"),
            image=design.get("composite_image_url") or design.get("image"),
            custom_design=design,
        )
    product = line["product"]
    if not product.get("is_active", True):
        raise ValidationError(f"{product['name']} is no longer available")
    images = product.get("images") or []
    return OrderItem(
        product_id=product["id"],
        name=product["name"],
        price=price,
        quantity=line["quantity"],
        size=line.get("size"),
        color=line.get("color"),
        image=images[0] if images else None,
    )


class CartCleanupQueue:
    """Users whose cart still has to be emptied after a placed order."""

    def __init__(self):
        self._pending = set()
        self._lock = threading.Lock()

    def __contains__(self, user_id):
        with self._lock:
            return user_id in self._pending

    def __len__(self):
        with self._lock:
            return len(self._pending)

    def schedule(self, user_id: str):
        with self._lock:
            self._pending.add(user_id)

    def drain(self, storage: Storage, user_id: Optional[str] = None) -> list:
        """Retry pending clears (one user's, or all); returns the users cleared."""
        with self._lock:
            if user_id is None:
                targets = list(self._pending)
            else:
                targets = [user_id] if user_id in self._pending else []
        cleared = []
        for uid in targets:
            try:
                storage.clear_cart(uid)
            except Exception:
                logger.exception("cart_cleanup_retry_failed", user_id=uid)
                continue
            with self._lock:
                self._pending.discard(uid)
            cleared.append(uid)
        return cleared


def create_order(storage: Storage, user_id: str, items: list, shipping_address: ShippingAddress, payment_status: str = "pending", cleanup: Optional[CartCleanupQueue] = None) -> dict:
    if not items:
        raise ValidationError("Cart is empty")
    order_items = [snapshot_item(line) for line in items]
    subtotal, shipping_fee, total = compute_totals(order_items)
    order = Order(
        user_id=user_id,
        status="pending",
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        total=total,
        items=order_items,
        shipping_address=shipping_address,
        payment_status=payment_status,
    )
    created = storage.insert_order(order)
    logger.info("order_placed", order_id=created["id"], user_id=user_id, total=total)

    try:
        storage.clear_cart(user_id)
    except Exception:
        logger.exception("cart_clear_failed", order_id=created["id"], user_id=user_id, retry_queued=cleanup is not None)
        if cleanup is not None:
            cleanup.schedule(user_id)
    return created


def get_order(storage: Storage, order_id: str) -> dict:
    order = storage.get_order(order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def list_orders(storage: Storage, user_id: Optional[str] = None) -> list:
    return storage.list_orders(user_id)


def set_status(storage: Storage, order_id: str, new_status: str) -> dict:
    order = get_order(storage, order_id)
    current = order["status"]
    if new_status == current:
        return order
    if not can_transition(current, new_status):
        raise InvalidStatusTransition(f"Cannot move order from {current} to {new_status}")
    updated = storage.update_order_status(order_id, new_status, expected_status=current)
    if not updated:
        raise InvalidStatusTransition("Order status changed concurrently, reload and retry")
    logger.info("order_status_changed", order_id=order_id, old_status=current, new_status=new_status)
    return updated
