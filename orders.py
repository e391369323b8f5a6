# orders.py
import logging

import cart
import ledger
from claims import generate_claim_code
from core import (
    db, Order, OrderKey, utcnow,
    STATUS_CANCELLED, STATUS_PLACED,
)
from errors import (
    Result, ShopError, AuthorizationError, ConflictError, NotFoundError, ValidationError, outcome,
)
from notify import (
    broadcast, publish_order_count, receipt_html, try_send_email, ANNOUNCEMENTS,
)
from pricing import money, open_order_count, quote_cart

logger = logging.getLogger(__name__)

EMAIL_WARNING = (
    "Order placed successfully, but the confirmation email could not be sent. "
    "Check your orders for the claim codes."
)


def is_cancellable(order, now=None):
    return order.is_cancellable(now or utcnow())


def parse_key(raw):
    key = raw if isinstance(raw, OrderKey) else OrderKey.parse(raw)
    if key is None:
        raise ValidationError(f"Invalid order reference: {raw}")
    return key


def owned_order(user, raw_key):
    key = parse_key(raw_key)
    if key.user_id != user.id:
        raise AuthorizationError("You can only manage your own orders.")
    order = db.session.get(Order, key.ident)
    if order is None:
        raise NotFoundError("Order not found.")
    return order


def checked_cart(user):
    """Cart entries with stock re-read; refuses the whole cart on any shortage."""
    entries = cart.cart_entries(user.id)
    if not entries:
        raise ValidationError("Your cart is empty.")
    problems = []
    for entry in entries:
        on_hand = ledger.refresh_stock(entry.book)
        if on_hand < entry.quantity:
            problems.append(
                f"Not enough stock for '{entry.book.title}'. Available: {on_hand}, Requested: {entry.quantity}."
            )
    if problems:
        raise ConflictError(" ".join(problems))
    return entries


@outcome
def checkout_view(user, now=None):
    now = now or utcnow()
    entries = checked_cart(user)
    quote = quote_cart(((e.book, e.quantity) for e in entries), open_order_count(user.id), now)
    return Result.success("Review your order.", checkout=quote.to_dict())


@outcome
def confirm_checkout(user, now=None):
    """Turn the cart into one Placed order per line, all or nothing.

    Prices and the loyalty count are recomputed here rather than trusted
    from the checkout page; a discount may have expired in the meantime.
    """
    now = now or utcnow()
    entries = checked_cart(user)
    quote = quote_cart(((e.book, e.quantity) for e in entries), open_order_count(user.id), now)

    placed = []
    codes = set()
    for line in quote.lines:
        ledger.commit(line.book, line.quantity)
        code = generate_claim_code(codes)
        codes.add(code)
        order = Order(
            user_id=user.id,
            book_id=line.book.id,
            ordered_at=now,
            quantity=line.quantity,
            total_price=money(line.total),
            claim_code=code,
            is_cancelled=False,
            is_fulfilled=False,
            status=STATUS_PLACED,
        )
        db.session.add(order)
        placed.append(order)

    cart.clear(user, [line.book.id for line in quote.lines])
    db.session.commit()
    logger.info(
        "Checkout: user=%s lines=%d items=%d total=%s",
        user.id, len(placed), quote.total_items, money(quote.final_total),
    )

    result = Result.success(
        "Order placed successfully! A confirmation email has been sent with your claim code and billing details.",
        orders=[order.to_dict(now) for order in placed],
        receipt=quote.to_dict(),
    )

    warning = try_send_email(
        user.email,
        "Your Book Nook Order Confirmation",
        receipt_html(user, quote, placed, now),
        EMAIL_WARNING,
    )
    if warning:
        result.warnings.append(warning)

    total_orders = Order.query.count()
    for order in placed:
        broadcast(ANNOUNCEMENTS, "order_placed", {
            "message": f"Order for '{order.book.title}' by {user.full_name} has been placed! Order #{total_orders}",
        })
    publish_order_count(user.id)
    cart.publish_cart_count(user)
    return result


def apply_cancel(order, now):
    if order.is_cancelled or order.is_fulfilled or order.status != STATUS_PLACED:
        raise ConflictError(f"This order is already {order.status.lower()} and cannot be cancelled.")
    if not order.is_cancellable(now):
        raise ConflictError("This order cannot be cancelled. It is past the 24-hour cancellation window.")
    order.is_cancelled = True
    order.cancelled_at = now
    order.status = STATUS_CANCELLED
    ledger.release(order.book, order.quantity)


def apply_delete(order):
    if not order.is_terminal:
        raise ConflictError("Only received or cancelled orders can be deleted.")
    db.session.delete(order)


@outcome
def cancel_order(user, key, now=None):
    now = now or utcnow()
    order = owned_order(user, key)
    apply_cancel(order, now)
    db.session.commit()
    logger.info("Order cancelled: key=%s", order.key)

    publish_order_count(user.id)
    return Result.success("Order cancelled successfully.", order=order.to_dict(now))


@outcome
def delete_order(user, key):
    order = owned_order(user, key)
    apply_delete(order)
    db.session.commit()
    logger.info("Order deleted: key=%s", key)

    publish_order_count(user.id)
    return Result.success("Order deleted successfully.")


def run_each(user, raw_keys, action, verb):
    """Apply ``action`` to each order in its own transaction.

    Returns (done, skipped) where skipped lists the rejected references.
    """
    done = 0
    skipped = []
    seen = set()
    for raw in raw_keys:
        try:
            order = owned_order(user, raw)
            if order.key in seen:
                raise ValidationError("Order listed more than once.")
            seen.add(order.key)
            action(order)
            db.session.commit()
            done += 1
        except ShopError as exc:
            db.session.rollback()
            logger.warning("Bulk %s skipped %s: %s", verb, raw, exc.message)
            skipped.append({"order": str(raw), "reason": exc.message})
    return done, skipped


@outcome
def bulk_cancel(user, raw_keys, now=None):
    """Cancel many orders; terminal ones among them are deleted instead."""
    now = now or utcnow()
    raw_keys = list(raw_keys or [])
    if not raw_keys:
        raise ValidationError("No orders selected for cancellation.")

    to_delete = []

    def cancel_or_defer(order):
        if order.is_terminal:
            to_delete.append(order.key)
            return
        apply_cancel(order, now)

    cancelled, skipped = run_each(user, raw_keys, cancel_or_defer, "cancel")
    cancelled -= len(to_delete)
    deleted, skipped_deletes = run_each(user, to_delete, apply_delete, "delete")
    skipped.extend(skipped_deletes)

    publish_order_count(user.id)

    if cancelled == 0 and deleted == 0:
        raise ConflictError(
            "No orders were cancelled. They may already be cancelled or past the cancellation window.",
            skipped=skipped,
        )
    parts = []
    if cancelled:
        parts.append(f"{cancelled} order(s) cancelled successfully.")
    if deleted:
        parts.append(f"{deleted} order(s) deleted successfully.")
    return Result.success(" ".join(parts), cancelled=cancelled, deleted=deleted, skipped=skipped)


@outcome
def bulk_delete(user, raw_keys):
    raw_keys = list(raw_keys or [])
    if not raw_keys:
        raise ValidationError("No orders selected for deletion.")

    deleted, skipped = run_each(user, raw_keys, apply_delete, "delete")
    publish_order_count(user.id)

    if deleted == 0:
        raise ConflictError(
            "No orders were deleted. Only received or cancelled orders can be deleted.", skipped=skipped
        )
    return Result.success(f"{deleted} order(s) deleted successfully.", deleted=deleted, skipped=skipped)


@outcome
def my_orders(user, now=None):
    now = now or utcnow()
    orders = (
        Order.query
        .filter_by(user_id=user.id)
        .order_by(Order.ordered_at.desc())
        .all()
    )
    return Result.success(
        "Orders loaded.",
        orders=[order.to_dict(now) for order in orders],
        open_orders=open_order_count(user.id),
    )


def release_open_orders(user_id):
    """Give back stock held by a user's Placed orders (used before removing the user)."""
    released = 0
    for order in Order.query.filter_by(user_id=user_id, status=STATUS_PLACED, is_cancelled=False).all():
        ledger.release(order.book, order.quantity)
        released += 1
    return released
