# cart.py
import logging

from sqlalchemy import func

import ledger
from core import db, Book, CartEntry, WishlistEntry, utcnow
from errors import Result, ConflictError, NotFoundError, ValidationError, outcome
from notify import broadcast, CART_COUNT
from pricing import active_discounts, open_order_count, price_line, quote_cart

logger = logging.getLogger(__name__)


def get_book(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        raise NotFoundError("Book not found.")
    return book


def cart_count(user_id):
    return (
        db.session.query(func.count(func.distinct(CartEntry.book_id)))
        .filter(CartEntry.user_id == user_id)
        .scalar()
    )


def cart_entries(user_id):
    return (
        CartEntry.query
        .filter_by(user_id=user_id)
        .join(Book)
        .order_by(Book.title)
        .all()
    )


def publish_cart_count(user):
    count = cart_count(user.id)
    broadcast(CART_COUNT, "cart_count_updated", {"user_id": user.id, "count": count})
    return count


def check_quantity(quantity):
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be a whole number.")


@outcome
def add_or_merge(user, book_id, quantity=1):
    check_quantity(quantity)
    book = get_book(book_id)
    ledger.refresh_stock(book)
    if not book.is_available:
        raise ConflictError("This book is currently out of stock.")
    quantity = max(quantity, 1)

    entry = db.session.get(CartEntry, (user.id, book.id))
    new_quantity = quantity + (entry.quantity if entry else 0)
    ledger.reserve(book, new_quantity, fresh=False)

    if entry:
        entry.quantity = new_quantity
    else:
        db.session.add(CartEntry(user_id=user.id, book_id=book.id, quantity=new_quantity))
    db.session.commit()
    logger.info("Cart add: user=%s book=%s qty=%s", user.id, book.id, new_quantity)

    count = publish_cart_count(user)
    return Result.success("Book added to your cart.", quantity=new_quantity, cart_count=count)


@outcome
def update_quantity(user, book_id, quantity):
    check_quantity(quantity)
    entry = db.session.get(CartEntry, (user.id, book_id))
    if entry is None:
        raise NotFoundError("Book not in your cart.")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.")
    ledger.reserve(entry.book, quantity)

    entry.quantity = quantity
    db.session.commit()

    count = publish_cart_count(user)
    return Result.success("Cart updated successfully.", quantity=quantity, cart_count=count)


@outcome
def remove(user, book_id):
    entry = db.session.get(CartEntry, (user.id, book_id))
    if entry is None:
        raise NotFoundError("Book not found in your cart.")
    db.session.delete(entry)
    db.session.commit()

    count = publish_cart_count(user)
    return Result.success("Book removed from your cart.", cart_count=count)


def clear(user, book_ids):
    """Drop the given books from the cart inside the caller's transaction."""
    book_ids = list(book_ids)
    if not book_ids:
        return 0
    return (
        CartEntry.query
        .filter(CartEntry.user_id == user.id, CartEntry.book_id.in_(book_ids))
        .delete(synchronize_session="fetch")
    )


@outcome
def view_cart(user, now=None):
    now = now or utcnow()
    entries = cart_entries(user.id)
    shortages = []
    for entry in entries:
        on_hand = ledger.refresh_stock(entry.book)
        if entry.quantity > on_hand:
            shortages.append({"book_id": entry.book_id, "title": entry.book.title, "available": on_hand})

    quote = quote_cart(((e.book, e.quantity) for e in entries), open_order_count(user.id), now)
    return Result.success(
        "Your cart is empty." if not entries else "Cart loaded.",
        cart=quote.to_dict(),
        shortages=shortages,
        cart_count=len(entries),
    )


@outcome
def cart_entry(user, book_id):
    entry = db.session.get(CartEntry, (user.id, book_id))
    return Result.success(
        "In cart." if entry else "Not in cart.",
        exists=entry is not None,
        quantity=entry.quantity if entry else 0,
    )


# --- Wishlist ---

@outcome
def toggle_wishlist(user, book_id):
    book = get_book(book_id)
    entry = db.session.get(WishlistEntry, (user.id, book.id))
    if entry is not None:
        db.session.delete(entry)
        db.session.commit()
        return Result.success("Book removed from your wishlist.", in_wishlist=False)
    db.session.add(WishlistEntry(user_id=user.id, book_id=book.id))
    db.session.commit()
    return Result.success("Book added to your wishlist.", in_wishlist=True)


@outcome
def remove_from_wishlist(user, book_id):
    entry = db.session.get(WishlistEntry, (user.id, book_id))
    if entry is None:
        raise NotFoundError("Book not found in your wishlist.")
    db.session.delete(entry)
    db.session.commit()
    return Result.success("Book removed from your wishlist.")


@outcome
def view_wishlist(user, now=None):
    now = now or utcnow()
    books = [w.book for w in WishlistEntry.query.filter_by(user_id=user.id).all()]
    discounts = active_discounts((b.id for b in books), now)
    items = []
    for book in books:
        line = price_line(book, 1, discounts.get(book.id)).to_dict()
        line["available"] = book.is_available
        items.append(line)
    return Result.success("Wishlist loaded.", books=items)
