# ledger.py
import logging

from sqlalchemy import update

from core import db, Book
from errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


def refresh_stock(book):
    """Re-read the on-hand count from the database, discarding any cached value."""
    db.session.refresh(book, ["quantity"])
    return book.quantity


def reserve(book, quantity, fresh=True):
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.")
    on_hand = refresh_stock(book) if fresh else book.quantity
    if quantity > on_hand:
        raise ConflictError(f"Only {on_hand} copies of '{book.title}' are available.")
    return on_hand


def commit(book, quantity):
    result = db.session.execute(
        update(Book)
        .where(Book.id == book.id, Book.quantity >= quantity)
        .values(quantity=Book.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(book, ["quantity"])
    if result.rowcount != 1:
        raise ConflictError(
            f"Not enough stock for '{book.title}'. Available: {book.quantity}, Requested: {quantity}."
        )
    logger.info("Stock committed: book=%s qty=%s", book.id, quantity)


def release(book, quantity):
    db.session.execute(
        update(Book)
        .where(Book.id == book.id)
        .values(quantity=Book.quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(book, ["quantity"])
    logger.info("Stock released: book=%s qty=%s", book.id, quantity)
