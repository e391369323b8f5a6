# claims.py
import logging
import uuid

from core import db, Order, CLAIM_CODE_LENGTH, STATUS_RECEIVED, text, utcnow
from errors import Result, AuthorizationError, ConflictError, NotFoundError, ValidationError, outcome
from notify import broadcast, publish_order_count, FULFILLMENT

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 10


def new_code():
    return uuid.uuid4().hex[:CLAIM_CODE_LENGTH].upper()


def generate_claim_code(taken=()):
    """A code no stored order (and nothing in ``taken``) already uses."""
    for _ in range(MAX_CODE_ATTEMPTS):
        code = new_code()
        if code in taken:
            continue
        if not db.session.query(Order.query.filter_by(claim_code=code).exists()).scalar():
            return code
        logger.info("Claim code collision on %s, regenerating", code)
    raise ConflictError("Could not allocate a unique claim code, please try again.")


def normalize_code(claim_code):
    return text(claim_code).upper()


def find_for_fulfillment(claim_code, user_id):
    claim_code = normalize_code(claim_code)
    user_id = text(user_id)
    if not claim_code:
        raise ValidationError("Claim code is required.")
    if not user_id:
        raise ValidationError("User ID is required.")

    order = Order.query.filter_by(claim_code=claim_code).first()
    if order is None:
        raise NotFoundError("Invalid claim code.")
    if order.user_id != user_id:
        raise AuthorizationError("The user ID does not match the order.")
    if order.is_cancelled:
        raise ConflictError("This order has been cancelled and cannot be fulfilled.")
    if order.is_fulfilled or order.status == STATUS_RECEIVED:
        raise ConflictError("This order has already been fulfilled.")
    return order


def describe(order):
    data = order.to_dict()
    data["customer"] = {
        "id": order.user.id,
        "name": order.user.full_name,
        "email": order.user.email,
    }
    data["author"] = order.book.author
    return data


@outcome
def lookup_for_fulfillment(staff, claim_code, user_id):
    order = find_for_fulfillment(claim_code, user_id)
    logger.info("Fulfillment lookup: staff=%s code=%s", staff.id, order.claim_code)
    return Result.success(
        "Check the order details, then confirm the hand-over.",
        order=describe(order),
        confirmation_step=True,
    )


@outcome
def confirm_fulfillment(staff, claim_code, user_id, now=None):
    now = now or utcnow()
    order = find_for_fulfillment(claim_code, user_id)

    order.is_fulfilled = True
    order.fulfilled_at = now
    order.status = STATUS_RECEIVED
    db.session.commit()
    logger.info("Order fulfilled: key=%s staff=%s", order.key, staff.id)

    message = f"Order for '{order.book.title}' by {order.user.full_name} has been successfully fulfilled!"
    broadcast(FULFILLMENT, "order_fulfilled", {"message": message, "claim_code": order.claim_code})
    publish_order_count(order.user_id)
    return Result.success("Order fulfilled successfully.", order=describe(order))
