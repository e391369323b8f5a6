# pricing.py
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from core import (
    db, DiscountPeriod, Order, CENT, STATUS_RECEIVED,
    QUANTITY_DISCOUNT_RATE, QUANTITY_DISCOUNT_MIN_ITEMS,
    LOYALTY_DISCOUNT_RATE, LOYALTY_DISCOUNT_MIN_ORDERS,
)

ZERO = Decimal("0")
ONE = Decimal("1")


def money(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PricedLine:
    book: object
    quantity: int
    unit_price: Decimal
    discounted_price: Decimal
    discount_active: bool = False
    on_sale: bool = False
    rate: Decimal = ZERO

    @property
    def subtotal(self):
        return self.discounted_price * self.quantity

    @property
    def discount_amount(self):
        # Share of the cart-level discount, proportional to this line's subtotal.
        return self.subtotal * self.rate

    @property
    def total(self):
        return self.subtotal - self.discount_amount

    def to_dict(self):
        return {
            "book_id": self.book.id,
            "title": self.book.title,
            "author": self.book.author,
            "quantity": self.quantity,
            "unit_price": str(money(self.unit_price)),
            "discounted_price": str(money(self.discounted_price)),
            "discount_active": self.discount_active,
            "on_sale": self.on_sale,
            "subtotal": str(money(self.subtotal)),
            "total": str(money(self.total)),
        }


@dataclass
class Quote:
    lines: list = field(default_factory=list)
    prior_orders: int = 0
    quantity_discount: Decimal = ZERO
    loyalty_discount: Decimal = ZERO

    @property
    def total_items(self):
        return sum(line.quantity for line in self.lines)

    @property
    def subtotal(self):
        return sum((line.subtotal for line in self.lines), ZERO)

    @property
    def combined_rate(self):
        return combined_rate(self.quantity_discount, self.loyalty_discount)

    @property
    def discount_amount(self):
        return self.subtotal * self.combined_rate

    @property
    def final_total(self):
        return final_total(self.subtotal, self.combined_rate)

    def to_dict(self):
        return {
            "lines": [line.to_dict() for line in self.lines],
            "total_items": self.total_items,
            "prior_orders": self.prior_orders,
            "subtotal": str(money(self.subtotal)),
            "quantity_discount": str(self.quantity_discount * 100),
            "loyalty_discount": str(self.loyalty_discount * 100),
            "combined_rate": str(self.combined_rate),
            "discount_amount": str(money(self.discount_amount)),
            "final_total": str(money(self.final_total)),
        }


def active_discount(book_id, now):
    """The discount period running for a book at ``now``.

    Overlapping periods resolve to the deepest markdown.
    """
    return (
        DiscountPeriod.query
        .filter(
            DiscountPeriod.book_id == book_id,
            DiscountPeriod.starts_at <= now,
            DiscountPeriod.expires_at >= now,
        )
        .order_by(DiscountPeriod.fraction.desc(), DiscountPeriod.id)
        .first()
    )


def active_discounts(book_ids, now):
    """Map book id -> running discount period for a batch of books."""
    book_ids = list(book_ids)
    if not book_ids:
        return {}
    periods = (
        db.session.query(DiscountPeriod)
        .filter(
            DiscountPeriod.book_id.in_(book_ids),
            DiscountPeriod.starts_at <= now,
            DiscountPeriod.expires_at >= now,
        )
        .order_by(DiscountPeriod.fraction.desc(), DiscountPeriod.id)
        .all()
    )
    found = {}
    for period in periods:
        found.setdefault(period.book_id, period)
    return found


def discounted_price(unit_price, discount=None):
    unit_price = Decimal(unit_price)
    if discount is None:
        return unit_price
    fraction = min(max(Decimal(discount.fraction), ZERO), ONE)
    return unit_price * (ONE - fraction)


def quantity_discount(total_items):
    return QUANTITY_DISCOUNT_RATE if total_items >= QUANTITY_DISCOUNT_MIN_ITEMS else ZERO


def loyalty_discount(prior_orders):
    return LOYALTY_DISCOUNT_RATE if prior_orders >= LOYALTY_DISCOUNT_MIN_ORDERS else ZERO


def combined_rate(quantity_rate, loyalty_rate):
    quantity_rate = Decimal(quantity_rate)
    loyalty_rate = Decimal(loyalty_rate)
    return quantity_rate + loyalty_rate - quantity_rate * loyalty_rate


def final_total(subtotal, rate):
    total = Decimal(subtotal) * (ONE - Decimal(rate))
    return max(total, ZERO)


def price_line(book, quantity, discount=None):
    return PricedLine(
        book=book,
        quantity=quantity,
        unit_price=Decimal(book.price),
        discounted_price=discounted_price(book.price, discount),
        discount_active=discount is not None,
        on_sale=bool(discount.on_sale) if discount is not None else False,
    )


def price_items(items, discounts, prior_orders):
    """Price ``(book, quantity)`` pairs against already loaded discounts.

    Pure: same inputs always give the same quote.
    """
    lines = [price_line(book, qty, discounts.get(book.id)) for book, qty in items]
    quote = Quote(lines=lines, prior_orders=prior_orders)
    quote.quantity_discount = quantity_discount(quote.total_items)
    quote.loyalty_discount = loyalty_discount(prior_orders)
    rate = quote.combined_rate
    for line in lines:
        line.rate = rate
    return quote


def quote_cart(items, prior_orders, now):
    """Price a cart at ``now``, reading the discount windows fresh."""
    items = list(items)
    discounts = active_discounts((book.id for book, _ in items), now)
    return price_items(items, discounts, prior_orders)


def open_order_count(user_id):
    """Loyalty input: the user's orders that are neither cancelled nor received."""
    return Order.query.filter(
        Order.user_id == user_id,
        Order.is_cancelled.is_(False),
        Order.status != STATUS_RECEIVED,
    ).count()
