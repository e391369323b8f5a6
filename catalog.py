# catalog.py
from sqlalchemy import func, select

from core import db, Book, DiscountPeriod, Order, utcnow
from errors import Result, NotFoundError, ValidationError, outcome
from pricing import active_discounts, price_line
import reviews

SORTS = ("title", "author", "price", "popularity", "newest")
AVAILABILITY = ("all", "available", "unavailable")
MAX_PER_PAGE = 100


def catalog_entry(book, discount=None):
    entry = price_line(book, 1, discount).to_dict()
    del entry["quantity"], entry["subtotal"], entry["total"]
    entry.update(
        slug=book.slug,
        category=book.category,
        isbn=book.isbn,
        in_stock=book.quantity,
        is_available=book.is_available,
    )
    return entry


def copies_sold():
    return (
        db.session.query(Order.book_id, func.sum(Order.quantity).label("sold"))
        .filter(Order.is_cancelled.is_(False))
        .group_by(Order.book_id)
        .subquery()
    )


@outcome
def browse(search="", category="all", author="", availability="all",
           min_price=None, max_price=None, sort="title", page=1, per_page=12, now=None):
    now = now or utcnow()
    sort = (sort or "title").lower()
    availability = (availability or "all").lower()
    category = (category or "all").strip()
    if sort not in SORTS:
        raise ValidationError(f"Unknown sort '{sort}'.")
    if availability not in AVAILABILITY:
        raise ValidationError(f"Unknown availability filter '{availability}'.")
    if page < 1 or not 1 <= per_page <= MAX_PER_PAGE:
        raise ValidationError(f"Page must be 1 or more and page size between 1 and {MAX_PER_PAGE}.")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError("Minimum price cannot exceed maximum price.")

    q = Book.query
    search = (search or "").strip().lower()
    if search:
        like = f"%{search}%"
        q = q.filter(
            func.lower(Book.title).like(like)
            | func.lower(Book.author).like(like)
            | func.lower(func.coalesce(Book.isbn, "")).like(like)
        )
    if author:
        q = q.filter(func.lower(Book.author).like(f"%{author.strip().lower()}%"))

    if category.lower() == "deals":
        running = select(DiscountPeriod.book_id).where(
            DiscountPeriod.starts_at <= now, DiscountPeriod.expires_at >= now
        )
        q = q.filter(Book.id.in_(running))
    elif category.lower() != "all":
        q = q.filter(func.lower(Book.category) == category.lower())

    if availability == "available":
        q = q.filter(Book.quantity > 0)
    elif availability == "unavailable":
        q = q.filter(Book.quantity <= 0)
    if min_price is not None:
        q = q.filter(Book.price >= min_price)
    if max_price is not None:
        q = q.filter(Book.price <= max_price)

    if sort == "author":
        q = q.order_by(Book.author, Book.title)
    elif sort == "price":
        q = q.order_by(Book.price, Book.title)
    elif sort == "newest":
        q = q.order_by(Book.added_at.desc(), Book.title)
    elif sort == "popularity":
        sold = copies_sold()
        q = q.outerjoin(sold, sold.c.book_id == Book.id).order_by(
            func.coalesce(sold.c.sold, 0).desc(), Book.title
        )
    else:
        q = q.order_by(Book.title)

    total = q.count()
    books = q.offset((page - 1) * per_page).limit(per_page).all()
    discounts = active_discounts((b.id for b in books), now)
    return Result.success(
        f"{total} book(s) found.",
        books=[catalog_entry(b, discounts.get(b.id)) for b in books],
        page=page,
        per_page=per_page,
        total=total,
        pages=(total + per_page - 1) // per_page,
    )


@outcome
def book_detail(book_id, now=None):
    now = now or utcnow()
    book = db.session.get(Book, book_id)
    if book is None:
        raise NotFoundError("Book not found.")
    discounts = active_discounts([book.id], now)
    return Result.success(
        book.title,
        book=catalog_entry(book, discounts.get(book.id)),
        reviews=reviews.reviews_for_book(book.id),
        average_rating=reviews.average_rating(book.id),
    )
