# backoffice.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
import logging
import uuid

from core import (
    db, Book, CartEntry, DiscountPeriod, Order, TimedAnnouncement, User, WishlistEntry,
    CATEGORY_ORDER, ROLE_STAFF, ROLE_USER, text, utcnow,
)
from errors import Result, ConflictError, NotFoundError, ValidationError, outcome
from notify import account_notice_html, broadcast, try_send_email, ANNOUNCEMENTS
from orders import release_open_orders
from pricing import open_order_count
import reviews

logger = logging.getLogger(__name__)

ANNOUNCEMENT_DEFAULT_LIFETIME = timedelta(days=5)


def parse_decimal(value, label):
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {label}.")
    if not number.is_finite():
        raise ValidationError(f"Invalid {label}.")
    return number


def parse_count(value, label):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}.")
    if number < 0:
        raise ValidationError(f"{label.capitalize()} cannot be negative.")
    return number


def parse_timestamp(value, label):
    """Accept a datetime or an ISO string; always hand back naive UTC."""
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value).strip())
        except ValueError:
            raise ValidationError(f"Invalid {label}.")
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def get_or_404(model, ident, label):
    obj = db.session.get(model, ident)
    if obj is None:
        raise NotFoundError(f"{label} not found.")
    return obj


# --- Timed discounts ---

@outcome
def set_discount(book_id, percentage, starts_at, expires_at, on_sale=False):
    """Create, replace or (with a percentage of 0) remove a book's discount."""
    book = get_or_404(Book, book_id, "Book")
    percentage = parse_decimal(percentage, "discount percentage")
    existing = DiscountPeriod.query.filter_by(book_id=book.id).order_by(DiscountPeriod.id).all()

    if percentage <= 0:
        for period in existing:
            db.session.delete(period)
        db.session.commit()
        return Result.success("Discount removed." if existing else "No discount to remove.")

    if percentage > 100:
        raise ValidationError("Discount percentage cannot exceed 100.")
    starts_at = parse_timestamp(starts_at, "start date")
    expires_at = parse_timestamp(expires_at, "expiry date")
    if starts_at >= expires_at:
        raise ValidationError("The discount must start before it expires.")

    if existing:
        period = existing[0]
        for extra in existing[1:]:
            db.session.delete(extra)
    else:
        period = DiscountPeriod(book_id=book.id)
        db.session.add(period)
    period.fraction = percentage / 100
    period.starts_at = starts_at
    period.expires_at = expires_at
    period.on_sale = bool(on_sale)
    db.session.commit()
    logger.info("Discount for book %s set to %s%% (%s - %s)", book.id, percentage, starts_at, expires_at)
    return Result.success("Discount updated successfully.", discount_id=period.id)


def discount_for(book_id):
    period = DiscountPeriod.query.filter_by(book_id=book_id).order_by(DiscountPeriod.id).first()
    if period is None:
        return None
    return {
        "book_id": book_id,
        "percentage": str(period.fraction * 100),
        "starts_at": period.starts_at.isoformat(),
        "expires_at": period.expires_at.isoformat(),
        "on_sale": period.on_sale,
    }


# --- Announcements ---

def announcement_to_dict(notice):
    return {
        "id": notice.id,
        "title": notice.title,
        "message": notice.message,
        "starts_at": notice.starts_at.isoformat(),
        "expires_at": notice.expires_at.isoformat(),
    }


def check_announcement(title, message, starts_at, expires_at):
    title = text(title)
    message = text(message)
    if not title or not message:
        raise ValidationError("Title and message are required.")
    if starts_at >= expires_at:
        raise ValidationError("The announcement must start before it expires.")
    return title, message


@outcome
def create_announcement(title, message, starts_at=None, expires_at=None, now=None):
    now = now or utcnow()
    starts_at = parse_timestamp(starts_at, "start date") if starts_at else now
    expires_at = parse_timestamp(expires_at, "expiry date") if expires_at else starts_at + ANNOUNCEMENT_DEFAULT_LIFETIME
    title, message = check_announcement(title, message, starts_at, expires_at)
    notice = TimedAnnouncement(title=title, message=message, created_at=now, starts_at=starts_at, expires_at=expires_at)
    db.session.add(notice)
    db.session.commit()
    return Result.success("New notice posted successfully!", announcement=announcement_to_dict(notice))


@outcome
def update_announcement(notice_id, title, message, starts_at, expires_at):
    notice = get_or_404(TimedAnnouncement, notice_id, "Announcement")
    starts_at = parse_timestamp(starts_at, "start date")
    expires_at = parse_timestamp(expires_at, "expiry date")
    notice.title, notice.message = check_announcement(title, message, starts_at, expires_at)
    notice.starts_at = starts_at
    notice.expires_at = expires_at
    db.session.commit()
    return Result.success("Notice updated successfully.", announcement=announcement_to_dict(notice))


@outcome
def delete_announcement(notice_id):
    notice = get_or_404(TimedAnnouncement, notice_id, "Announcement")
    db.session.delete(notice)
    db.session.commit()
    return Result.success("Notice removed from the board.")


def active_announcements(now=None):
    # Expired notices are filtered out on read; nothing sweeps them.
    now = now or utcnow()
    notices = (
        TimedAnnouncement.query
        .filter(TimedAnnouncement.starts_at <= now, TimedAnnouncement.expires_at >= now)
        .order_by(TimedAnnouncement.starts_at.desc())
        .all()
    )
    return [announcement_to_dict(n) for n in notices]


@outcome
def send_announcement(message):
    message = text(message)
    if not message:
        raise ValidationError("Announcement message cannot be empty.")
    result = Result.success("Announcement sent successfully!")
    if not broadcast(ANNOUNCEMENTS, "announcement", {"message": message}):
        result.warnings.append("The announcement could not be delivered to connected clients.")
    return result


# --- Books ---

def book_fields(title, author, category, price, quantity, slug=None, isbn=None, image=None):
    title = text(title)
    author = text(author)
    category = text(category)
    if not title or not author or category not in CATEGORY_ORDER:
        raise ValidationError("Please provide title, author, and valid category.")
    price = parse_decimal(price, "price")
    if price < 0:
        raise ValidationError("Price cannot be negative.")
    return {
        "title": title,
        "author": author,
        "category": category,
        "price": price,
        "quantity": parse_count(quantity, "quantity"),
        "slug": text(slug) or "-".join(title.lower().split()),
        "isbn": text(isbn) or None,
        "image": text(image) or None,
    }


def check_slug(slug, book_id=None):
    clash = Book.query.filter(Book.slug == slug)
    if book_id is not None:
        clash = clash.filter(Book.id != book_id)
    if clash.first() is not None:
        raise ConflictError(f"Another book already uses the slug '{slug}'.")


@outcome
def create_book(title, author, category, price, quantity=0, slug=None, isbn=None, image=None):
    fields = book_fields(title, author, category, price, quantity, slug, isbn, image)
    check_slug(fields["slug"])
    book = Book(**fields)
    db.session.add(book)
    db.session.commit()
    logger.info("Book created: %s (%s)", book.id, book.title)
    return Result.success("Book created.", book_id=book.id)


@outcome
def update_book(book_id, title, author, category, price, quantity, slug=None, isbn=None, image=None):
    book = get_or_404(Book, book_id, "Book")
    fields = book_fields(title, author, category, price, quantity, slug or book.slug, isbn, image)
    check_slug(fields["slug"], book.id)
    for name, value in fields.items():
        setattr(book, name, value)
    db.session.commit()
    return Result.success("Book updated.", book_id=book.id)


@outcome
def delete_book(book_id):
    book = get_or_404(Book, book_id, "Book")
    title = book.title
    if Order.query.filter_by(book_id=book.id).first() is not None:
        raise ConflictError(
            f"'{title}' has order history and cannot be deleted. Set its stock to 0 instead."
        )
    DiscountPeriod.query.filter_by(book_id=book.id).delete()
    CartEntry.query.filter_by(book_id=book.id).delete()
    WishlistEntry.query.filter_by(book_id=book.id).delete()
    reviews.delete_reviews_for(book_id=book.id)
    db.session.delete(book)
    db.session.commit()
    logger.info("Book deleted: %s", book_id)
    return Result.success(f"Book '{title}' deleted successfully.")


# --- Accounts ---

def list_users():
    return [
        {
            "id": u.id,
            "email": u.email,
            "name": u.full_name,
            "role": u.role,
            "open_orders": open_order_count(u.id),
            "deletion_notice_at": u.deletion_notice_at.isoformat() if u.deletion_notice_at else None,
        }
        for u in User.query.order_by(User.email).all()
    ]


def create_account(email, first_name, last_name, role):
    email = text(email).lower()
    if "@" not in email:
        raise ValidationError("A valid email address is required.")
    if User.query.filter_by(email=email).first() is not None:
        raise ConflictError("A user with that email already exists.")
    user = User(
        id=str(uuid.uuid4()), email=email,
        first_name=text(first_name), last_name=text(last_name),
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("%s account created: %s", role, email)
    return user


@outcome
def register_shopper(email, first_name="", last_name=""):
    user = create_account(email, first_name, last_name, ROLE_USER)
    return Result.success("Account created.", user_id=user.id)


@outcome
def create_staff(email, first_name="", last_name=""):
    user = create_account(email, first_name, last_name, ROLE_STAFF)
    return Result.success(f"Staff account for {user.email} created.", user_id=user.id)


@outcome
def send_deletion_notice(admin, user_id, message, now=None):
    """Warn a user that their account is about to be removed."""
    user = get_or_404(User, user_id, "User")
    if user.id == admin.id:
        raise ConflictError("You cannot delete your own account.")
    message = text(message)
    if not message:
        raise ValidationError("A message is required.")

    user.deletion_notice_at = now or utcnow()
    db.session.commit()
    logger.info("Deletion notice for %s sent by %s", user.id, admin.id)

    result = Result.success(
        f"Deletion notice sent to {user.email}. Waiting for the user to respond.",
        deletion_notice_at=user.deletion_notice_at.isoformat(),
    )
    warning = try_send_email(
        user.email,
        "Deletion notice from Book Nook",
        account_notice_html(user, message),
        "The notice was recorded, but the email could not be sent.",
    )
    if warning:
        result.warnings.append(warning)
    return result


@outcome
def cancel_deletion(admin, user_id):
    user = get_or_404(User, user_id, "User")
    if user.deletion_notice_at is None:
        raise ConflictError("No deletion notice is pending for this user.")

    user.deletion_notice_at = None
    db.session.commit()
    logger.info("Deletion notice for %s withdrawn by %s", user.id, admin.id)

    result = Result.success(f"Deletion notice for {user.email} has been cancelled.")
    warning = try_send_email(
        user.email,
        "Deletion notice cancelled",
        account_notice_html(user),
        "The notice was withdrawn, but the email could not be sent.",
    )
    if warning:
        result.warnings.append(warning)
    return result


@outcome
def delete_user(admin, user_id):
    user = get_or_404(User, user_id, "User")
    if user.id == admin.id:
        raise ConflictError("You cannot delete your own account.")
    email, name = user.email, user.full_name

    released = release_open_orders(user.id)
    Order.query.filter_by(user_id=user.id).delete()
    CartEntry.query.filter_by(user_id=user.id).delete()
    WishlistEntry.query.filter_by(user_id=user.id).delete()
    reviews.delete_reviews_for(user_id=user.id)
    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted by %s (%d open order(s) released)", user_id, admin.id, released)

    result = Result.success(f"User {email} deleted.", released_orders=released)
    warning = try_send_email(
        email,
        "Your Book Nook account has been deleted",
        f"<p>Hello {name},</p><p>Your account and its order history have been removed.</p>",
        "The account was deleted, but the notice email could not be sent.",
    )
    if warning:
        result.warnings.append(warning)
    return result
