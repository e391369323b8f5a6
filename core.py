# core.py
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
import os

# --- DB handle (imported by blueprints and services) ---
db = SQLAlchemy()

# --- Constants / Config shared across modules ---
QUANTITY_DISCOUNT_RATE = Decimal("0.05")     # 5% off when the cart holds 5+ copies
QUANTITY_DISCOUNT_MIN_ITEMS = 5
LOYALTY_DISCOUNT_RATE = Decimal("0.10")      # 10% off for 10+ open orders
LOYALTY_DISCOUNT_MIN_ORDERS = 10
CANCELLATION_WINDOW = timedelta(hours=24)
CLAIM_CODE_LENGTH = 8
CENT = Decimal("0.01")
CATEGORY_ORDER = ["Fiction", "Non-Fiction", "Children's"]

STATUS_PLACED = "Placed"
STATUS_CANCELLED = "Cancelled"
STATUS_RECEIVED = "Received"

ROLE_USER = "User"
ROLE_STAFF = "Staff"
ROLE_ADMIN = "Admin"


def utcnow():
    """Naive UTC timestamp; every datetime column stores UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def text(value):
    """Stripped string form of a submitted field; JSON bodies may carry numbers."""
    return "" if value is None else str(value).strip()


# --- Models ---
class User(db.Model):
    # Profile only; credentials live with the external identity provider.
    id = db.Column(db.String(36), primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    first_name = db.Column(db.String(80), nullable=False, default="")
    last_name = db.Column(db.String(80), nullable=False, default="")
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    deletion_notice_at = db.Column(db.DateTime, nullable=True)  # set while a deletion notice is pending

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip() or self.email


class Book(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(120), unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    author = db.Column(db.String(120), nullable=False)
    category = db.Column(db.String(40), nullable=False)  # Fiction, Non-Fiction, Children's
    price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)  # copies on hand
    isbn = db.Column(db.String(20), nullable=True)
    image = db.Column(db.String(200), nullable=True)  # path in /static
    added_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (db.CheckConstraint("quantity >= 0", name="ck_book_quantity_non_negative"),)

    @property
    def is_available(self):
        return self.quantity > 0


class DiscountPeriod(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("book.id"), nullable=False, index=True)
    fraction = db.Column(db.Numeric(5, 4), nullable=False)  # 0.25 == 25% off
    starts_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    on_sale = db.Column(db.Boolean, nullable=False, default=False)

    def is_active(self, now):
        return self.starts_at <= now <= self.expires_at


class CartEntry(db.Model):
    user_id = db.Column(db.String(36), db.ForeignKey("user.id"), primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("book.id"), primary_key=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    book = db.relationship("Book")


class WishlistEntry(db.Model):
    user_id = db.Column(db.String(36), db.ForeignKey("user.id"), primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("book.id"), primary_key=True)

    book = db.relationship("Book")


@dataclass(frozen=True)
class OrderKey:
    """Identity of an order line: who bought which book, and when."""
    user_id: str
    book_id: int
    ordered_at: datetime

    def __str__(self):
        return f"{self.user_id}|{self.book_id}|{self.ordered_at.isoformat()}"

    @property
    def ident(self):
        return (self.user_id, self.book_id, self.ordered_at)

    @classmethod
    def parse(cls, raw):
        """Parse ``user|book|timestamp``; returns None when malformed."""
        parts = str(raw).split("|")
        if len(parts) != 3 or not parts[0]:
            return None
        try:
            book_id = int(parts[1])
            ordered_at = datetime.fromisoformat(parts[2])
        except ValueError:
            return None
        if ordered_at.tzinfo is not None:
            ordered_at = ordered_at.astimezone(timezone.utc).replace(tzinfo=None)
        return cls(parts[0], book_id, ordered_at)


class Order(db.Model):
    # One row per cart line; identity is (user, book, ordered_at).
    user_id = db.Column(db.String(36), db.ForeignKey("user.id"), primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("book.id"), primary_key=True)
    ordered_at = db.Column(db.DateTime, primary_key=True)
    quantity = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)
    claim_code = db.Column(db.String(CLAIM_CODE_LENGTH), unique=True, nullable=False)
    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    is_fulfilled = db.Column(db.Boolean, nullable=False, default=False)
    fulfilled_at = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PLACED)

    book = db.relationship("Book")
    user = db.relationship("User")

    @property
    def key(self):
        return OrderKey(self.user_id, self.book_id, self.ordered_at)

    @property
    def is_terminal(self):
        return self.is_cancelled or self.status in (STATUS_CANCELLED, STATUS_RECEIVED)

    def is_cancellable(self, now):
        if self.is_cancelled or self.is_fulfilled or self.status != STATUS_PLACED:
            return False
        return now - self.ordered_at <= CANCELLATION_WINDOW

    def to_dict(self, now=None):
        data = {
            "key": str(self.key),
            "user_id": self.user_id,
            "book_id": self.book_id,
            "title": self.book.title if self.book else None,
            "ordered_at": self.ordered_at.isoformat(),
            "quantity": self.quantity,
            "total_price": str(self.total_price),
            "claim_code": self.claim_code,
            "status": self.status,
            "is_cancelled": self.is_cancelled,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "is_fulfilled": self.is_fulfilled,
            "fulfilled_at": self.fulfilled_at.isoformat() if self.fulfilled_at else None,
        }
        if now is not None:
            data["is_cancellable"] = self.is_cancellable(now)
        return data


class Review(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("user.id"), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("book.id"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("review.id"), nullable=True, index=True)
    rating = db.Column(db.Integer, nullable=False, default=0)  # replies carry 0
    comment = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user = db.relationship("User")


class TimedAnnouncement(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    starts_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)


def seed_if_empty(admin_email="admin@example.com"):
    """Seed initial books and the first admin account on first run."""
    if Book.query.count() > 0:
        return
    books = [
        # Children's
        {"slug": "where-the-wild-things-are", "title": "Where the Wild Things are", "author": "Maurice Sendak", "category": "Children's", "price": Decimal("7.99"), "quantity": 12},
        {"slug": "the-very-hungry-caterpillar", "title": "The Very Hungry Caterpillar", "author": "Eric Carle", "category": "Children's", "price": Decimal("7.99"), "quantity": 15},
        # Fiction
        {"slug": "the-phantom-tollbooth", "title": "The Phantom Tollbooth", "author": "Norton Juster", "category": "Fiction", "price": Decimal("8.99"), "quantity": 8},
        {"slug": "caroline", "title": "Caroline", "author": "Neil Gaiman", "category": "Fiction", "price": Decimal("8.99"), "quantity": 10},
        # Non-Fiction
        {"slug": "sapiens", "title": "Sapiens", "author": "Yuval Noah Harari", "category": "Non-Fiction", "price": Decimal("9.99"), "quantity": 20},
        {"slug": "atomic-habits", "title": "Atomic Habits", "author": "James Carter", "category": "Non-Fiction", "price": Decimal("9.99"), "quantity": 20},
    ]
    for b in books:
        db.session.add(Book(**b))
    if User.query.filter_by(email=admin_email).first() is None:
        import uuid
        db.session.add(User(id=str(uuid.uuid4()), email=admin_email, first_name="Store", last_name="Admin", role=ROLE_ADMIN))
    db.session.commit()


def configure_logging(level):
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root.setLevel(level)


def create_app(config=None):
    app = Flask(__name__)

    # --- Config ---
    BASE_DIR = os.path.abspath(os.path.dirname(__file__))
    DB_PATH = os.path.join(BASE_DIR, "bookstore.db")
    app.config.update(
        SECRET_KEY=os.environ.get("SECRET_KEY", "dev-secret-change-me"),
        SQLALCHEMY_DATABASE_URI=os.environ.get("DATABASE_URL", f"sqlite:///{DB_PATH}"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        BACKOFFICE_PASSWORD=os.environ.get("BACKOFFICE_PASSWORD", "admin123"),
        ADMIN_EMAIL=os.environ.get("ADMIN_EMAIL", "admin@example.com"),
        STORE_NAME="Book Nook",
        MAIL_SERVER=os.environ.get("MAIL_SERVER"),
        MAIL_PORT=int(os.environ.get("MAIL_PORT", "587")),
        MAIL_USERNAME=os.environ.get("MAIL_USERNAME"),
        MAIL_PASSWORD=os.environ.get("MAIL_PASSWORD"),
        MAIL_USE_TLS=os.environ.get("MAIL_USE_TLS", "1") == "1",
        MAIL_DEFAULT_SENDER=os.environ.get("MAIL_DEFAULT_SENDER"),
        MAIL_SUPPRESS_SEND=False,
        SEED_DATA=True,
        LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO"),
    )
    if config:
        app.config.update(config)

    configure_logging(app.config["LOG_LEVEL"])
    db.init_app(app)

    from notify import Broadcaster
    app.extensions["broadcaster"] = Broadcaster()
    app.extensions["mail_outbox"] = []

    # Register blueprints (import inside to avoid circular imports)
    from shop import shop_bp
    from staff import staff_bp
    from admin import admin_bp
    app.register_blueprint(shop_bp)          # storefront at /
    app.register_blueprint(staff_bp, url_prefix="/staff")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    # Ensure tables exist at startup
    with app.app_context():
        db.create_all()
        if app.config["SEED_DATA"]:
            seed_if_empty(app.config["ADMIN_EMAIL"])

    return app

