"""Pytest fixtures for the bookstore tests."""

from datetime import datetime
from decimal import Decimal
import uuid

import pytest

from claims import new_code
from core import (
    create_app, db, Book, DiscountPeriod, Order, User,
    ROLE_USER, STATUS_PLACED,
)


@pytest.fixture
def app():
    """App on an in-memory database with mail captured, context pushed."""
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "MAIL_SUPPRESS_SEND": True,
        "MAIL_DEFAULT_SENDER": "shop@example.com",
        "SEED_DATA": False,
        "BACKOFFICE_PASSWORD": "letmein",
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def now():
    return datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def outbox(app):
    return app.extensions["mail_outbox"]


@pytest.fixture
def events(app):
    """Every broadcast message published while the test runs."""
    received = []
    app.extensions["broadcaster"].subscribe(received.append)
    return received


@pytest.fixture
def make_user(app):
    def _make(email=None, role=ROLE_USER, first_name="Test", last_name="Reader"):
        user = User(
            id=str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            first_name=first_name,
            last_name=last_name,
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_book(app):
    def _make(title="A Book", price="10.00", quantity=10, category="Fiction", author="Some Author", **extra):
        book = Book(
            slug=f"{'-'.join(title.lower().split())}-{uuid.uuid4().hex[:6]}",
            title=title,
            author=author,
            category=category,
            price=Decimal(price),
            quantity=quantity,
            **extra,
        )
        db.session.add(book)
        db.session.commit()
        return book
    return _make


@pytest.fixture
def make_discount(app):
    def _make(book, fraction, starts_at, expires_at, on_sale=False):
        period = DiscountPeriod(
            book_id=book.id,
            fraction=Decimal(fraction),
            starts_at=starts_at,
            expires_at=expires_at,
            on_sale=on_sale,
        )
        db.session.add(period)
        db.session.commit()
        return period
    return _make


@pytest.fixture
def make_order(app):
    """Insert an order row directly, bypassing checkout and stock."""
    def _make(user, book, ordered_at, quantity=1, total="10.00", status=STATUS_PLACED,
              is_cancelled=False, is_fulfilled=False):
        order = Order(
            user_id=user.id,
            book_id=book.id,
            ordered_at=ordered_at,
            quantity=quantity,
            total_price=Decimal(total),
            claim_code=new_code(),
            status=status,
            is_cancelled=is_cancelled,
            is_fulfilled=is_fulfilled,
        )
        db.session.add(order)
        db.session.commit()
        return order
    return _make


@pytest.fixture
def login(client):
    """Put a user id in the test client's session."""
    def _login(user):
        with client.session_transaction() as sess:
            sess["user_id"] = user.id
    return _login


@pytest.fixture
def stock(app):
    """Read a book's on-hand count straight from the database."""
    def _stock(book):
        db.session.expire_all()
        return db.session.get(Book, book.id).quantity
    return _stock
