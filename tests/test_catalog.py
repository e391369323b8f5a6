"""Tests for catalog browsing."""

from datetime import timedelta
from decimal import Decimal

import pytest

import catalog
from core import STATUS_CANCELLED


@pytest.fixture
def shelf(make_book):
    return {
        "sapiens": make_book(title="Sapiens", author="Yuval Noah Harari", category="Non-Fiction",
                             price="9.99", quantity=20, isbn="9780062316097"),
        "caroline": make_book(title="Caroline", author="Neil Gaiman", category="Fiction",
                              price="8.99", quantity=0),
        "tollbooth": make_book(title="The Phantom Tollbooth", author="Norton Juster", category="Fiction",
                               price="8.49", quantity=3),
    }


def titles(result):
    assert result.ok, result.message
    return [b["title"] for b in result.data["books"]]


class TestBrowse:
    def test_default_sort_by_title(self, shelf, now):
        assert titles(catalog.browse(now=now)) == ["Caroline", "Sapiens", "The Phantom Tollbooth"]

    def test_search_title_author_isbn(self, shelf, now):
        assert titles(catalog.browse(search="gaiman", now=now)) == ["Caroline"]
        assert titles(catalog.browse(search="PHANTOM", now=now)) == ["The Phantom Tollbooth"]
        assert titles(catalog.browse(search="9780062316097", now=now)) == ["Sapiens"]

    def test_category_and_author(self, shelf, now):
        assert titles(catalog.browse(category="fiction", now=now)) == ["Caroline", "The Phantom Tollbooth"]
        assert titles(catalog.browse(author="juster", now=now)) == ["The Phantom Tollbooth"]

    def test_availability(self, shelf, now):
        assert titles(catalog.browse(availability="unavailable", now=now)) == ["Caroline"]
        assert "Caroline" not in titles(catalog.browse(availability="available", now=now))

    def test_price_range_and_sort(self, shelf, now):
        result = catalog.browse(min_price=Decimal("8.50"), max_price=Decimal("9.50"), sort="price", now=now)
        assert titles(result) == ["Caroline"]
        assert titles(catalog.browse(sort="price", now=now)) == ["The Phantom Tollbooth", "Caroline", "Sapiens"]

    def test_deals_shows_running_discounts(self, shelf, make_discount, now):
        make_discount(shelf["sapiens"], "0.2", now - timedelta(days=1), now + timedelta(days=1), on_sale=True)
        make_discount(shelf["caroline"], "0.2", now + timedelta(days=1), now + timedelta(days=2))

        result = catalog.browse(category="deals", now=now)
        assert titles(result) == ["Sapiens"]
        entry = result.data["books"][0]
        assert entry["discounted_price"] == "7.99"
        assert entry["on_sale"] is True

    def test_popularity(self, shelf, make_user, make_order, now):
        user = make_user()
        make_order(user, shelf["tollbooth"], now, quantity=3)
        make_order(user, shelf["sapiens"], now, quantity=1)
        make_order(user, shelf["caroline"], now - timedelta(hours=1), quantity=9,
                   status=STATUS_CANCELLED, is_cancelled=True)

        assert titles(catalog.browse(sort="popularity", now=now)) == ["The Phantom Tollbooth", "Sapiens", "Caroline"]

    def test_pagination(self, shelf, now):
        result = catalog.browse(page=2, per_page=2, now=now)
        assert titles(result) == ["The Phantom Tollbooth"]
        assert result.data["total"] == 3
        assert result.data["pages"] == 2

    @pytest.mark.parametrize("kwargs", [
        {"sort": "rating"},
        {"availability": "soon"},
        {"page": 0},
        {"per_page": 500},
        {"min_price": Decimal("10"), "max_price": Decimal("5")},
    ])
    def test_bad_parameters(self, shelf, now, kwargs):
        assert catalog.browse(now=now, **kwargs).kind == "validation"


class TestBookDetail:
    def test_detail(self, shelf, now):
        result = catalog.book_detail(shelf["sapiens"].id, now)
        assert result.ok
        assert result.data["book"]["in_stock"] == 20
        assert result.data["reviews"] == []
        assert result.data["average_rating"] is None

    def test_missing(self, app, now):
        assert catalog.book_detail(777, now).kind == "not_found"
