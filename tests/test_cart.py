"""Tests for the cart aggregate and wishlist."""

from sqlalchemy import update

import cart
from core import db, Book, CartEntry, WishlistEntry
from notify import CART_COUNT


def entry_for(user, book):
    db.session.expire_all()
    return db.session.get(CartEntry, (user.id, book.id))


class TestAddOrMerge:
    def test_creates_entry(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=5)
        result = cart.add_or_merge(user, book.id, 2)

        assert result.ok
        assert result.data["quantity"] == 2
        assert result.data["cart_count"] == 1
        assert entry_for(user, book).quantity == 2

    def test_merges_with_existing_entry(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=5)
        cart.add_or_merge(user, book.id, 2)
        result = cart.add_or_merge(user, book.id, 3)

        assert result.ok
        assert entry_for(user, book).quantity == 5
        assert CartEntry.query.filter_by(user_id=user.id).count() == 1

    def test_quantity_below_one_is_clamped(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=5)
        assert cart.add_or_merge(user, book.id, 0).data["quantity"] == 1
        assert cart.add_or_merge(user, book.id, -4).data["quantity"] == 2

    def test_merge_beyond_stock_is_rejected(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=3)
        cart.add_or_merge(user, book.id, 2)
        result = cart.add_or_merge(user, book.id, 2)

        assert not result.ok
        assert result.kind == "conflict"
        assert "Only 3 copies" in result.message
        assert entry_for(user, book).quantity == 2

    def test_out_of_stock(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=0)
        result = cart.add_or_merge(user, book.id, 1)
        assert result.kind == "conflict"
        assert entry_for(user, book) is None

    def test_unknown_book(self, make_user):
        result = cart.add_or_merge(make_user(), 9999, 1)
        assert result.kind == "not_found"
        assert result.status == 404

    def test_non_integer_quantity(self, make_user, make_book):
        result = cart.add_or_merge(make_user(), make_book().id, None)
        assert result.kind == "validation"

    def test_publishes_cart_count(self, make_user, make_book, events):
        user = make_user()
        cart.add_or_merge(user, make_book().id, 1)
        cart.add_or_merge(user, make_book().id, 1)

        counts = [e["payload"]["count"] for e in events if e["channel"] == CART_COUNT]
        assert counts == [1, 2]


class TestUpdateAndRemove:
    def test_update_quantity(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=5)
        cart.add_or_merge(user, book.id, 1)
        result = cart.update_quantity(user, book.id, 4)
        assert result.ok
        assert entry_for(user, book).quantity == 4

    def test_update_requires_entry(self, make_user, make_book):
        result = cart.update_quantity(make_user(), make_book().id, 1)
        assert result.kind == "not_found"

    def test_update_below_one(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=5)
        cart.add_or_merge(user, book.id, 2)
        result = cart.update_quantity(user, book.id, 0)
        assert result.kind == "validation"
        assert entry_for(user, book).quantity == 2

    def test_update_beyond_fresh_stock(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=5)
        cart.add_or_merge(user, book.id, 2)
        db.session.execute(update(Book).where(Book.id == book.id).values(quantity=3))
        db.session.commit()

        result = cart.update_quantity(user, book.id, 4)
        assert result.kind == "conflict"
        assert entry_for(user, book).quantity == 2

    def test_remove(self, make_user, make_book):
        user, book = make_user(), make_book()
        cart.add_or_merge(user, book.id, 1)
        result = cart.remove(user, book.id)
        assert result.ok
        assert result.data["cart_count"] == 0
        assert entry_for(user, book) is None

    def test_remove_missing_entry_is_reported(self, make_user, make_book):
        result = cart.remove(make_user(), make_book().id)
        assert not result.ok
        assert result.kind == "not_found"

    def test_clear_only_named_books(self, make_user, make_book):
        user = make_user()
        keep, drop = make_book(), make_book()
        cart.add_or_merge(user, keep.id, 1)
        cart.add_or_merge(user, drop.id, 1)

        assert cart.clear(user, [drop.id]) == 1
        db.session.commit()
        assert entry_for(user, drop) is None
        assert entry_for(user, keep) is not None


class TestViewCart:
    def test_priced_view(self, make_user, make_book):
        user = make_user()
        cart.add_or_merge(user, make_book(price="10.00", quantity=10).id, 5)
        result = cart.view_cart(user)

        assert result.ok
        assert result.data["cart"]["subtotal"] == "50.00"
        assert result.data["cart"]["final_total"] == "47.50"
        assert result.data["shortages"] == []

    def test_reports_shortages_from_fresh_stock(self, make_user, make_book):
        user, book = make_user(), make_book(quantity=5)
        cart.add_or_merge(user, book.id, 4)
        db.session.execute(update(Book).where(Book.id == book.id).values(quantity=1))
        db.session.commit()

        shortages = cart.view_cart(user).data["shortages"]
        assert shortages == [{"book_id": book.id, "title": book.title, "available": 1}]

    def test_empty_cart(self, make_user):
        result = cart.view_cart(make_user())
        assert result.ok
        assert result.data["cart"]["lines"] == []

    def test_cart_entry_lookup(self, make_user, make_book):
        user, book = make_user(), make_book()
        assert cart.cart_entry(user, book.id).data == {"exists": False, "quantity": 0}
        cart.add_or_merge(user, book.id, 2)
        assert cart.cart_entry(user, book.id).data == {"exists": True, "quantity": 2}


class TestWishlist:
    def test_toggle(self, make_user, make_book):
        user, book = make_user(), make_book()
        assert cart.toggle_wishlist(user, book.id).data["in_wishlist"] is True
        assert WishlistEntry.query.filter_by(user_id=user.id).count() == 1
        assert cart.toggle_wishlist(user, book.id).data["in_wishlist"] is False
        assert WishlistEntry.query.filter_by(user_id=user.id).count() == 0

    def test_view_and_remove(self, make_user, make_book):
        user, book = make_user(), make_book(title="Caroline", price="8.99")
        cart.toggle_wishlist(user, book.id)

        books = cart.view_wishlist(user).data["books"]
        assert [b["title"] for b in books] == ["Caroline"]
        assert books[0]["discounted_price"] == "8.99"

        assert cart.remove_from_wishlist(user, book.id).ok
        assert cart.remove_from_wishlist(user, book.id).kind == "not_found"

    def test_toggle_unknown_book(self, make_user):
        assert cart.toggle_wishlist(make_user(), 12345).kind == "not_found"
