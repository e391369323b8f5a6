"""Tests for the storefront, staff and admin blueprints."""

import backoffice
from core import db, Order, ROLE_ADMIN, ROLE_STAFF, STATUS_PLACED, STATUS_RECEIVED, utcnow


class TestSession:
    def test_anonymous_cart_requires_login(self, client):
        response = client.get("/cart")
        assert response.status_code == 401
        assert response.get_json()["success"] is False

    def test_login_by_email(self, client, make_user):
        user = make_user(email="reader@example.com")
        response = client.post("/login", data={"email": "Reader@Example.com"})
        assert response.status_code == 200
        assert client.get("/me").get_json()["user_id"] == user.id

    def test_back_office_accounts_use_admin_login(self, client, make_user):
        make_user(email="desk@example.com", role=ROLE_STAFF)
        assert client.post("/login", data={"email": "desk@example.com"}).status_code == 401

    def test_register_signs_in(self, client):
        response = client.post("/register", json={"email": "new@example.com", "first_name": "New"})
        assert response.status_code == 200
        assert client.get("/me").get_json()["email"] == "new@example.com"

    def test_logout(self, client, make_user, login):
        login(make_user())
        client.get("/logout")
        assert client.get("/me").get_json()["authenticated"] is False


class TestStorefront:
    def test_browse(self, client, make_book):
        make_book(title="Sapiens", category="Non-Fiction")
        make_book(title="Caroline")
        data = client.get("/?category=Fiction").get_json()
        assert [b["title"] for b in data["books"]] == ["Caroline"]
        assert "Children's" in data["categories"]

    def test_bad_price_filter(self, client):
        response = client.get("/?min_price=cheap")
        assert response.status_code == 400
        assert response.get_json()["error"] == "validation"

    def test_book_detail_missing(self, client):
        assert client.get("/books/404").status_code == 404

    def test_announcements_board(self, client, app):
        backoffice.create_announcement("Hours", "Open late on Friday")
        data = client.get("/announcements").get_json()
        assert [n["title"] for n in data["announcements"]] == ["Hours"]


class TestShopping:
    def test_cart_checkout_and_orders(self, client, make_user, make_book, login, outbox):
        user = make_user()
        book = make_book(title="Sapiens", quantity=4)
        login(user)

        assert client.post(f"/cart/add/{book.id}", data={"quantity": "2"}).status_code == 200
        assert client.get(f"/cart/item/{book.id}").get_json()["quantity"] == 2
        assert client.get("/cart/count").get_json()["count"] == 1
        assert client.get("/checkout").get_json()["checkout"]["total_items"] == 2

        placed = client.post("/checkout")
        assert placed.status_code == 200
        body = placed.get_json()
        assert body["success"] is True
        assert len(body["orders"]) == 1
        assert len(outbox) == 1

        listed = client.get("/orders").get_json()
        assert listed["orders"][0]["status"] == STATUS_PLACED
        assert listed["open_orders"] == 1

        key = listed["orders"][0]["key"]
        cancelled = client.post("/orders/cancel", data={"order": key})
        assert cancelled.get_json()["order"]["is_cancelled"] is True
        assert client.post("/orders/delete", data={"order": key}).status_code == 200

    def test_bad_quantity(self, client, make_user, make_book, login):
        login(make_user())
        response = client.post(f"/cart/add/{make_book().id}", data={"quantity": "lots"})
        assert response.status_code == 400

    def test_add_beyond_stock_is_conflict(self, client, make_user, make_book, login):
        login(make_user())
        response = client.post(f"/cart/add/{make_book(quantity=1).id}", json={"quantity": 3})
        assert response.status_code == 409
        assert "Only 1 copies" in response.get_json()["message"]

    def test_foreign_order_is_forbidden(self, client, make_user, make_book, make_order, login, now):
        order = make_order(make_user(), make_book(), now)
        login(make_user())
        response = client.post("/orders/cancel", json={"order": str(order.key)})
        assert response.status_code == 403

    def test_bulk_cancel_form_list(self, client, make_user, make_book, make_order, login):
        user = make_user()
        book = make_book()
        fresh = make_order(user, book, utcnow())
        login(user)

        response = client.post("/orders/bulk-cancel", data={"selected_orders": [str(fresh.key), "bogus"]})

        body = response.get_json()
        assert response.status_code == 200
        assert body["cancelled"] == 1
        assert len(body["skipped"]) == 1

    def test_array_body_counts_as_empty(self, client, make_user, login):
        login(make_user())
        response = client.post("/orders/bulk-cancel", json=["not", "an", "object"])
        assert response.status_code == 400
        assert response.get_json()["error"] == "validation"
        assert client.post("/login", json=["someone@example.com"]).status_code == 401

    def test_wishlist(self, client, make_user, make_book, login):
        login(make_user())
        book = make_book(title="Caroline")
        assert client.post(f"/wishlist/toggle/{book.id}").get_json()["in_wishlist"] is True
        assert [b["title"] for b in client.get("/wishlist").get_json()["books"]] == ["Caroline"]
        assert client.post(f"/wishlist/remove/{book.id}").status_code == 200
        assert client.post(f"/wishlist/remove/{book.id}").status_code == 404

    def test_review_and_reply(self, client, make_user, make_book, make_order, login, now):
        user, book = make_user(), make_book()
        make_order(user, book, now)
        login(user)

        review = client.post(f"/books/{book.id}/reviews", data={"rating": "5", "comment": "Superb"}).get_json()
        assert review["success"] is True
        reply = client.post(
            f"/books/{book.id}/reviews/{review['review']['id']}/replies", json={"comment": "Indeed"}
        )
        assert reply.status_code == 200

        detail = client.get(f"/books/{book.id}").get_json()
        assert detail["average_rating"] == 5.0
        assert detail["reviews"][0]["replies"][0]["comment"] == "Indeed"


class TestStaffDesk:
    def staff_login(self, client, email):
        return client.post("/admin/login", data={"email": email, "password": "letmein"})

    def test_two_step_fulfillment(self, client, make_user, make_book, make_order, now):
        make_user(email="desk@example.com", role=ROLE_STAFF)
        order = make_order(make_user(), make_book(), now)
        key = order.key
        assert self.staff_login(client, "desk@example.com").status_code == 200

        lookup = client.post("/staff/fulfill", data={"claim_code": order.claim_code, "user_id": order.user_id})
        assert lookup.get_json()["confirmation_step"] is True

        confirm = client.post("/staff/fulfill/confirm", json={"claim_code": order.claim_code, "user_id": order.user_id})
        assert confirm.status_code == 200

        db.session.expire_all()
        assert db.session.get(Order, key.ident).status == STATUS_RECEIVED

    def test_mismatched_user_is_forbidden(self, client, make_user, make_book, make_order, now):
        make_user(email="desk@example.com", role=ROLE_STAFF)
        order = make_order(make_user(), make_book(), now)
        self.staff_login(client, "desk@example.com")

        response = client.post("/staff/fulfill/confirm", data={"claim_code": order.claim_code, "user_id": "someone-else"})
        assert response.status_code == 403

    def test_numeric_fields_are_rejected_cleanly(self, client, make_user, make_book, make_order, now):
        make_user(email="desk@example.com", role=ROLE_STAFF)
        order = make_order(make_user(), make_book(), now)
        self.staff_login(client, "desk@example.com")

        mismatch = client.post("/staff/fulfill", json={"claim_code": order.claim_code, "user_id": 12345})
        assert mismatch.status_code == 403
        unknown = client.post("/staff/fulfill", json={"claim_code": 12345678, "user_id": order.user_id})
        assert unknown.status_code == 404

    def test_shoppers_cannot_fulfil(self, client, make_user, login):
        login(make_user())
        assert client.post("/staff/fulfill", data={"claim_code": "X", "user_id": "Y"}).status_code == 403

    def test_wrong_password(self, client, make_user):
        make_user(email="desk@example.com", role=ROLE_STAFF)
        response = client.post("/admin/login", data={"email": "desk@example.com", "password": "nope"})
        assert response.status_code == 401


class TestAdmin:
    def test_staff_cannot_use_admin(self, client, make_user, login):
        login(make_user(role=ROLE_STAFF))
        assert client.get("/admin/").status_code == 403

    def test_book_and_discount_management(self, client, make_user, login):
        login(make_user(role=ROLE_ADMIN))
        created = client.post("/admin/new", data={
            "title": "Dune", "author": "Frank Herbert", "category": "Fiction", "price": "9.99", "quantity": "4",
        })
        assert created.status_code == 200
        book_id = created.get_json()["book_id"]

        discount = client.post(f"/admin/discount/{book_id}", data={
            "percentage": "20", "starts_at": "2024-01-01T00:00:00", "expires_at": "2030-01-01T00:00:00", "on_sale": "on",
        })
        assert discount.status_code == 200

        listing = client.get("/admin/").get_json()
        dune = next(b for b in listing["books"] if b["id"] == book_id)
        assert dune["discount"]["on_sale"] is True

        assert client.post(f"/admin/delete/{book_id}").status_code == 200

    def test_announcements_and_users(self, client, make_user, login, events):
        login(make_user(role=ROLE_ADMIN))
        assert client.post("/admin/announcements/new", json={"title": "Hi", "message": "Welcome"}).status_code == 200
        assert len(client.get("/admin/announcements").get_json()["announcements"]) == 1
        assert client.post("/admin/announcements/send", data={"message": "Now open"}).status_code == 200
        assert events[-1]["payload"]["message"] == "Now open"

        staff = client.post("/admin/users/staff", data={"email": "clerk@example.com"}).get_json()
        assert staff["success"] is True
        emails = [u["email"] for u in client.get("/admin/users").get_json()["users"]]
        assert "clerk@example.com" in emails
        assert client.post(f"/admin/users/delete/{staff['user_id']}").status_code == 200

    def test_deletion_notice_flow(self, client, make_user, login, outbox):
        login(make_user(role=ROLE_ADMIN))
        reader_id = make_user(email="reader@example.com").id

        notice = client.post(f"/admin/users/notice/{reader_id}", json={"message": "Account under review"})
        assert notice.status_code == 200
        assert outbox[-1]["subject"] == "Deletion notice from Book Nook"

        assert client.post(f"/admin/users/cancel-deletion/{reader_id}").status_code == 200
        assert client.post(f"/admin/users/cancel-deletion/{reader_id}").status_code == 409
