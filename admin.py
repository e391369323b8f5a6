# admin.py
from flask import Blueprint, current_app, jsonify, session
import hmac
import logging

import backoffice
from auth import role_required
from core import Book, TimedAnnouncement, User, CATEGORY_ORDER, ROLE_ADMIN, ROLE_STAFF, text
from errors import respond
from shop import flag, params

admin_bp = Blueprint("admin", __name__)
logger = logging.getLogger(__name__)

@admin_bp.route("/login", methods=["POST"])
def admin_login():
    data = params()
    email = text(data.get("email")).lower()
    pwd = str(data.get("password") or "")
    expected = current_app.config["BACKOFFICE_PASSWORD"]
    user = User.query.filter_by(email=email).first() if email else None
    if user is None or user.role not in (ROLE_STAFF, ROLE_ADMIN) or not hmac.compare_digest(pwd.encode(), expected.encode()):
        logger.warning("Back-office login refused for %r", email)
        return jsonify(success=False, error="authentication", message="Incorrect email or password."), 401
    session["user_id"] = user.id
    return jsonify(success=True, message="Logged in.", user_id=user.id, role=user.role)

@admin_bp.route("/logout")
def admin_logout():
    session.pop("user_id", None)
    return jsonify(success=True, message="Logged out.")

# --- Books ---
@admin_bp.route("/")
@role_required(ROLE_ADMIN)
def admin(user):
    books = Book.query.order_by(Book.category, Book.title).all()
    return jsonify(
        success=True,
        categories=CATEGORY_ORDER,
        books=[
            {
                "id": b.id,
                "slug": b.slug,
                "title": b.title,
                "author": b.author,
                "category": b.category,
                "price": str(b.price),
                "quantity": b.quantity,
                "discount": backoffice.discount_for(b.id),
            }
            for b in books
        ],
    )

def book_form():
    data = params()
    return dict(
        title=data.get("title"),
        author=data.get("author"),
        category=data.get("category"),
        price=data.get("price", ""),
        quantity=data.get("quantity", 0),
        slug=data.get("slug"),
        isbn=data.get("isbn"),
        image=data.get("image"),
    )

@admin_bp.route("/new", methods=["POST"])
@role_required(ROLE_ADMIN)
def admin_new(user):
    return respond(backoffice.create_book(**book_form()))

@admin_bp.route("/edit/<int:book_id>", methods=["POST"])
@role_required(ROLE_ADMIN)
def admin_edit(user, book_id):
    return respond(backoffice.update_book(book_id, **book_form()))

@admin_bp.route("/delete/<int:book_id>", methods=["POST"])
@role_required(ROLE_ADMIN)
def admin_delete(user, book_id):
    return respond(backoffice.delete_book(book_id))

@admin_bp.route("/discount/<int:book_id>", methods=["POST"])
@role_required(ROLE_ADMIN)
def admin_discount(user, book_id):
    data = params()
    return respond(backoffice.set_discount(
        book_id,
        data.get("percentage", "0"),
        data.get("starts_at"),
        data.get("expires_at"),
        flag(data.get("on_sale")),
    ))

# --- Announcements ---
@admin_bp.route("/announcements")
@role_required(ROLE_ADMIN)
def announcements(user):
    notices = TimedAnnouncement.query.order_by(TimedAnnouncement.starts_at.desc()).all()
    return jsonify(success=True, announcements=[backoffice.announcement_to_dict(n) for n in notices])

@admin_bp.route("/announcements/new", methods=["POST"])
@role_required(ROLE_ADMIN)
def announcement_new(user):
    data = params()
    return respond(backoffice.create_announcement(
        data.get("title"), data.get("message"), data.get("starts_at"), data.get("expires_at"),
    ))

@admin_bp.route("/announcements/edit/<int:notice_id>", methods=["POST"])
@role_required(ROLE_ADMIN)
def announcement_edit(user, notice_id):
    data = params()
    return respond(backoffice.update_announcement(
        notice_id, data.get("title"), data.get("message"), data.get("starts_at"), data.get("expires_at"),
    ))

@admin_bp.route("/announcements/delete/<int:notice_id>", methods=["POST"])
@role_required(ROLE_ADMIN)
def announcement_delete(user, notice_id):
    return respond(backoffice.delete_announcement(notice_id))

@admin_bp.route("/announcements/send", methods=["POST"])
@role_required(ROLE_ADMIN)
def announcement_send(user):
    return respond(backoffice.send_announcement(params().get("message")))

# --- Users ---
@admin_bp.route("/users")
@role_required(ROLE_ADMIN)
def users(user):
    return jsonify(success=True, users=backoffice.list_users())

@admin_bp.route("/users/staff", methods=["POST"])
@role_required(ROLE_ADMIN)
def create_staff(user):
    data = params()
    return respond(backoffice.create_staff(data.get("email"), data.get("first_name"), data.get("last_name")))

@admin_bp.route("/users/notice/<user_id>", methods=["POST"])
@role_required(ROLE_ADMIN)
def deletion_notice(user, user_id):
    return respond(backoffice.send_deletion_notice(user, user_id, params().get("message")))

@admin_bp.route("/users/cancel-deletion/<user_id>", methods=["POST"])
@role_required(ROLE_ADMIN)
def cancel_deletion(user, user_id):
    return respond(backoffice.cancel_deletion(user, user_id))

@admin_bp.route("/users/delete/<user_id>", methods=["POST"])
@role_required(ROLE_ADMIN)
def delete_user(user, user_id):
    return respond(backoffice.delete_user(user, user_id))
