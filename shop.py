# shop.py
from flask import Blueprint, jsonify, request, session
from decimal import Decimal, InvalidOperation

import backoffice
import cart
import catalog
import orders
import reviews
from auth import current_user, role_required
from core import User, CATEGORY_ORDER, ROLE_USER, text
from errors import Result, ValidationError, respond

shop_bp = Blueprint("shop", __name__)

# --- Helpers (request parsing shared with the staff and admin blueprints) ---
def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None  # arrays and scalars count as no body

def params():
    """JSON object body when one was sent, form fields otherwise."""
    return json_body() or request.form

def to_int(value, default=None):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return None  # services reject non-integers with a validation message

def list_param(name):
    data = json_body()
    if data is not None:
        value = data.get(name) or []
        return value if isinstance(value, list) else [value]
    return request.form.getlist(name)

def flag(value):
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "on", "yes")

def price_arg(name):
    raw = request.args.get(name, "").strip()
    if not raw:
        return None
    try:
        value = Decimal(raw)
    except InvalidOperation:
        value = None
    if value is None or not value.is_finite():
        raise ValueError(f"Invalid {name.replace('_', ' ')}.")
    return value

# --- Routes: Storefront ---
@shop_bp.route("/")
def index():
    try:
        min_price = price_arg("min_price")
        max_price = price_arg("max_price")
    except ValueError as exc:
        return respond(Result.failure(ValidationError(str(exc))))
    result = catalog.browse(
        search=request.args.get("q", ""),
        category=request.args.get("category", "all"),
        author=request.args.get("author", ""),
        availability=request.args.get("availability", "all"),
        min_price=min_price,
        max_price=max_price,
        sort=request.args.get("sort", "title"),
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 12, type=int),
    )
    result.data["categories"] = CATEGORY_ORDER
    return respond(result)

@shop_bp.route("/category/<category>")
def category(category):
    return respond(catalog.browse(category=category, sort=request.args.get("sort", "title")))

@shop_bp.route("/books/<int:book_id>")
def book_detail(book_id):
    return respond(catalog.book_detail(book_id))

@shop_bp.route("/announcements")
def announcements():
    return jsonify(success=True, announcements=backoffice.active_announcements())

# --- Routes: Cart ---
@shop_bp.route("/cart")
@role_required()
def cart_view(user):
    return respond(cart.view_cart(user))

@shop_bp.route("/cart/count")
@role_required()
def cart_count(user):
    return jsonify(success=True, count=cart.cart_count(user.id))

@shop_bp.route("/cart/add/<int:book_id>", methods=["POST"])
@role_required()
def add_to_cart(user, book_id):
    return respond(cart.add_or_merge(user, book_id, to_int(params().get("quantity"), 1)))

@shop_bp.route("/cart/update/<int:book_id>", methods=["POST"])
@role_required()
def update_cart(user, book_id):
    return respond(cart.update_quantity(user, book_id, to_int(params().get("quantity"))))

@shop_bp.route("/cart/remove/<int:book_id>", methods=["POST"])
@role_required()
def remove(user, book_id):
    return respond(cart.remove(user, book_id))

@shop_bp.route("/cart/item/<int:book_id>")
@role_required()
def cart_item(user, book_id):
    return respond(cart.cart_entry(user, book_id))

# --- Routes: Wishlist ---
@shop_bp.route("/wishlist")
@role_required()
def wishlist(user):
    return respond(cart.view_wishlist(user))

@shop_bp.route("/wishlist/toggle/<int:book_id>", methods=["POST"])
@role_required()
def toggle_wishlist(user, book_id):
    return respond(cart.toggle_wishlist(user, book_id))

@shop_bp.route("/wishlist/remove/<int:book_id>", methods=["POST"])
@role_required()
def remove_from_wishlist(user, book_id):
    return respond(cart.remove_from_wishlist(user, book_id))

# --- Routes: Checkout and orders ---
@shop_bp.route("/checkout", methods=["GET", "POST"])
@role_required()
def checkout(user):
    if request.method == "POST":
        return respond(orders.confirm_checkout(user))
    return respond(orders.checkout_view(user))

@shop_bp.route("/orders")
@role_required()
def my_orders(user):
    return respond(orders.my_orders(user))

@shop_bp.route("/orders/cancel", methods=["POST"])
@role_required()
def cancel_order(user):
    return respond(orders.cancel_order(user, params().get("order", "")))

@shop_bp.route("/orders/delete", methods=["POST"])
@role_required()
def delete_order(user):
    return respond(orders.delete_order(user, params().get("order", "")))

@shop_bp.route("/orders/bulk-cancel", methods=["POST"])
@role_required()
def bulk_cancel(user):
    return respond(orders.bulk_cancel(user, list_param("selected_orders")))

@shop_bp.route("/orders/bulk-delete", methods=["POST"])
@role_required()
def bulk_delete(user):
    return respond(orders.bulk_delete(user, list_param("selected_orders")))

# --- Routes: Reviews ---
@shop_bp.route("/books/<int:book_id>/reviews", methods=["POST"])
@role_required()
def add_review(user, book_id):
    data = params()
    return respond(reviews.create_review(user, book_id, to_int(data.get("rating")), data.get("comment")))

@shop_bp.route("/books/<int:book_id>/reviews/<int:parent_id>/replies", methods=["POST"])
@role_required()
def add_reply(user, book_id, parent_id):
    return respond(reviews.create_reply(user, book_id, parent_id, params().get("comment")))

# --- Routes: Session ---
# Identity lives with an external provider; locally the session only remembers who is browsing.
@shop_bp.route("/register", methods=["POST"])
def register():
    data = params()
    result = backoffice.register_shopper(data.get("email"), data.get("first_name"), data.get("last_name"))
    if result.ok:
        session["user_id"] = result.data["user_id"]
    return respond(result)

@shop_bp.route("/login", methods=["POST"])
def login():
    email = text(params().get("email")).lower()
    user = User.query.filter_by(email=email).first() if email else None
    if user is None:
        return jsonify(success=False, error="authentication", message="Unknown email address."), 401
    if user.role != ROLE_USER:
        return jsonify(success=False, error="authentication", message="Back-office accounts sign in at /admin/login."), 401
    session["user_id"] = user.id
    return jsonify(success=True, message=f"Welcome back, {user.full_name}.", user_id=user.id, role=user.role)

@shop_bp.route("/logout", methods=["GET", "POST"])
def logout():
    session.pop("user_id", None)
    return jsonify(success=True, message="Logged out.")

@shop_bp.route("/me")
def me():
    user = current_user()
    if user is None:
        return jsonify(success=True, authenticated=False)
    return jsonify(
        success=True, authenticated=True, user_id=user.id, email=user.email,
        name=user.full_name, role=user.role, cart_count=cart.cart_count(user.id),
    )
