# auth.py
from flask import session, jsonify
from functools import wraps

from core import db, User, ROLE_ADMIN


def current_user():
    """The signed-in user, or None for anonymous visitors."""
    user_id = session.get("user_id")
    if not user_id:
        return None
    return db.session.get(User, user_id)


def has_role(user, *roles):
    if user is None:
        return False
    # Admins may act wherever staff or shoppers can.
    return user.role in roles or user.role == ROLE_ADMIN


def role_required(*roles):
    """Guard a view; the signed-in user is passed in as the first argument."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            user = current_user()
            if user is None:
                return jsonify(success=False, error="authentication", message="Please log in."), 401
            if roles and not has_role(user, *roles):
                return jsonify(success=False, error="authorization", message="You are not allowed to do that."), 403
            return view(user, *args, **kwargs)
        return wrapped
    return decorator
