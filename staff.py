# staff.py
from flask import Blueprint

import claims
from auth import role_required
from core import ROLE_STAFF
from errors import respond
from shop import params

staff_bp = Blueprint("staff", __name__)

# Pickup desk: look the order up first, then confirm the hand-over.
@staff_bp.route("/fulfill", methods=["POST"])
@role_required(ROLE_STAFF)
def fulfill_lookup(user):
    data = params()
    return respond(claims.lookup_for_fulfillment(user, data.get("claim_code"), data.get("user_id")))

@staff_bp.route("/fulfill/confirm", methods=["POST"])
@role_required(ROLE_STAFF)
def fulfill_confirm(user):
    data = params()
    return respond(claims.confirm_fulfillment(user, data.get("claim_code"), data.get("user_id")))
