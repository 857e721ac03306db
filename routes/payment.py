"""Online payment endpoints: start a payment, gateway callback, status."""

from __future__ import annotations

from flask import Blueprint, g, jsonify, redirect, request

from storefront.errors import ValidationFailed

from .common import _components, _config, _payload, login_required


payment_bp = Blueprint("storefront_payment", __name__, url_prefix="/api/payment")

OUTCOME_REDIRECT = {
    "paid": "success",
    "already_paid": "success",
    "failed": "failed",
    "cancelled": "cancelled",
}


def _orders():
    return _components()["order_service"]


@payment_bp.post("/create")
@login_required
def create_payment():
    order_id = _payload().get("order_id") or _payload().get("orderId")
    if not isinstance(order_id, str) or not order_id.strip():
        raise ValidationFailed({"order_id": "order id is required"})
    result = _orders().create_payment_request(order_id=order_id.strip(), user_id=g.identity.user_id)
    return jsonify({"success": True, **result})


@payment_bp.route("/verify", methods=["GET", "POST"])
def verify_payment():
    authority = (request.args.get("Authority") or "").strip()
    if not authority:
        raise ValidationFailed({"Authority": "Authority parameter is required"})
    result = _orders().verify_payment(authority=authority, gateway_status=request.args.get("Status", ""))
    url = _config().payment_result_url(
        result["order_id"],
        OUTCOME_REDIRECT[result["outcome"]],
        error=result.get("error"),
    )
    return redirect(url)


@payment_bp.get("/status/<order_id>")
@login_required
def payment_status(order_id: str):
    return jsonify(_orders().get_payment_status(order_id, user_id=g.identity.user_id))
