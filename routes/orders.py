"""Cart validation, checkout and order administration endpoints."""

from __future__ import annotations

from datetime import datetime, time

from flask import Blueprint, g, jsonify, request

from storefront.errors import ValidationFailed
from storefront.utils.validators import (
    parse_date,
    parse_optional_int,
    validate_cart_items,
    validate_order_status,
    validate_payment_method,
    validate_shipping_address,
)

from .common import _components, _payload, admin_required, login_required


orders_bp = Blueprint("storefront_orders", __name__, url_prefix="/api/orders")


def _orders():
    return _components()["order_service"]


@orders_bp.post("/validate-cart")
def validate_cart():
    items = validate_cart_items(_payload().get("items"))
    return jsonify(_orders().validate_cart(items))


@orders_bp.post("")
@login_required
def create_order():
    payload = _payload()
    notes = payload.get("notes")
    if notes is not None and (not isinstance(notes, str) or len(notes) > 1000):
        raise ValidationFailed({"notes": "notes must be text of at most 1000 characters"})
    request_id = request.headers.get("Idempotency-Key") or payload.get("request_id")
    order = _orders().create_order(
        user_id=g.identity.user_id,
        items=validate_cart_items(payload.get("items")),
        shipping_address=validate_shipping_address(payload.get("shipping_address")),
        payment_method=validate_payment_method(payload.get("payment_method", "online")),
        notes=notes,
        request_id=str(request_id)[:128] if request_id else None,
    )
    return jsonify({"order": order}), 201


@orders_bp.get("")
@login_required
def list_orders():
    args = request.args
    date_from = parse_date(args.get("date_from"), "date_from")
    date_to = parse_date(args.get("date_to"), "date_to")
    status = args.get("status")
    result = _orders().list_orders(
        user_id=g.identity.user_id,
        is_admin=g.identity.is_admin,
        owner_id=args.get("user_id"),
        status=validate_order_status(status) if status else None,
        date_from=datetime.combine(date_from, time.min) if date_from else None,
        date_to=datetime.combine(date_to, time.max) if date_to else None,
        min_amount=parse_optional_int(args.get("min_amount"), "min_amount"),
        max_amount=parse_optional_int(args.get("max_amount"), "max_amount"),
        page=args.get("page", 1),
        limit=args.get("limit", 10),
        sort=args.get("sort", "createdAt-desc"),
    )
    return jsonify(result)


@orders_bp.get("/<order_id>")
@login_required
def get_order(order_id: str):
    order = _orders().get_order(order_id, user_id=g.identity.user_id, is_admin=g.identity.is_admin)
    return jsonify({"order": order})


@orders_bp.put("/<order_id>/status")
@admin_required
def update_status(order_id: str):
    payload = _payload()
    tracking_number = payload.get("tracking_number")
    if tracking_number is not None and not isinstance(tracking_number, str):
        raise ValidationFailed({"tracking_number": "tracking number must be text"})
    order = _orders().update_order_status(
        order_id=order_id,
        new_status=validate_order_status(payload.get("status")),
        actor_id=g.identity.user_id,
        tracking_number=tracking_number,
    )
    return jsonify({"order": order})


@orders_bp.get("/stats/sales")
@admin_required
def sales_statistics():
    return jsonify(_components()["report_service"].get_sales_statistics(request.args.get("period", "week")))
