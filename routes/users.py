"""Admin user management."""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from storefront.errors import ValidationFailed

from .common import _components, _payload, admin_required


users_bp = Blueprint("storefront_users", __name__, url_prefix="/api/users")


def _accounts():
    return _components()["account_service"]


@users_bp.get("")
@admin_required
def list_users():
    return jsonify({"users": _accounts().list_users()})


@users_bp.put("/<user_id>")
@admin_required
def update_user(user_id: str):
    payload = _payload()
    is_active = payload.get("is_active", payload.get("isActive"))
    if is_active is not None and not isinstance(is_active, bool):
        raise ValidationFailed({"is_active": "must be true or false"})
    role = payload.get("role")
    if role is not None and not isinstance(role, str):
        raise ValidationFailed({"role": "must be a string"})
    user = _accounts().update_user(user_id, actor_id=g.identity.user_id, role=role, is_active=is_active)
    return jsonify({"message": "User updated", "user": user})


@users_bp.delete("/<user_id>")
@admin_required
def delete_user(user_id: str):
    _accounts().delete_user(user_id, actor_id=g.identity.user_id)
    return jsonify({"message": "User deleted"})
