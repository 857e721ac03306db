"""Registration, login and password-reset endpoints."""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from storefront.errors import ValidationFailed
from storefront.utils.validators import (
    validate_code,
    validate_name,
    validate_password,
    validate_phone,
)

from .common import _components, _payload, login_required, rate_limited


auth_bp = Blueprint("storefront_auth", __name__, url_prefix="/api/auth")


def _accounts():
    return _components()["account_service"]


def _required_token(payload, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed({key: "token is required"})
    return value.strip()


@auth_bp.post("/send-sms-code")
@rate_limited("sms")
def send_sms_code():
    payload = _payload()
    result = _accounts().start_registration(
        name=validate_name(payload.get("name"), "name"),
        last_name=validate_name(payload.get("last_name") or payload.get("lastName"), "last_name"),
        password=validate_password(payload.get("password")),
        phone=validate_phone(payload.get("phone")),
    )
    return jsonify({"message": "Verification code sent", **result})


@auth_bp.post("/resend-sms-code")
@rate_limited("sms")
def resend_sms_code():
    payload = _payload()
    result = _accounts().resend_registration_code(validate_phone(payload.get("phone")))
    return jsonify({"message": "Verification code sent", **result})


@auth_bp.post("/verify-sms-code")
@rate_limited("sms")
def verify_sms_code():
    payload = _payload()
    result = _accounts().complete_registration(
        phone=validate_phone(payload.get("phone")),
        code=validate_code(payload.get("code")),
    )
    return jsonify({"message": "Registration completed", **result}), 201


@auth_bp.post("/login")
@rate_limited("login")
def login():
    payload = _payload()
    phone = validate_phone(payload.get("phone"))
    password = payload.get("password")
    if not isinstance(password, str) or not password:
        raise ValidationFailed({"password": "password is required"})
    return jsonify(_accounts().login(phone=phone, password=password))


@auth_bp.post("/refresh")
def refresh():
    return jsonify(_accounts().refresh(_required_token(_payload(), "refresh_token")))


@auth_bp.post("/logout")
@login_required
def logout():
    _accounts().logout(user_id=g.identity.user_id, refresh_token=_payload().get("refresh_token"))
    return jsonify({"message": "Logged out"})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"user": _accounts().get_profile(g.identity.user_id)})


@auth_bp.post("/forgot-password")
@rate_limited("password-reset")
def forgot_password():
    result = _accounts().request_password_reset(validate_phone(_payload().get("phone")))
    return jsonify({"message": "Verification code sent", **result})


@auth_bp.post("/verify-reset-code")
@rate_limited("password-reset")
def verify_reset_code():
    payload = _payload()
    result = _accounts().verify_password_reset(
        phone=validate_phone(payload.get("phone")),
        code=validate_code(payload.get("code")),
    )
    return jsonify(result)


@auth_bp.post("/reset-password")
@rate_limited("password-reset")
def reset_password():
    payload = _payload()
    _accounts().reset_password(
        reset_token=_required_token(payload, "reset_token"),
        new_password=validate_password(payload.get("new_password"), "new_password"),
    )
    return jsonify({"message": "Password has been reset"})


@auth_bp.put("/profile")
@login_required
def update_profile():
    payload = _payload()
    name = payload.get("name")
    last_name = payload.get("last_name", payload.get("lastName"))
    user = _accounts().update_profile(
        g.identity.user_id,
        name=None if name is None else validate_name(name, "name"),
        last_name=None if last_name is None else validate_name(last_name, "last_name"),
    )
    return jsonify({"message": "Profile updated", "user": user})
