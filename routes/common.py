"""Shared helpers for the API blueprints: component lookup, guards, errors."""

from __future__ import annotations

from functools import wraps
from typing import Any, Dict

from flask import current_app, g, jsonify, request

from storefront.errors import Forbidden, InvalidToken, StorefrontError
from storefront.services.logging import log_event


def _components() -> Dict[str, Any]:
    return current_app.extensions["storefront_components"]


def _config():
    return current_app.config["STOREFRONT_CONFIG"]


def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _client_ip() -> str:
    return request.remote_addr or "unknown"


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidToken("Authentication token is missing")
    return token.strip()


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        g.identity = _components()["account_service"].authenticate(_bearer_token())
        return view(*args, **kwargs)

    return wrapper


def admin_required(view):
    @login_required
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not g.identity.is_admin:
            raise Forbidden("Administrator access is required")
        return view(*args, **kwargs)

    return wrapper


def rate_limited(group: str):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            _components()["rate_limiter"].hit(group, _client_ip())
            return view(*args, **kwargs)

        return wrapper

    return decorator


def handle_storefront_error(err: StorefrontError):
    if err.http_status >= 500:
        log_event("error", "request.failed", path=request.path, code=err.code, error=err.message)
    response = jsonify({"error": err.to_dict()})
    response.status_code = err.http_status
    retry_after = err.details.get("retry_after")
    if retry_after is not None:
        response.headers["Retry-After"] = str(retry_after)
    return response
