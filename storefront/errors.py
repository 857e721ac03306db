"""Error taxonomy for the storefront core.

Every error carries a stable machine-readable ``code``, a human-readable
message and the HTTP status the web layer should answer with. Extra
fields (remaining attempts, retry-after, field errors) travel in
``details``.
"""

from typing import Dict, Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    code = "error"
    http_status = 500

    def __init__(self, message: str, **details):
        self.message = message
        self.details: Dict = details
        super().__init__(message)

    def to_dict(self) -> Dict:
        payload = {"code": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class NotFound(StorefrontError):
    """Raised when an entity reference is invalid."""

    code = "not_found"
    http_status = 404


class ProductNotFound(NotFound):
    code = "product_not_found"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}", product_id=product_id)


class OrderNotFound(NotFound):
    code = "order_not_found"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Order not found: {reference}")


class Forbidden(StorefrontError):
    """Raised when the caller lacks rights over the entity."""

    code = "forbidden"
    http_status = 403


class InsufficientStock(StorefrontError):
    code = "insufficient_stock"
    http_status = 409

    def __init__(self, product_id: str, requested: int, available: Optional[int] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        msg = f"Insufficient stock for product {product_id}: requested {requested}"
        if available is not None:
            msg = f"{msg}, available {available}"
        super().__init__(msg, product_id=product_id, requested=requested, available=available)


class AlreadyPaid(StorefrontError):
    code = "already_paid"
    http_status = 409

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} has already been paid")


class OrderCancelled(StorefrontError):
    code = "order_cancelled"
    http_status = 409

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} has been cancelled")


class Expired(StorefrontError):
    code = "expired"
    http_status = 400


class AttemptsExhausted(StorefrontError):
    code = "attempts_exhausted"
    http_status = 400


class CodeMismatch(StorefrontError):
    code = "code_mismatch"
    http_status = 400

    def __init__(self, remaining_attempts: int):
        self.remaining_attempts = remaining_attempts
        super().__init__(
            f"Verification code is incorrect, {remaining_attempts} attempt(s) remaining",
            remaining_attempts=remaining_attempts,
        )


class GatewayUnavailable(StorefrontError):
    """Raised when the SMS or payment provider fails or times out."""

    code = "gateway_unavailable"
    http_status = 502

    def __init__(self, gateway: str, reason: str, **details):
        self.gateway = gateway
        self.reason = reason
        super().__init__(f"{gateway} gateway failed: {reason}", gateway=gateway, **details)


class ValidationFailed(StorefrontError):
    code = "validation_failed"
    http_status = 400

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("Submitted data is invalid", errors=errors)


class PhoneAlreadyRegistered(StorefrontError):
    code = "phone_already_registered"
    http_status = 409

    def __init__(self, phone: str):
        super().__init__(f"Phone number {phone} is already registered")


class InvalidCredentials(StorefrontError):
    code = "invalid_credentials"
    http_status = 400

    def __init__(self):
        super().__init__("Phone number or password is incorrect")


class AccountDisabled(StorefrontError):
    code = "account_disabled"
    http_status = 401

    def __init__(self):
        super().__init__("User account is disabled")


class InvalidToken(StorefrontError):
    code = "invalid_token"
    http_status = 401


class TokenExpired(InvalidToken):
    code = "token_expired"


class RateLimited(StorefrontError):
    code = "rate_limited"
    http_status = 429

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__("Too many attempts, please try again later", retry_after=retry_after)
