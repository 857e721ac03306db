import re
from datetime import date
from typing import Any, Dict, List, Optional

from ..errors import ValidationFailed
from ..models.order import OrderStatus, PaymentMethod

PHONE_RE = re.compile(r"^09\d{9}$")
POSTAL_CODE_RE = re.compile(r"^\d{10}$")
CODE_RE = re.compile(r"^\d{6}$")

MAX_LINE_QUANTITY = 100


def ensure_positive_int(value: Any, field: str, maximum: Optional[int] = None) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise ValidationFailed({field: "must be an integer"})
    try:
        v = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed({field: "must be an integer"})
    if isinstance(value, bool) or v < 1:
        raise ValidationFailed({field: "must be >= 1"})
    if maximum is not None and v > maximum:
        raise ValidationFailed({field: f"must be <= {maximum}"})
    return v


def _text(payload: Dict, key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def validate_phone(value: Any, field: str = "phone") -> str:
    phone = value.strip() if isinstance(value, str) else ""
    if not PHONE_RE.match(phone):
        raise ValidationFailed({field: "phone must look like 09123456789"})
    return phone


def validate_code(value: Any) -> str:
    code = value.strip() if isinstance(value, str) else str(value or "")
    if not CODE_RE.match(code):
        raise ValidationFailed({"code": "verification code must be 6 digits"})
    return code


def validate_password(value: Any, field: str = "password") -> str:
    if not isinstance(value, str) or len(value) < 6:
        raise ValidationFailed({field: "password must be at least 6 characters"})
    return value


def validate_name(value: Any, field: str) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if len(name) < 2 or len(name) > 50:
        raise ValidationFailed({field: "must be between 2 and 50 characters"})
    return name


def validate_cart_items(items: Any) -> List[Dict]:
    """Normalize ``[{id|product_id|product, quantity, accessories?}]``."""
    if not isinstance(items, list) or not items:
        raise ValidationFailed({"items": "at least one cart item is required"})
    normalized = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationFailed({f"items[{idx}]": "cart item must be an object"})
        product_id = item.get("product_id") or item.get("id") or item.get("product")
        if not product_id or not isinstance(product_id, str):
            raise ValidationFailed({f"items[{idx}].product_id": "product id is required"})
        quantity = ensure_positive_int(item.get("quantity"), f"items[{idx}].quantity", MAX_LINE_QUANTITY)

        accessories = []
        raw_accessories = item.get("accessories") or []
        if not isinstance(raw_accessories, list):
            raise ValidationFailed({f"items[{idx}].accessories": "accessories must be a list"})
        for a_idx, acc in enumerate(raw_accessories):
            field = f"items[{idx}].accessories[{a_idx}]"
            if not isinstance(acc, dict) or not (acc.get("accessory_id") or acc.get("accessoryId")):
                raise ValidationFailed({field: "accessory id is required"})
            accessories.append(
                {
                    "accessory_id": str(acc.get("accessory_id") or acc.get("accessoryId")),
                    "quantity": ensure_positive_int(acc.get("quantity", 1), f"{field}.quantity", MAX_LINE_QUANTITY),
                }
            )
        normalized.append({"product_id": product_id, "quantity": quantity, "accessories": accessories})
    return normalized


def validate_shipping_address(address: Any) -> Dict:
    if not isinstance(address, dict):
        raise ValidationFailed({"shipping_address": "shipping address is required"})
    errors = {}
    name = _text(address, "name")
    if not 2 <= len(name) <= 100:
        errors["shipping_address.name"] = "recipient name must be between 2 and 100 characters"
    phone = _text(address, "phone")
    if not PHONE_RE.match(phone):
        errors["shipping_address.phone"] = "phone must look like 09123456789"
    street = _text(address, "street")
    if not 5 <= len(street) <= 500:
        errors["shipping_address.street"] = "street must be between 5 and 500 characters"
    city = _text(address, "city")
    if not city:
        errors["shipping_address.city"] = "city is required"
    state = _text(address, "state")
    if not state:
        errors["shipping_address.state"] = "state is required"
    postal_code = _text(address, "postal_code") or _text(address, "postalCode")
    if postal_code and not POSTAL_CODE_RE.match(postal_code):
        errors["shipping_address.postal_code"] = "postal code must be 10 digits"
    if errors:
        raise ValidationFailed(errors)
    return {
        "name": name,
        "phone": phone,
        "street": street,
        "city": city,
        "state": state,
        "postal_code": postal_code or None,
    }


def validate_payment_method(value: Any) -> str:
    method = value.strip() if isinstance(value, str) else ""
    if method not in PaymentMethod.ALL:
        raise ValidationFailed({"payment_method": f"must be one of {', '.join(PaymentMethod.ALL)}"})
    return method


def validate_order_status(value: Any) -> str:
    status = value.strip() if isinstance(value, str) else ""
    if status not in OrderStatus.ALL:
        raise ValidationFailed({"status": f"must be one of {', '.join(OrderStatus.ALL)}"})
    return status


def parse_date(value: Any, field: str) -> Optional[date]:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationFailed({field: "must be a date like 2024-01-31"})


def parse_optional_int(value: Any, field: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed({field: "must be an integer"})
