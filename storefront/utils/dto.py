from datetime import datetime
from typing import Any, Dict, Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def to_order_dto(row: Any) -> Dict:
    return {
        "id": getattr(row, "id", None),
        "user_id": getattr(row, "user_id", None),
        "items": list(getattr(row, "items", None) or []),
        "total_amount": int(getattr(row, "total_amount", 0) or 0),
        "status": getattr(row, "status", None),
        "payment_status": getattr(row, "payment_status", None),
        "payment_method": getattr(row, "payment_method", None),
        "shipping_address": getattr(row, "shipping_address", None) or {},
        "notes": getattr(row, "notes", None),
        "tracking_number": getattr(row, "tracking_number", None),
        "delivered_at": _iso(getattr(row, "delivered_at", None)),
        "payment_ref_id": getattr(row, "payment_ref_id", None),
        "paid_at": _iso(getattr(row, "paid_at", None)),
        "created_at": _iso(getattr(row, "created_at", None)),
    }


def to_payment_status_dto(row: Any) -> Dict:
    return {
        "order_id": getattr(row, "id", None),
        "payment_status": getattr(row, "payment_status", None),
        "order_status": getattr(row, "status", None),
        "payment_method": getattr(row, "payment_method", None),
        "paid_at": _iso(getattr(row, "paid_at", None)),
        "payment_ref_id": getattr(row, "payment_ref_id", None),
    }
