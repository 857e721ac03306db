from .base import Base
from .activity_log import ActivityLog
from .order import Order, OrderStatus, PaymentMethod, PaymentStatus
from .pending_verification import PendingVerification, VerificationPurpose
from .product import Product
from .user import RefreshToken, User

__all__ = [
    "Base",
    "ActivityLog",
    "Order",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "PendingVerification",
    "VerificationPurpose",
    "Product",
    "RefreshToken",
    "User",
]
