from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text, func
from .base import Base


class OrderStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    ALL = (PENDING, CONFIRMED, PROCESSING, SHIPPED, DELIVERED, CANCELLED)
    FULFILLED = (CONFIRMED, PROCESSING, SHIPPED, DELIVERED)


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    ALL = (PENDING, PAID, FAILED, REFUNDED)


class PaymentMethod:
    ONLINE = "online"
    COD = "cod"

    ALL = (ONLINE, COD)


class Order(Base):
    __tablename__ = "order"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    # [{product_id, name, quantity, price}], price snapshot taken at creation
    items = Column(JSON, nullable=False)
    total_amount = Column(Integer, nullable=False)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING)
    payment_status = Column(String(32), nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(String(16), nullable=False, default=PaymentMethod.ONLINE)
    shipping_address = Column(JSON, nullable=False)
    notes = Column(Text, nullable=True)
    tracking_number = Column(String(64), nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    payment_authority = Column(String(64), nullable=True, unique=True)
    # client idempotency key, one order per key
    request_id = Column(String(128), nullable=True, unique=True)
    payment_ref_id = Column(String(64), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    stock_reserved = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
