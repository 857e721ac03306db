"""Pytest fixtures for storefront tests."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import threading
from datetime import timedelta
from itertools import count
from uuid import uuid4

import pytest
from werkzeug.security import generate_password_hash

from storefront.config import AppConfig
from storefront.db.session import build_engine, build_session_factory
from storefront.models import Base, Order, Product, User
from storefront.services import (
    AccountService,
    AuditLogger,
    InventoryService,
    OrderService,
    ReportService,
    VerificationLedger,
)
from storefront.services.payment_gateway import PaymentRequest, PaymentVerification
from storefront.services.sms_gateway import SmsResult
from storefront.utils.clock import utcnow

ADDRESS = {
    "name": "Sara Ahmadi",
    "phone": "09120000000",
    "street": "12 Valiasr Street",
    "city": "Tehran",
    "state": "Tehran",
    "postal_code": "1234567890",
}


class MovableClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeSms:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, phone, code, template_kind):
        if self.fail:
            return SmsResult(success=False, error="provider rejected", error_code="SMS_ERROR")
        self.sent.append({"phone": phone, "code": code, "template": template_kind})
        return SmsResult(success=True, provider_id=str(len(self.sent)))

    def last_code(self, phone):
        return [m for m in self.sent if m["phone"] == phone][-1]["code"]


class FakePayments:
    def __init__(self):
        self._ids = count(1)
        self._lock = threading.Lock()
        self.requests = []
        self.verify_calls = []
        self.verify_result = PaymentVerification(success=True, ref_id="REF-1")

    def create_request(self, amount, description, callback_url, metadata=None):
        with self._lock:
            authority = f"A{next(self._ids):035d}"
            self.requests.append({"amount": amount, "callback_url": callback_url, "authority": authority})
        return PaymentRequest(authority=authority, redirect_url=f"https://pay.test/StartPay/{authority}")

    def verify(self, authority, amount):
        with self._lock:
            self.verify_calls.append({"authority": authority, "amount": amount})
        return self.verify_result


class FailingSessionFactory:
    """Session factory whose sessions blow up on use."""

    def __call__(self):
        raise RuntimeError("activity store unavailable")


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "storefront.db"


@pytest.fixture
def session_factory(db_path):
    engine = build_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return MovableClock()


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def inventory(session_factory):
    return InventoryService(session_factory)


@pytest.fixture
def audit(session_factory):
    return AuditLogger(session_factory)


@pytest.fixture
def order_service(inventory, payments, audit, session_factory):
    return OrderService(
        inventory,
        payments,
        audit,
        session_factory,
        callback_url=lambda order_id: f"http://shop.test/order-success?orderId={order_id}",
    )


@pytest.fixture
def ledger(sms, session_factory, clock):
    return VerificationLedger(sms, session_factory, clock=clock)


@pytest.fixture
def accounts(ledger, session_factory, audit):
    return AccountService(ledger, "test-secret", session_factory, audit=audit)


@pytest.fixture
def reports(audit, session_factory):
    return ReportService(audit, session_factory)


@pytest.fixture
def add_product(session_factory):
    def _add(price=1000, stock=10, **kwargs):
        product_id = kwargs.pop("id", None) or str(uuid4())
        with session_factory() as session:
            session.add(
                Product(
                    id=product_id,
                    name=kwargs.pop("name", f"Product {product_id[:6]}"),
                    price=price,
                    stock=stock,
                    is_active=kwargs.pop("is_active", True),
                    is_accessory=kwargs.pop("is_accessory", False),
                )
            )
        return product_id

    return _add


@pytest.fixture
def add_user(session_factory):
    def _add(phone="09121111111", password="secret123", role="user", is_active=True, name="Ali"):
        user_id = str(uuid4())
        with session_factory() as session:
            session.add(
                User(
                    id=user_id,
                    name=name,
                    last_name="Rezaei",
                    phone=phone,
                    phone_verified=True,
                    password_hash=generate_password_hash(password),
                    role=role,
                    is_active=is_active,
                )
            )
        return user_id

    return _add


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id):
        with session_factory() as session:
            return session.get(Product, product_id).stock

    return _stock


@pytest.fixture
def load_order(session_factory):
    def _load(order_id):
        with session_factory() as session:
            return session.get(Order, order_id)

    return _load


@pytest.fixture
def app_config(db_path):
    return AppConfig(
        database_url=f"sqlite:///{db_path}",
        secret_key="test-secret",
        log_level="ERROR",
        frontend_url="http://shop.test",
        sms_api_url="http://sms.test/send",
        sms_register_body_id="1",
        sms_password_reset_body_id="2",
        sms_timeout=1.0,
        zarinpal_merchant_id="merchant",
        zarinpal_sandbox=True,
        payment_timeout=1.0,
    )
