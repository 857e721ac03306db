"""Storefront order, checkout and SMS verification API (Flask)."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from flask import Flask

from routes import auth, orders, payment, reports, users
from routes.common import handle_storefront_error
from storefront.config import AppConfig, load_env
from storefront.db.session import build_engine, build_session_factory
from storefront.errors import StorefrontError
from storefront.models import Base
from storefront.services import (
    AccountService,
    AuditLogger,
    InventoryService,
    OrderService,
    PaymentGateway,
    ReportService,
    SmsGateway,
    VerificationLedger,
)
from storefront.services.logging import log_event, set_log_level
from storefront.utils.rate_limit import FixedWindowRateLimiter


def build_components(config: AppConfig, session_factory, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Wire the service graph; ``overrides`` replaces individual pieces (gateways in tests)."""
    overrides = overrides or {}

    def pick(name, factory):
        return overrides[name] if name in overrides else factory()

    sms = pick("sms_gateway", lambda: SmsGateway.from_config(config))
    payments = pick("payment_gateway", lambda: PaymentGateway.from_config(config))
    audit = pick(
        "audit",
        lambda: AuditLogger(session_factory, executor=ThreadPoolExecutor(max_workers=2, thread_name_prefix="audit")),
    )
    inventory = pick("inventory", lambda: InventoryService(session_factory))
    ledger = pick(
        "verification_ledger",
        lambda: VerificationLedger(
            sms,
            session_factory,
            code_ttl=config.verification_code_ttl,
            max_attempts=config.verification_max_attempts,
        ),
    )
    return {
        "sms_gateway": sms,
        "payment_gateway": payments,
        "audit": audit,
        "inventory": inventory,
        "verification_ledger": ledger,
        "account_service": pick(
            "account_service", lambda: AccountService.from_config(ledger, config, session_factory, audit)
        ),
        "order_service": pick(
            "order_service",
            lambda: OrderService(
                inventory,
                payments,
                audit,
                session_factory,
                callback_url=config.payment_callback_url,
            ),
        ),
        "report_service": pick("report_service", lambda: ReportService(audit, session_factory)),
        "rate_limiter": pick("rate_limiter", FixedWindowRateLimiter),
    }


def create_app(config: Optional[AppConfig] = None, components: Optional[Dict[str, Any]] = None) -> Flask:
    config = config or load_env()
    set_log_level(config.log_level)

    engine = build_engine(config.database_url)
    Base.metadata.create_all(engine)
    session_factory = build_session_factory(engine)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["STOREFRONT_CONFIG"] = config
    app.extensions["storefront_components"] = build_components(config, session_factory, components)

    app.register_blueprint(auth.auth_bp)
    app.register_blueprint(orders.orders_bp)
    app.register_blueprint(payment.payment_bp)
    app.register_blueprint(reports.reports_bp)
    app.register_blueprint(users.users_bp)
    app.register_error_handler(StorefrontError, handle_storefront_error)

    log_event("info", "app.started", database=engine.url.render_as_string(hide_password=True))
    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=5000, debug=False)


if __name__ == "__main__":
    main()
