"""Storefront service layer entry point."""

from .account_service import AccountService, Identity
from .audit_log import AuditLogger
from .inventory_service import InventoryService
from .order_service import OrderService, on_payment_verified
from .payment_gateway import PaymentGateway
from .report_service import ReportService
from .sms_gateway import SmsGateway
from .verification_ledger import VerificationLedger

__all__ = [
    "AccountService",
    "Identity",
    "AuditLogger",
    "InventoryService",
    "OrderService",
    "on_payment_verified",
    "PaymentGateway",
    "ReportService",
    "SmsGateway",
    "VerificationLedger",
]
