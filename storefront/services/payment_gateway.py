"""
ZarinPal v4 payment gateway client.

Amounts are whole currency units (Toman), the same unit product prices are
stored in. Request creation is never retried, since a retry could issue a
second payment intent; verification is idempotent on the provider side
(code 101 = already verified) and is retried with backoff on transient
failures.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import GatewayUnavailable
from .logging import log_event


CODE_SUCCESS = 100
CODE_ALREADY_VERIFIED = 101

ERROR_MESSAGES = {
    -9: "Validation error",
    -10: "Terminal IP or merchant id is not valid",
    -11: "Merchant id is not active",
    -12: "Too many attempts in a short period",
    -15: "Terminal has been suspended",
    -16: "Merchant level is below silver",
    -50: "Paid amount does not match the expected amount",
    -51: "Payment was not successful",
    -54: "Authority is not valid",
}


@dataclass
class PaymentRequest:
    authority: str
    redirect_url: str


@dataclass
class PaymentVerification:
    success: bool
    ref_id: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None


def _verify_session(retries: int, backoff: float) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoff,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=frozenset({"POST"}),
        raise_on_status=False,
    )
    session.mount("https://", HTTPAdapter(max_retries=retry))
    session.mount("http://", HTTPAdapter(max_retries=retry))
    return session


class PaymentGateway:
    """
    Payment provider client:
    - create_request(): one attempt, returns authority + redirect URL
    - verify(): bounded retry with backoff on 5xx / connection errors
    """

    def __init__(
        self,
        merchant_id: str,
        sandbox: bool = False,
        timeout: float = 15.0,
        verify_retries: int = 3,
        verify_backoff: float = 0.5,
        request_http: Optional[requests.Session] = None,
        verify_http: Optional[requests.Session] = None,
    ) -> None:
        self.merchant_id = merchant_id
        self.sandbox = sandbox
        self.timeout = timeout
        host = "sandbox.zarinpal.com" if sandbox else "api.zarinpal.com"
        self.base_url = f"https://{host}/pg/v4/payment"
        self.start_pay_url = (
            "https://sandbox.zarinpal.com/pg/StartPay/" if sandbox else "https://www.zarinpal.com/pg/StartPay/"
        )
        self._request_http = request_http or requests.Session()
        self._verify_http = verify_http or _verify_session(verify_retries, verify_backoff)
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config) -> "PaymentGateway":
        return cls(
            merchant_id=config.zarinpal_merchant_id,
            sandbox=config.zarinpal_sandbox,
            timeout=config.payment_timeout,
        )

    def _post(self, http: requests.Session, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.merchant_id:
            raise GatewayUnavailable("payment", "merchant id is not configured")
        try:
            response = http.post(
                f"{self.base_url}/{path}",
                json=payload,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise GatewayUnavailable("payment", f"timed out after {self.timeout}s")
        except requests.exceptions.RequestException as exc:
            raise GatewayUnavailable("payment", str(exc))

        if response.status_code >= 500:
            raise GatewayUnavailable("payment", f"HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError:
            raise GatewayUnavailable("payment", f"unreadable response (HTTP {response.status_code})")
        return body if isinstance(body, dict) else {}

    def create_request(
        self,
        amount: int,
        description: str,
        callback_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> PaymentRequest:
        payload = {
            "merchant_id": self.merchant_id,
            "amount": int(amount),
            "description": description,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        body = self._post(self._request_http, "request.json", payload)
        data = body.get("data") or {}
        if data.get("code") == CODE_SUCCESS and data.get("authority"):
            authority = data["authority"]
            self.logger.info("Payment request created, authority=%s", authority)
            return PaymentRequest(authority=authority, redirect_url=f"{self.start_pay_url}{authority}")

        errors = body.get("errors")
        if not isinstance(errors, dict):
            errors = {}
        message = errors.get("message") or "payment request failed"
        self.logger.error("Payment request rejected: %s", message)
        raise GatewayUnavailable("payment", message, error_code=errors.get("code"))

    def verify(self, authority: str, amount: int) -> PaymentVerification:
        payload = {"merchant_id": self.merchant_id, "authority": authority, "amount": int(amount)}
        body = self._post(self._verify_http, "verify.json", payload)
        data = body.get("data") or {}
        code = data.get("code")
        if code in (CODE_SUCCESS, CODE_ALREADY_VERIFIED):
            ref_id = data.get("ref_id")
            log_event("info", "gateway.verify_ok", authority=authority, ref_id=ref_id, code=code)
            return PaymentVerification(success=True, ref_id=str(ref_id) if ref_id is not None else None)

        errors = body.get("errors")
        if not isinstance(errors, dict):
            errors = {}
        if code is None:
            code = errors.get("code")
        try:
            code = int(code) if code is not None else None
        except (TypeError, ValueError):
            code = None
        message = ERROR_MESSAGES.get(code) or errors.get("message")
        self.logger.warning("Payment verification failed, authority=%s code=%s", authority, code)
        return PaymentVerification(
            success=False,
            error_code=code,
            error_message=message or "Payment verification failed",
        )
