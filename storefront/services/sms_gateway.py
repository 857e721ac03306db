"""
Melipayamak shared-line SMS gateway.

Codes are delivered through pre-approved templates ("body ids"), one per
kind of message; the code itself is the template's only argument.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from ..models.pending_verification import VerificationPurpose
from .logging import log_event


@dataclass
class SmsResult:
    success: bool
    provider_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class SmsGateway:
    """
    SMS provider client:
    - one template per verification purpose (registration, password reset)
    - finite timeout; network failures come back as an unsuccessful SmsResult
    """

    def __init__(
        self,
        api_url: str,
        template_ids: Dict[str, str],
        timeout: float = 10.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url
        self.template_ids = dict(template_ids)
        self.timeout = timeout
        self._http = http or requests.Session()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config) -> "SmsGateway":
        return cls(
            api_url=config.sms_api_url,
            template_ids={
                VerificationPurpose.REGISTRATION: config.sms_register_body_id,
                VerificationPurpose.PASSWORD_RESET: config.sms_password_reset_body_id,
            },
            timeout=config.sms_timeout,
        )

    def send(self, phone: str, code: str, template_kind: str) -> SmsResult:
        body_id = self.template_ids.get(template_kind)
        if body_id is None:
            raise ValueError(f"Unknown SMS template kind: {template_kind}")

        data = {"bodyId": int(body_id), "to": phone, "args": [code]}
        try:
            response = self._http.post(
                self.api_url,
                json=data,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            self.logger.warning("SMS API timeout after %ss", self.timeout)
            log_event("warning", "sms.failed", template=template_kind, error_code="TIMEOUT")
            return SmsResult(success=False, error="SMS provider timed out", error_code="TIMEOUT")
        except requests.exceptions.RequestException as exc:
            self.logger.warning("SMS API request failed: %s", exc)
            log_event("warning", "sms.failed", template=template_kind, error_code="NETWORK_ERROR")
            return SmsResult(success=False, error=str(exc), error_code="NETWORK_ERROR")

        try:
            result = response.json()
        except ValueError:
            result = response.text

        rec_id = result.get("recId") if isinstance(result, dict) else None
        try:
            delivered = rec_id is not None and int(rec_id) > 0
        except (TypeError, ValueError):
            delivered = False
        if response.ok and delivered:
            log_event("info", "sms.sent", template=template_kind, provider_id=str(rec_id))
            return SmsResult(success=True, provider_id=str(rec_id))

        error = _extract_error(result) or f"HTTP {response.status_code}"
        self.logger.warning("SMS API rejected message: %s", error)
        log_event("warning", "sms.failed", template=template_kind, error=error, http_status=response.status_code)
        return SmsResult(success=False, error=error, error_code="SMS_ERROR")


def _extract_error(result) -> Optional[str]:
    # the provider reports errors under different keys depending on the failure
    if isinstance(result, dict):
        for key in ("status", "message", "error"):
            if result.get(key):
                return str(result[key])
        return None
    if isinstance(result, str) and result.strip():
        return result.strip()[:200]
    return None
