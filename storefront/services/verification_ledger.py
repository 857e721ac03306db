"""Short-lived, code-gated pending records shared by registration and password reset."""

import hmac
import secrets
from datetime import timedelta
from typing import Callable, Dict, Optional
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..db.session import get_session
from ..errors import AttemptsExhausted, CodeMismatch, Expired, GatewayUnavailable, NotFound
from ..models.pending_verification import PendingVerification, VerificationPurpose
from ..utils.clock import utcnow
from .logging import log_event


def generate_code(length: int = 6) -> str:
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


class VerificationLedger:
    """Issue, resend and verify SMS codes keyed by ``(phone, purpose)``.

    Re-issuing a code replaces the previous record, so only the latest code
    is ever valid. Expiry and attempt exhaustion are enforced when a code
    is checked; ``purge_expired`` removes stale rows and backs the
    ``storefront purge-verifications`` command.
    """

    def __init__(
        self,
        sms_gateway,
        session_factory=get_session,
        *,
        code_ttl: int = 600,
        max_attempts: int = 5,
        clock: Callable = utcnow,
        code_generator: Callable[[], str] = generate_code,
    ):
        self._sms = sms_gateway
        self._session_factory = session_factory
        self.code_ttl = code_ttl
        self.max_attempts = max_attempts
        self._clock = clock
        self._generate_code = code_generator

    @staticmethod
    def _check_purpose(purpose: str) -> None:
        if purpose not in VerificationPurpose.ALL:
            raise ValueError(f"Unknown verification purpose: {purpose}")

    def _upsert(self, phone: str, purpose: str, payload: Optional[Dict], code: str) -> None:
        expires_at = self._clock() + timedelta(seconds=self.code_ttl)
        values = {"payload": payload or {}, "code": code, "expires_at": expires_at, "attempts": 0}
        for attempt in range(2):
            try:
                with self._session_factory() as session:
                    result = session.execute(
                        update(PendingVerification)
                        .where(PendingVerification.phone == phone, PendingVerification.purpose == purpose)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        session.add(PendingVerification(id=str(uuid4()), phone=phone, purpose=purpose, **values))
                        session.flush()
                return
            except IntegrityError:
                # a concurrent issue inserted the row first; overwrite it
                if attempt:
                    raise

    def _send(self, phone: str, purpose: str, code: str) -> None:
        result = self._sms.send(phone, code, purpose)
        if result.success:
            log_event("info", "verification.issued", purpose=purpose, provider_id=result.provider_id)
            return
        with self._session_factory() as session:
            # leave a newer code alone if one was issued meanwhile
            session.query(PendingVerification).filter(
                PendingVerification.phone == phone,
                PendingVerification.purpose == purpose,
                PendingVerification.code == code,
            ).delete(synchronize_session=False)
        log_event("warning", "verification.send_failed", purpose=purpose, error=result.error)
        raise GatewayUnavailable("sms", result.error or "message was not delivered", error_code=result.error_code)

    def issue_code(self, phone: str, purpose: str, payload: Optional[Dict] = None) -> Dict:
        self._check_purpose(purpose)
        code = self._generate_code()
        self._upsert(phone, purpose, payload, code)
        self._send(phone, purpose, code)
        return {"expires_in": self.code_ttl}

    def resend_code(self, phone: str, purpose: str) -> Dict:
        self._check_purpose(purpose)
        with self._session_factory() as session:
            record = (
                session.query(PendingVerification)
                .filter(PendingVerification.phone == phone, PendingVerification.purpose == purpose)
                .first()
            )
            if record is None:
                raise NotFound(f"No pending {purpose} request for this phone number")
            payload = dict(record.payload or {})
        return self.issue_code(phone, purpose, payload)

    def verify_code(self, phone: str, code: str, purpose: str) -> Dict:
        """Consume the pending record and return its payload, or raise."""
        self._check_purpose(purpose)
        error = None
        payload: Dict = {}
        with self._session_factory() as session:
            record = (
                session.query(PendingVerification)
                .filter(PendingVerification.phone == phone, PendingVerification.purpose == purpose)
                .with_for_update()
                .first()
            )
            if record is None:
                raise NotFound("Verification code is invalid or has expired")

            if self._clock() >= record.expires_at:
                session.delete(record)
                error = Expired("Verification code has expired, please request a new one")
            elif record.attempts >= self.max_attempts:
                session.delete(record)
                error = AttemptsExhausted("Too many wrong codes, please request a new one")
            elif not hmac.compare_digest(record.code, str(code)):
                record.attempts += 1
                error = CodeMismatch(max(self.max_attempts - record.attempts, 0))
            else:
                payload = dict(record.payload or {})
                session.delete(record)

        if error is not None:
            # raised after commit so deletions and the attempt counter persist
            log_event("info", "verification.failed", purpose=purpose, reason=error.code)
            raise error
        return payload

    def purge_expired(self) -> int:
        with self._session_factory() as session:
            return (
                session.query(PendingVerification)
                .filter(PendingVerification.expires_at <= self._clock())
                .delete(synchronize_session=False)
            )
