"""Tests for the SMS verification ledger."""

import pytest

from storefront.errors import AttemptsExhausted, CodeMismatch, Expired, GatewayUnavailable, NotFound
from storefront.models import PendingVerification, VerificationPurpose
from storefront.services.verification_ledger import generate_code

PHONE = "09123334444"
REG = VerificationPurpose.REGISTRATION
RESET = VerificationPurpose.PASSWORD_RESET


def pending_count(session_factory):
    with session_factory() as session:
        return session.query(PendingVerification).count()


def wrong(code):
    return "000000" if code != "000000" else "111111"


class TestGenerateCode:
    def test_six_digits(self):
        for _ in range(50):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"


class TestIssueAndVerify:
    def test_issue_sends_sms_with_purpose_template(self, ledger, sms):
        result = ledger.issue_code(PHONE, REG, {"name": "Ali"})
        assert result == {"expires_in": 600}
        assert sms.sent[0]["phone"] == PHONE
        assert sms.sent[0]["template"] == REG

    def test_correct_code_returns_payload_and_consumes_record(self, ledger, sms, session_factory):
        ledger.issue_code(PHONE, REG, {"name": "Ali"})
        payload = ledger.verify_code(PHONE, sms.last_code(PHONE), REG)
        assert payload == {"name": "Ali"}
        assert pending_count(session_factory) == 0
        with pytest.raises(NotFound):
            ledger.verify_code(PHONE, sms.last_code(PHONE), REG)

    def test_reissue_invalidates_previous_code(self, ledger, sms, session_factory):
        codes = iter(["111111", "222222"])
        ledger._generate_code = lambda: next(codes)
        ledger.issue_code(PHONE, REG)
        ledger.issue_code(PHONE, REG)
        assert pending_count(session_factory) == 1
        with pytest.raises(CodeMismatch):
            ledger.verify_code(PHONE, "111111", REG)
        assert ledger.verify_code(PHONE, "222222", REG) == {}

    def test_purposes_are_independent(self, ledger, sms):
        ledger.issue_code(PHONE, REG, {"kind": "reg"})
        reg_code = sms.last_code(PHONE)
        ledger.issue_code(PHONE, RESET)
        assert ledger.verify_code(PHONE, reg_code, REG) == {"kind": "reg"}

    def test_unknown_purpose_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.issue_code(PHONE, "newsletter")

    def test_expired_code_is_deleted(self, ledger, sms, clock, session_factory):
        ledger.issue_code(PHONE, REG)
        clock.advance(seconds=601)
        with pytest.raises(Expired):
            ledger.verify_code(PHONE, sms.last_code(PHONE), REG)
        assert pending_count(session_factory) == 0

    def test_code_valid_until_expiry(self, ledger, sms, clock):
        ledger.issue_code(PHONE, REG, {"ok": True})
        clock.advance(seconds=599)
        assert ledger.verify_code(PHONE, sms.last_code(PHONE), REG) == {"ok": True}

    def test_wrong_code_counts_down(self, ledger, sms):
        ledger.issue_code(PHONE, REG)
        code = sms.last_code(PHONE)
        remaining = []
        for _ in range(5):
            with pytest.raises(CodeMismatch) as exc:
                ledger.verify_code(PHONE, wrong(code), REG)
            remaining.append(exc.value.remaining_attempts)
        assert remaining == [4, 3, 2, 1, 0]

    def test_five_wrong_codes_exhaust_even_the_right_one(self, ledger, sms, session_factory):
        ledger.issue_code(PHONE, REG)
        code = sms.last_code(PHONE)
        for _ in range(5):
            with pytest.raises(CodeMismatch):
                ledger.verify_code(PHONE, wrong(code), REG)
        with pytest.raises(AttemptsExhausted):
            ledger.verify_code(PHONE, code, REG)
        assert pending_count(session_factory) == 0

    def test_reissue_resets_attempts(self, ledger, sms):
        ledger.issue_code(PHONE, REG)
        for _ in range(4):
            with pytest.raises(CodeMismatch):
                ledger.verify_code(PHONE, wrong(sms.last_code(PHONE)), REG)
        ledger.issue_code(PHONE, REG)
        with pytest.raises(CodeMismatch) as exc:
            ledger.verify_code(PHONE, wrong(sms.last_code(PHONE)), REG)
        assert exc.value.remaining_attempts == 4

    def test_missing_record(self, ledger):
        with pytest.raises(NotFound):
            ledger.verify_code(PHONE, "123456", REG)

    def test_send_failure_removes_record(self, ledger, sms, session_factory):
        sms.fail = True
        with pytest.raises(GatewayUnavailable):
            ledger.issue_code(PHONE, REG, {"name": "Ali"})
        assert pending_count(session_factory) == 0


class TestResend:
    def test_resend_reuses_payload_with_new_code(self, ledger, sms):
        codes = iter(["111111", "222222"])
        ledger._generate_code = lambda: next(codes)
        ledger.issue_code(PHONE, REG, {"name": "Ali"})
        ledger.resend_code(PHONE, REG)
        assert [m["code"] for m in sms.sent] == ["111111", "222222"]
        assert ledger.verify_code(PHONE, "222222", REG) == {"name": "Ali"}

    def test_resend_requires_pending_record(self, ledger):
        with pytest.raises(NotFound):
            ledger.resend_code(PHONE, REG)


class TestPurge:
    def test_purge_removes_only_expired(self, ledger, clock, session_factory):
        ledger.issue_code(PHONE, REG)
        clock.advance(seconds=300)
        ledger.issue_code("09125556666", REG)
        clock.advance(seconds=301)
        assert ledger.purge_expired() == 1
        assert pending_count(session_factory) == 1
