"""Tests for registration, login sessions, password reset and user administration."""

from datetime import timedelta

import jwt
import pytest

from conftest import MovableClock
from storefront.errors import (
    AccountDisabled,
    CodeMismatch,
    Forbidden,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    PhoneAlreadyRegistered,
    TokenExpired,
    ValidationFailed,
)
from storefront.models import User
from storefront.models.user import RefreshToken
from storefront.services import AccountService
from storefront.utils.clock import utcnow

PHONE = "09127778888"


def register(accounts, sms, phone=PHONE, password="secret123"):
    accounts.start_registration(name="Ali", last_name="Rezaei", password=password, phone=phone)
    return accounts.complete_registration(phone=phone, code=sms.last_code(phone))


class TestRegistration:
    def test_full_registration_creates_verified_user(self, accounts, sms, session_factory):
        result = register(accounts, sms)
        assert result["user"]["phone"] == PHONE
        assert result["user"]["phone_verified"] is True
        assert result["token"] and result["refresh_token"]
        with session_factory() as session:
            user = session.query(User).filter(User.phone == PHONE).one()
            assert user.password_hash != "secret123"

    def test_password_is_hashed_before_staging(self, accounts, sms, session_factory):
        from storefront.models import PendingVerification

        accounts.start_registration(name="Ali", last_name="Rezaei", password="secret123", phone=PHONE)
        with session_factory() as session:
            payload = session.query(PendingVerification).one().payload
        assert "password" not in payload
        assert payload["password_hash"] != "secret123"

    def test_registered_phone_is_rejected(self, accounts, add_user, sms):
        add_user(phone=PHONE)
        with pytest.raises(PhoneAlreadyRegistered):
            accounts.start_registration(name="Ali", last_name="Rezaei", password="secret123", phone=PHONE)
        assert sms.sent == []

    def test_wrong_code_does_not_register(self, accounts, sms, session_factory):
        accounts.start_registration(name="Ali", last_name="Rezaei", password="secret123", phone=PHONE)
        bad = "000000" if sms.last_code(PHONE) != "000000" else "111111"
        with pytest.raises(CodeMismatch):
            accounts.complete_registration(phone=PHONE, code=bad)
        with session_factory() as session:
            assert session.query(User).count() == 0

    def test_resend_registration_code(self, accounts, sms):
        accounts.start_registration(name="Ali", last_name="Rezaei", password="secret123", phone=PHONE)
        accounts.resend_registration_code(PHONE)
        assert len(sms.sent) == 2
        result = accounts.complete_registration(phone=PHONE, code=sms.last_code(PHONE))
        assert result["user"]["name"] == "Ali"


class TestSessions:
    def test_login_and_authenticate(self, accounts, add_user):
        user_id = add_user(phone=PHONE, password="secret123", role="admin")
        tokens = accounts.login(phone=PHONE, password="secret123")
        identity = accounts.authenticate(tokens["token"])
        assert identity.user_id == user_id
        assert identity.is_admin

    def test_bad_password_and_unknown_phone_look_the_same(self, accounts, add_user):
        add_user(phone=PHONE, password="secret123")
        with pytest.raises(InvalidCredentials) as bad_password:
            accounts.login(phone=PHONE, password="nope-nope")
        with pytest.raises(InvalidCredentials) as unknown:
            accounts.login(phone="09120001111", password="secret123")
        assert bad_password.value.message == unknown.value.message

    def test_disabled_account(self, accounts, add_user):
        add_user(phone=PHONE, password="secret123", is_active=False)
        with pytest.raises(AccountDisabled):
            accounts.login(phone=PHONE, password="secret123")

    def test_refresh_issues_new_access_token(self, accounts, add_user):
        user_id = add_user(phone=PHONE, password="secret123")
        tokens = accounts.login(phone=PHONE, password="secret123")
        refreshed = accounts.refresh(tokens["refresh_token"])
        assert accounts.authenticate(refreshed["token"]).user_id == user_id

    def test_access_token_cannot_refresh(self, accounts, add_user):
        add_user(phone=PHONE, password="secret123")
        tokens = accounts.login(phone=PHONE, password="secret123")
        with pytest.raises(InvalidToken):
            accounts.refresh(tokens["token"])

    def test_refresh_token_cannot_authenticate(self, accounts, add_user):
        add_user(phone=PHONE, password="secret123")
        tokens = accounts.login(phone=PHONE, password="secret123")
        with pytest.raises(InvalidToken):
            accounts.authenticate(tokens["refresh_token"])

    def test_logout_revokes_refresh_token(self, accounts, add_user):
        user_id = add_user(phone=PHONE, password="secret123")
        tokens = accounts.login(phone=PHONE, password="secret123")
        accounts.logout(user_id=user_id, refresh_token=tokens["refresh_token"])
        with pytest.raises(InvalidToken):
            accounts.refresh(tokens["refresh_token"])

    def test_expired_access_token(self, ledger, session_factory, add_user):
        add_user(phone=PHONE, password="secret123")
        past = MovableClock(utcnow() - timedelta(hours=2))
        stale = AccountService(ledger, "test-secret", session_factory, clock=past)
        tokens = stale.login(phone=PHONE, password="secret123")
        with pytest.raises(TokenExpired):
            stale.authenticate(tokens["token"])

    def test_tampered_token(self, accounts, add_user):
        add_user(phone=PHONE, password="secret123")
        forged = jwt.encode({"sub": "x", "type": "access", "exp": 9999999999}, "other-secret", algorithm="HS256")
        with pytest.raises(InvalidToken):
            accounts.authenticate(forged)

    def test_disabled_after_login(self, accounts, add_user, session_factory):
        user_id = add_user(phone=PHONE, password="secret123")
        tokens = accounts.login(phone=PHONE, password="secret123")
        with session_factory() as session:
            session.get(User, user_id).is_active = False
        with pytest.raises(AccountDisabled):
            accounts.authenticate(tokens["token"])


class TestPasswordReset:
    def test_reset_flow_changes_password_and_revokes_sessions(self, accounts, add_user, sms):
        add_user(phone=PHONE, password="secret123")
        old = accounts.login(phone=PHONE, password="secret123")

        accounts.request_password_reset(PHONE)
        reset = accounts.verify_password_reset(phone=PHONE, code=sms.last_code(PHONE))
        accounts.reset_password(reset_token=reset["reset_token"], new_password="brand-new")

        with pytest.raises(InvalidCredentials):
            accounts.login(phone=PHONE, password="secret123")
        assert accounts.login(phone=PHONE, password="brand-new")["token"]
        with pytest.raises(InvalidToken):
            accounts.refresh(old["refresh_token"])

    def test_unknown_phone(self, accounts, sms):
        with pytest.raises(NotFound):
            accounts.request_password_reset(PHONE)
        assert sms.sent == []

    def test_access_token_is_not_a_reset_token(self, accounts, add_user):
        add_user(phone=PHONE, password="secret123")
        tokens = accounts.login(phone=PHONE, password="secret123")
        with pytest.raises(InvalidToken):
            accounts.reset_password(reset_token=tokens["token"], new_password="brand-new")


class TestProfile:
    def test_update_name_keeps_phone(self, accounts, add_user):
        user_id = add_user(phone=PHONE)
        profile = accounts.update_profile(user_id, name="Reza", last_name="Karimi")
        assert profile["name"] == "Reza"
        assert profile["last_name"] == "Karimi"
        assert profile["phone"] == PHONE

    def test_omitted_fields_stay(self, accounts, add_user):
        user_id = add_user(phone=PHONE, name="Ali")
        assert accounts.update_profile(user_id, last_name="Karimi")["name"] == "Ali"

    def test_missing_user(self, accounts):
        with pytest.raises(NotFound):
            accounts.update_profile("missing", name="Reza")


class TestUserAdministration:
    def test_list_users_shows_admin_fields(self, accounts, add_user):
        add_user(phone="09120000001")
        add_user(phone="09120000002", is_active=False)
        users = accounts.list_users()
        assert len(users) == 2
        assert {u["is_active"] for u in users} == {True, False}
        assert all("password_hash" not in u for u in users)

    def test_promote_user(self, accounts, add_user, audit):
        admin_id = add_user(phone="09120000001", role="admin")
        user_id = add_user(phone=PHONE)
        updated = accounts.update_user(user_id, actor_id=admin_id, role="admin")
        assert updated["role"] == "admin"
        assert accounts.authenticate(accounts.login(phone=PHONE, password="secret123")["token"]).is_admin

        entries = audit.list_entries(entity="user", entity_id=user_id)
        assert entries[0]["action"] == "update"
        assert entries[0]["metadata"]["changes"] == {"role": ["user", "admin"]}

    def test_deactivate_revokes_sessions(self, accounts, add_user, session_factory):
        admin_id = add_user(phone="09120000001", role="admin")
        user_id = add_user(phone=PHONE)
        tokens = accounts.login(phone=PHONE, password="secret123")

        accounts.update_user(user_id, actor_id=admin_id, is_active=False)

        with session_factory() as session:
            assert session.query(RefreshToken).filter(RefreshToken.user_id == user_id).count() == 0
        with pytest.raises(AccountDisabled):
            accounts.authenticate(tokens["token"])
        with pytest.raises(AccountDisabled):
            accounts.login(phone=PHONE, password="secret123")

    def test_unknown_role_rejected(self, accounts, add_user):
        admin_id = add_user(phone="09120000001", role="admin")
        user_id = add_user(phone=PHONE)
        with pytest.raises(ValidationFailed):
            accounts.update_user(user_id, actor_id=admin_id, role="owner")

    def test_admin_cannot_lock_themselves_out(self, accounts, add_user):
        admin_id = add_user(phone="09120000001", role="admin")
        with pytest.raises(Forbidden):
            accounts.update_user(admin_id, actor_id=admin_id, role="user")
        with pytest.raises(Forbidden):
            accounts.update_user(admin_id, actor_id=admin_id, is_active=False)
        with pytest.raises(Forbidden):
            accounts.delete_user(admin_id, actor_id=admin_id)

    def test_delete_user(self, accounts, add_user, session_factory, audit):
        admin_id = add_user(phone="09120000001", role="admin")
        user_id = add_user(phone=PHONE)
        accounts.login(phone=PHONE, password="secret123")

        accounts.delete_user(user_id, actor_id=admin_id)

        with session_factory() as session:
            assert session.get(User, user_id) is None
            assert session.query(RefreshToken).filter(RefreshToken.user_id == user_id).count() == 0
        assert audit.list_entries(entity="user", entity_id=user_id)[0]["action"] == "delete"
        with pytest.raises(NotFound):
            accounts.delete_user(user_id, actor_id=admin_id)

    def test_create_admin(self, accounts):
        admin = accounts.create_admin(phone=PHONE, password="admin123", name="Admin", last_name="System")
        assert admin["role"] == "admin"
        session = accounts.login(phone=PHONE, password="admin123")
        assert accounts.authenticate(session["token"]).is_admin

    def test_create_admin_promotes_existing_user(self, accounts, add_user):
        user_id = add_user(phone=PHONE)
        admin = accounts.create_admin(phone=PHONE, password="newpass1", name="Ignored", last_name="Ignored")
        assert admin["id"] == user_id
        assert admin["name"] == "Ali"
        assert accounts.login(phone=PHONE, password="newpass1")["user"]["role"] == "admin"
