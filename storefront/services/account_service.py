from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from uuid import uuid4

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from ..db.session import get_session
from ..errors import (
    AccountDisabled,
    Forbidden,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    PhoneAlreadyRegistered,
    TokenExpired,
    ValidationFailed,
)
from ..models.pending_verification import VerificationPurpose
from ..models.user import RefreshToken, User
from ..utils.clock import utcnow
from .logging import log_event

ALGORITHM = "HS256"

TOKEN_ACCESS = "access"
TOKEN_REFRESH = "refresh"
TOKEN_RESET = "password-reset"

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


class AccountService:
    """Phone-verified registration, login sessions and password reset.

    Access tokens are stateless JWTs; refresh tokens are JWTs that also have
    to exist server-side, so logout, password reset and deactivation can
    revoke them. Admin user management is audit-logged when ``audit`` is set.
    """

    def __init__(
        self,
        ledger,
        secret_key: str,
        session_factory=get_session,
        *,
        access_ttl: int = 3600,
        refresh_ttl: int = 30 * 24 * 3600,
        reset_ttl: int = 900,
        clock: Callable[[], datetime] = utcnow,
        audit=None,
    ):
        self._ledger = ledger
        self._secret = secret_key
        self._session_factory = session_factory
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.reset_ttl = reset_ttl
        self._clock = clock
        self._audit = audit

    @classmethod
    def from_config(cls, ledger, config, session_factory=get_session, audit=None) -> "AccountService":
        return cls(
            ledger,
            config.secret_key,
            session_factory,
            access_ttl=config.access_token_ttl,
            refresh_ttl=config.refresh_token_ttl,
            reset_ttl=config.reset_token_ttl,
            audit=audit,
        )

    def _encode(self, subject: str, token_type: str, ttl: int) -> str:
        now = self._clock().replace(tzinfo=timezone.utc)
        payload = {
            "sub": subject,
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
            "jti": uuid4().hex,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def _decode(self, token: str, token_type: str) -> Dict:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "exp", "type"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired("Token has expired")
        except jwt.InvalidTokenError:
            raise InvalidToken("Token is invalid")
        if payload.get("type") != token_type:
            raise InvalidToken("Token is invalid")
        return payload

    def _issue_pair(self, session, user: User) -> Dict:
        access = self._encode(user.id, TOKEN_ACCESS, self.access_ttl)
        refresh = self._encode(user.id, TOKEN_REFRESH, self.refresh_ttl)
        session.add(
            RefreshToken(
                token=refresh,
                user_id=user.id,
                expires_at=self._clock() + timedelta(seconds=self.refresh_ttl),
            )
        )
        return {"token": access, "refresh_token": refresh, "user": user.to_dict()}

    def _verified_user(self, session, phone: str):
        return session.query(User).filter(User.phone == phone, User.phone_verified.is_(True)).first()

    def start_registration(self, *, name: str, last_name: str, password: str, phone: str) -> Dict:
        with self._session_factory() as session:
            if self._verified_user(session, phone) is not None:
                raise PhoneAlreadyRegistered(phone)
        payload = {
            "name": name,
            "last_name": last_name,
            "password_hash": generate_password_hash(password),
        }
        return self._ledger.issue_code(phone, VerificationPurpose.REGISTRATION, payload)

    def resend_registration_code(self, phone: str) -> Dict:
        return self._ledger.resend_code(phone, VerificationPurpose.REGISTRATION)

    def complete_registration(self, *, phone: str, code: str) -> Dict:
        payload = self._ledger.verify_code(phone, code, VerificationPurpose.REGISTRATION)
        with self._session_factory() as session:
            if self._verified_user(session, phone) is not None:
                # someone else finished registering this phone first
                raise PhoneAlreadyRegistered(phone)
            user = User(
                id=str(uuid4()),
                name=payload["name"],
                last_name=payload["last_name"],
                phone=phone,
                phone_verified=True,
                password_hash=payload["password_hash"],
                role=ROLE_USER,
                is_active=True,
                created_at=self._clock(),
            )
            session.add(user)
            session.flush()
            result = self._issue_pair(session, user)
        log_event("info", "account.registered", user_id=result["user"]["id"])
        return result

    def login(self, *, phone: str, password: str) -> Dict:
        with self._session_factory() as session:
            user = self._verified_user(session, phone)
            if user is None or not check_password_hash(user.password_hash, password):
                raise InvalidCredentials()
            if not user.is_active:
                raise AccountDisabled()
            result = self._issue_pair(session, user)
        log_event("info", "account.login", user_id=result["user"]["id"])
        return result

    def refresh(self, refresh_token: str) -> Dict:
        payload = self._decode(refresh_token, TOKEN_REFRESH)
        with self._session_factory() as session:
            stored = (
                session.query(RefreshToken)
                .filter(
                    RefreshToken.token == refresh_token,
                    RefreshToken.user_id == payload["sub"],
                    RefreshToken.expires_at > self._clock(),
                )
                .first()
            )
            if stored is None:
                raise InvalidToken("Refresh token is invalid or revoked")
            user = session.get(User, payload["sub"])
            if user is None:
                raise InvalidToken("Refresh token is invalid or revoked")
            if not user.is_active:
                raise AccountDisabled()
            user_id = user.id
        return {"token": self._encode(user_id, TOKEN_ACCESS, self.access_ttl)}

    def logout(self, *, user_id: str, refresh_token: str = None) -> None:
        if not refresh_token:
            return
        with self._session_factory() as session:
            session.query(RefreshToken).filter(
                RefreshToken.token == refresh_token, RefreshToken.user_id == user_id
            ).delete(synchronize_session=False)

    def authenticate(self, access_token: str) -> Identity:
        payload = self._decode(access_token, TOKEN_ACCESS)
        with self._session_factory() as session:
            user = session.get(User, payload["sub"])
            if user is None:
                raise InvalidToken("Token is invalid")
            if not user.is_active:
                raise AccountDisabled()
            return Identity(user_id=user.id, role=user.role)

    def get_profile(self, user_id: str) -> Dict:
        with self._session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("User not found")
            return user.to_dict()

    def request_password_reset(self, phone: str) -> Dict:
        with self._session_factory() as session:
            if self._verified_user(session, phone) is None:
                raise NotFound("No user is registered with this phone number")
        return self._ledger.issue_code(phone, VerificationPurpose.PASSWORD_RESET)

    def verify_password_reset(self, *, phone: str, code: str) -> Dict:
        self._ledger.verify_code(phone, code, VerificationPurpose.PASSWORD_RESET)
        return {"reset_token": self._encode(phone, TOKEN_RESET, self.reset_ttl), "expires_in": self.reset_ttl}

    def reset_password(self, *, reset_token: str, new_password: str) -> None:
        payload = self._decode(reset_token, TOKEN_RESET)
        with self._session_factory() as session:
            user = self._verified_user(session, payload["sub"])
            if user is None:
                raise NotFound("User not found")
            user.password_hash = generate_password_hash(new_password)
            session.query(RefreshToken).filter(RefreshToken.user_id == user.id).delete(synchronize_session=False)
            user_id = user.id
        log_event("info", "account.password_reset", user_id=user_id)

    def update_profile(self, user_id: str, *, name: Optional[str] = None, last_name: Optional[str] = None) -> Dict:
        with self._session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("User not found")
            if name is not None:
                user.name = name
            if last_name is not None:
                user.last_name = last_name
            session.flush()
            return user.to_dict()

    def list_users(self) -> List[Dict]:
        with self._session_factory() as session:
            rows = session.query(User).order_by(User.created_at.desc()).all()
            return [_admin_view(u) for u in rows]

    def update_user(
        self,
        user_id: str,
        *,
        actor_id: str,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Dict:
        """Admin change of role and/or active flag; deactivation revokes sessions."""
        if role is not None and role not in ROLES:
            raise ValidationFailed({"role": f"must be one of {', '.join(ROLES)}"})
        if user_id == actor_id and (role not in (None, ROLE_ADMIN) or is_active is False):
            raise Forbidden("Administrators cannot demote or disable their own account")
        with self._session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("User not found")
            changes = {}
            if role is not None and role != user.role:
                changes["role"] = [user.role, role]
                user.role = role
            if is_active is not None and is_active != user.is_active:
                changes["is_active"] = [user.is_active, is_active]
                user.is_active = is_active
                if not is_active:
                    session.query(RefreshToken).filter(RefreshToken.user_id == user_id).delete(
                        synchronize_session=False
                    )
            session.flush()
            view = _admin_view(user)
        log_event("info", "account.user_updated", user_id=user_id, actor_id=actor_id, changes=sorted(changes))
        self._record(actor_id, "update", user_id, f"User {user_id} updated", changes)
        return view

    def delete_user(self, user_id: str, *, actor_id: str) -> None:
        if user_id == actor_id:
            raise Forbidden("Administrators cannot delete their own account")
        with self._session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("User not found")
            session.query(RefreshToken).filter(RefreshToken.user_id == user_id).delete(synchronize_session=False)
            session.delete(user)
        log_event("info", "account.user_deleted", user_id=user_id, actor_id=actor_id)
        self._record(actor_id, "delete", user_id, f"User {user_id} deleted", {})

    def create_admin(self, *, phone: str, password: str, name: str, last_name: str) -> Dict:
        """Create a verified admin, or promote the verified user that owns ``phone``."""
        with self._session_factory() as session:
            user = self._verified_user(session, phone)
            created = user is None
            if created:
                user = User(
                    id=str(uuid4()),
                    name=name,
                    last_name=last_name,
                    phone=phone,
                    phone_verified=True,
                    created_at=self._clock(),
                )
                session.add(user)
            user.password_hash = generate_password_hash(password)
            user.role = ROLE_ADMIN
            user.is_active = True
            session.flush()
            view = _admin_view(user)
        log_event("info", "account.admin_created" if created else "account.admin_promoted", user_id=view["id"])
        return view

    def _record(self, actor_id: str, action: str, user_id: str, description: str, changes: Dict) -> None:
        if self._audit is None:
            return
        self._audit.record(
            actor_id=actor_id,
            action=action,
            entity="user",
            entity_id=user_id,
            description=description,
            metadata={"user_id": user_id, "changes": changes},
        )


def _admin_view(user: User) -> Dict:
    view = user.to_dict()
    view["is_active"] = user.is_active
    view["created_at"] = user.created_at.isoformat() if user.created_at else None
    return view
