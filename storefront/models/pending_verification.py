from sqlalchemy import Column, DateTime, Integer, JSON, String, UniqueConstraint, func
from .base import Base


class VerificationPurpose:
    REGISTRATION = "registration"
    PASSWORD_RESET = "password-reset"

    ALL = (REGISTRATION, PASSWORD_RESET)


class PendingVerification(Base):
    """Code-gated staging record, one per (phone, purpose)."""

    __tablename__ = "pending_verification"
    __table_args__ = (UniqueConstraint("phone", "purpose", name="uq_pending_verification_phone_purpose"),)

    id = Column(String(36), primary_key=True)
    phone = Column(String(16), nullable=False)
    purpose = Column(String(32), nullable=False)
    payload = Column(JSON, nullable=True)
    code = Column(String(6), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
