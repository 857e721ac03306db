import os
from dataclasses import dataclass
from pathlib import Path
import json
from typing import Optional
from urllib.parse import quote


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    log_level: str
    frontend_url: str
    sms_api_url: str
    sms_register_body_id: str
    sms_password_reset_body_id: str
    sms_timeout: float
    zarinpal_merchant_id: str
    zarinpal_sandbox: bool
    payment_timeout: float
    verification_code_ttl: int = 600
    verification_max_attempts: int = 5
    access_token_ttl: int = 3600
    refresh_token_ttl: int = 30 * 24 * 3600
    reset_token_ttl: int = 900

    def payment_callback_url(self, order_id: str) -> str:
        base = self.frontend_url.rstrip("/")
        return f"{base}/order-success?orderId={order_id}"

    def payment_result_url(self, order_id: str, outcome: str, error: Optional[str] = None) -> str:
        url = f"{self.payment_callback_url(order_id)}&payment={outcome}"
        if error:
            url += f"&error={quote(error)}"
        return url


DEFAULT_SMS_API_URL = "https://console.melipayamak.com/api/send/shared/"


def _load_settings_file(path: Optional[Path] = None) -> dict:
    try:
        path = path or Path(__file__).resolve().parents[1] / "data" / "settings.json"
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return data
    except (OSError, ValueError):
        pass
    return {}


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def validate_log_level(value: Optional[str]) -> str:
    v = (value or "INFO").strip().upper()
    if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ValueError(f"Invalid log level: {value}")
    return v


def validate_body_id(value: str, key: str) -> str:
    v = (value or "").strip()
    if not v.isdigit():
        raise ValueError(f"Invalid SMS body id for {key}: {value!r}")
    return v


def load_env(settings_path: Optional[Path] = None) -> AppConfig:
    # data/settings.json wins, environment variables are the fallback
    s = _load_settings_file(settings_path)

    def get(key: str, default: str = "") -> str:
        value = s.get(key)
        if value is None or value == "":
            value = os.getenv(key, default)
        return str(value)

    return AppConfig(
        database_url=get("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=get("SECRET_KEY", "dev_secret"),
        log_level=validate_log_level(get("LOG_LEVEL", "INFO")),
        frontend_url=get("FRONTEND_URL", "http://127.0.0.1:3000").rstrip("/"),
        sms_api_url=get("SMS_API_URL", DEFAULT_SMS_API_URL),
        sms_register_body_id=validate_body_id(get("SMS_REGISTER_BODYID", "389104"), "SMS_REGISTER_BODYID"),
        sms_password_reset_body_id=validate_body_id(
            get("SMS_PASSWORD_RESET_BODYID", "390389"), "SMS_PASSWORD_RESET_BODYID"
        ),
        sms_timeout=float(get("SMS_TIMEOUT", "10")),
        zarinpal_merchant_id=get("ZARINPAL_MERCHANT_ID", ""),
        zarinpal_sandbox=_as_bool(get("ZARINPAL_SANDBOX", "false")),
        payment_timeout=float(get("PAYMENT_TIMEOUT", "15")),
        verification_code_ttl=int(get("VERIFICATION_CODE_TTL", "600")),
        verification_max_attempts=int(get("VERIFICATION_MAX_ATTEMPTS", "5")),
        access_token_ttl=int(get("ACCESS_TOKEN_TTL", "3600")),
        refresh_token_ttl=int(get("REFRESH_TOKEN_TTL", str(30 * 24 * 3600))),
        reset_token_ttl=int(get("RESET_TOKEN_TTL", "900")),
    )

