import os
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv


load_dotenv(".env")


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_decimal(name: str, default: str) -> Decimal:
    raw = _getenv(name, default) or default
    try:
        return Decimal(raw)
    except InvalidOperation:
        return Decimal(default)


def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip().lower() for p in raw.split(",")]
    return {p for p in parts if p}


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()

        self.database_url = _getenv("DATABASE_URL", "sqlite:///./streamledger.db") or "sqlite:///./streamledger.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.db_transaction_timeout_ms = _getenv_int("DB_TRANSACTION_TIMEOUT_MS", 10000)
        self.db_lock_timeout_ms = _getenv_int("DB_LOCK_TIMEOUT_MS", 5000)

        self.platform_currency = (_getenv("PLATFORM_CURRENCY", "USD") or "USD").upper()
        self.min_withdrawal_amount = _getenv_decimal("MIN_WITHDRAWAL_AMOUNT", "50")
        self.stream_tokens_per_minute = _getenv_decimal("STREAM_TOKENS_PER_MINUTE", "5")
        self.stream_max_billing_seconds = _getenv_int("STREAM_MAX_BILLING_SECONDS", 300)
        self.private_message_cost = _getenv_decimal("PRIVATE_MESSAGE_COST", "1")

        self.jwt_secret = _getenv("JWT_SECRET")
        self.jwt_audience = _getenv("JWT_AUDIENCE")
        self.jwt_issuer = _getenv("JWT_ISSUER")
        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

        self.basic_auth_enabled = _getenv_bool(
            "BASIC_AUTH_ENABLED",
            default=(self.environment == "production"),
        )
        self.basic_auth_username = _getenv("BASIC_AUTH_USERNAME")
        self.basic_auth_password = _getenv("BASIC_AUTH_PASSWORD")
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:3000", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
