from functools import lru_cache
from typing import Any, List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_csv_list(v: Any, default: List[str] | None = None) -> List[str]:
    default = default or []
    try:
        if v is None or v == "":
            return default.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return default.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or default.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or default.copy()
    except Exception:
        return default.copy()


class HostedCardConfig(BaseModel):
    """Stripe credentials for the hosted-card gateway."""
    secret_key: str = ""
    webhook_secret: str = ""
    api_base: str = "https://api.stripe.com"
    signature_tolerance_seconds: int = 300


class PayFastConfig(BaseModel):
    merchant_id: str = ""
    merchant_key: str = ""
    passphrase: str = ""
    process_url: str = "https://sandbox.payfast.co.za/eng/process"
    notify_url: str = ""
    validate_url: str = ""
    allowed_ips: List[str] = Field(default_factory=list)


class PayTodayConfig(BaseModel):
    api_key: str = ""
    secret_key: str = ""
    api_base: str = "https://api.sandbox.paytoday.com"
    callback_url: str = ""


class DopConfig(BaseModel):
    merchant_id: str = ""
    api_key: str = ""
    webhook_secret: str = ""
    api_base: str = "https://api.sandbox.dop.com"
    callback_url: str = ""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    # Persistence: "mongo" or "memory"
    repository_backend: str = Field(default="mongo", alias="REPOSITORY_BACKEND")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="marketpay", alias="MONGODB_DB_NAME")

    # Payments
    settlement_currency: str = Field(default="USD", alias="SETTLEMENT_CURRENCY")
    provider_timeout_seconds: float = Field(default=10.0, alias="PROVIDER_TIMEOUT_SECONDS")

    # Stripe (hosted card)
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_api_base: str = Field(default="https://api.stripe.com", alias="STRIPE_API_BASE")

    # PayFast; ITNs are rejected until merchant id, key and passphrase are all set
    payfast_merchant_id: str = Field(default="", alias="PAYFAST_MERCHANT_ID")
    payfast_merchant_key: str = Field(default="", alias="PAYFAST_MERCHANT_KEY")
    payfast_passphrase: str = Field(default="", alias="PAYFAST_PASSPHRASE")
    payfast_process_url: str = Field(
        default="https://sandbox.payfast.co.za/eng/process",
        alias="PAYFAST_PROCESS_URL",
    )
    payfast_validate_url: str = Field(
        default="https://sandbox.payfast.co.za/eng/query/validate",
        alias="PAYFAST_VALIDATE_URL",
        description="Server-side ITN confirmation; empty disables the postback",
    )
    payfast_allowed_ips_raw: str = Field(
        default="",
        alias="PAYFAST_ALLOWED_IPS",
        description="Comma-separated or JSON list; empty disables the check",
    )

    # PayToday
    paytoday_api_key: str = Field(default="", alias="PAYTODAY_API_KEY")
    paytoday_secret_key: str = Field(default="", alias="PAYTODAY_SECRET_KEY")
    paytoday_api_base: str = Field(default="https://api.sandbox.paytoday.com", alias="PAYTODAY_API_BASE")

    # Digital Online Payments
    dop_merchant_id: str = Field(default="", alias="DOP_MERCHANT_ID")
    dop_api_key: str = Field(default="", alias="DOP_API_KEY")
    dop_webhook_secret: str = Field(default="", alias="DOP_WEBHOOK_SECRET")
    dop_api_base: str = Field(default="https://api.sandbox.dop.com", alias="DOP_API_BASE")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_csv_list(getattr(self, "cors_origins_raw", None), _DEFAULT_CORS)

    @property
    def payfast_allowed_ips(self) -> List[str]:
        return _parse_csv_list(self.payfast_allowed_ips_raw)

    def webhook_url(self, provider_id: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/v1/payments/webhook/{provider_id}"

    def hosted_card_config(self) -> HostedCardConfig:
        return HostedCardConfig(
            secret_key=self.stripe_secret_key,
            webhook_secret=self.stripe_webhook_secret,
            api_base=self.stripe_api_base,
        )

    def payfast_config(self) -> PayFastConfig:
        return PayFastConfig(
            merchant_id=self.payfast_merchant_id,
            merchant_key=self.payfast_merchant_key,
            passphrase=self.payfast_passphrase,
            process_url=self.payfast_process_url,
            validate_url=self.payfast_validate_url,
            notify_url=self.webhook_url("payfast"),
            allowed_ips=self.payfast_allowed_ips,
        )

    def paytoday_config(self) -> PayTodayConfig:
        return PayTodayConfig(
            api_key=self.paytoday_api_key,
            secret_key=self.paytoday_secret_key,
            api_base=self.paytoday_api_base,
            callback_url=self.webhook_url("paytoday"),
        )

    def dop_config(self) -> DopConfig:
        return DopConfig(
            merchant_id=self.dop_merchant_id,
            api_key=self.dop_api_key,
            webhook_secret=self.dop_webhook_secret,
            api_base=self.dop_api_base,
            callback_url=self.webhook_url("dop"),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
