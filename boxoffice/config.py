from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./boxoffice.db"
    db_statement_timeout_ms: int = 5000  # PostgreSQL only
    db_pool_timeout_seconds: int = 10

    # Stripe (Connect destination charges)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_publishable_key: str = ""

    # PayPal
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_api_base: str = "https://api-m.sandbox.paypal.com"

    gateway_timeout_seconds: int = 10

    # Resend (Email)
    resend_api_key: str = ""
    from_email: str = "tickets@example.com"
    # External QR renderer; {data} receives the URL-encoded ticket code
    qr_image_url_template: str = "https://api.qrserver.com/v1/create-qr-code/?size=300x300&data={data}"

    # Application
    base_url: str = "http://localhost:8000"
    currency: str = "usd"

    # Fees
    platform_fee_per_ticket: Decimal = Decimal("1.00")
    paypal_fee_percent: Decimal = Decimal("0.0349")
    paypal_fee_fixed: Decimal = Decimal("0.49")
    amount_tolerance: Decimal = Decimal("0.01")  # Max captured-vs-expected drift

    # Ticket issuance
    ticket_code_attempts: int = 5

    # Background email retry
    enable_scheduler: bool = True
    email_retry_interval_minutes: int = 10

    # Buyer-facing payment endpoints only; door scanning is never throttled
    rate_limit_enabled: bool = True

    # CORS
    cors_origins: str = ""  # Comma-separated allowed origins (empty = allow all)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
