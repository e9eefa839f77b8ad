"""Configuration management for the gateway simulator."""
import os
from dataclasses import dataclass, field


@dataclass
class PaymentConfig:
    """Initial outcome policy and lifecycle delays."""

    outcome: str = "SUCCESS"
    processing_delay_ms: int = 1000
    callback_delay_ms: int = 3000


@dataclass
class DeliveryConfig:
    """Webhook delivery tuning."""

    max_attempts: int = 3
    timeout_seconds: float = 10.0
    backoff_seconds: float = 1.0


@dataclass
class DefaultMerchantConfig:
    """Merchant created on startup so the simulator is usable out of the box."""

    token: str = "ae476881-7bfc-4da8-bc7d-8203ad0fb28c"
    secret: str = "127f7830-b856-4ddf-92b4-a6478e38547b"
    name: str = "Default Test Merchant"


@dataclass
class Settings:
    """Main configuration for the gateway simulator."""

    database_url: str = "sqlite:///./gateway.db"
    api_key: str = "your-admin-api-key-change-this"
    host: str = "0.0.0.0"
    port: int = 3000
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    default_merchant: DefaultMerchantConfig = field(default_factory=DefaultMerchantConfig)
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        payment = PaymentConfig(
            outcome=os.getenv("DEFAULT_PAYMENT_OUTCOME", "SUCCESS").upper(),
            processing_delay_ms=int(os.getenv("PROCESSING_DELAY_MS", "1000")),
            callback_delay_ms=int(os.getenv("CALLBACK_DELAY_MS", "3000")),
        )

        delivery = DeliveryConfig(
            max_attempts=int(os.getenv("CALLBACK_MAX_ATTEMPTS", "3")),
            timeout_seconds=float(os.getenv("CALLBACK_TIMEOUT_SECONDS", "10")),
            backoff_seconds=float(os.getenv("CALLBACK_BACKOFF_SECONDS", "1")),
        )

        default_merchant = DefaultMerchantConfig(
            token=os.getenv("DEFAULT_MERCHANT_TOKEN", DefaultMerchantConfig.token),
            secret=os.getenv("DEFAULT_SIGNATURE_SECRET", DefaultMerchantConfig.secret),
        )

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./gateway.db"),
            api_key=os.getenv("API_KEY", "your-admin-api-key-change-this"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            payment=payment,
            delivery=delivery,
            default_merchant=default_merchant,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console"),
        )


settings = Settings.from_env()
