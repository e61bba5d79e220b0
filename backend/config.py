"""
Configuration management for the storefront order service.

Loads settings from .env via pydantic-settings.

Gateway credentials and URLs are read once at process start and frozen into
a GatewayConfig value; the payment request builder and the callback
reconciler both receive that value explicitly instead of reading settings.
"""
import logging
from dataclasses import dataclass
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayConfig:
    """Process-wide hosted payment gateway configuration."""

    api_key: str
    secret: str
    website_index: str
    payment_url: str
    callback_url: str
    success_url: str
    cancel_url: str
    currency: str = "TL"
    language: str = "tr"
    signature_scheme: str = "sorted_key_value"
    outbound_encoding: str = "base64"
    callback_encoding: str = "base64"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/storefront.db"

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    public_base_url: str = "http://localhost:8000"

    # ── Auth (JWT, issued by the account service) ───────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "storefront-auth"
    jwt_access_ttl_minutes: int = 60

    # ── Hosted payment gateway ──────────────────────────────────────
    gateway_api_key: str = ""
    gateway_secret: str = ""
    gateway_website_index: str = "1"
    gateway_payment_url: str = "https://www.shopier.com/ShowProduct/api_pay4.php"
    gateway_callback_url: str = "http://localhost:8000/payment/callback"
    gateway_success_url: str = "http://localhost:3000/payment/success"
    gateway_cancel_url: str = "http://localhost:3000/payment/cancel"
    gateway_currency: str = "TL"
    gateway_language: str = "tr"
    # "sorted_key_value" or "concatenated"; must match the gateway account
    gateway_signature_scheme: str = "sorted_key_value"
    gateway_outbound_encoding: str = "base64"   # hex | base64
    gateway_callback_encoding: str = "base64"   # hex | base64

    # ── Checkout ────────────────────────────────────────────────────
    checkout_token_ttl_seconds: int = 600
    order_create_rate_limit: int = 20           # per client IP per minute

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    def gateway_config(self) -> GatewayConfig:
        """Freeze the gateway settings into the value passed to the payment services."""
        return GatewayConfig(
            api_key=self.gateway_api_key,
            secret=self.gateway_secret,
            website_index=self.gateway_website_index,
            payment_url=self.gateway_payment_url,
            callback_url=self.gateway_callback_url,
            success_url=self.gateway_success_url,
            cancel_url=self.gateway_cancel_url,
            currency=self.gateway_currency,
            language=self.gateway_language,
            signature_scheme=self.gateway_signature_scheme,
            outbound_encoding=self.gateway_outbound_encoding,
            callback_encoding=self.gateway_callback_encoding,
        )

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup. Raises ValueError on an unsafe production
        configuration, only warns in other environments.
        """
        from services.signature_service import SignatureEncoding, SignatureScheme

        # Fail fast on a typo rather than signing with an unknown scheme
        SignatureScheme(self.gateway_signature_scheme)
        SignatureEncoding(self.gateway_outbound_encoding)
        SignatureEncoding(self.gateway_callback_encoding)

        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to verify buyer and admin access tokens."
                )
            if not self.gateway_api_key or not self.gateway_secret:
                raise ValueError(
                    "GATEWAY_API_KEY and GATEWAY_SECRET must be set in production. "
                    "Without them payment requests cannot be signed or verified."
                )
            if not self.gateway_callback_url.startswith("https://"):
                raise ValueError("GATEWAY_CALLBACK_URL must use https in production.")
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if not self.jwt_secret:
                warnings.append("JWT_SECRET is empty — authenticated endpoints will fail")
            if not self.gateway_secret:
                warnings.append("GATEWAY_SECRET is empty — every callback will be rejected")
            if "*" in self.cors_origins:
                warnings.append("CORS allows all origins (*)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


settings = Settings()
