"""Application configuration using pydantic-settings.

Only the anchor factory and the API entry point read settings. Provider
clients receive their own config objects.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Customer cache
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/rampkit.db",
        description="Customer cache database URL",
    )

    # ======================
    # Etherfuse
    # ======================
    etherfuse_api_key: str = Field(default="", description="Etherfuse API key")
    etherfuse_base_url: str = Field(
        default="https://api.sand.etherfuse.com", description="Etherfuse API base URL"
    )

    # ======================
    # Alfred Pay
    # ======================
    alfredpay_api_key: str = Field(default="", description="Alfred Pay API key")
    alfredpay_api_secret: str = Field(default="", description="Alfred Pay API secret")
    alfredpay_base_url: str = Field(
        default="https://api-service-co.alfredpay.app/api/v1/third-party-service/penny",
        description="Alfred Pay API base URL",
    )

    # ======================
    # BlindPay
    # ======================
    blindpay_api_key: str = Field(default="", description="BlindPay API key")
    blindpay_instance_id: str = Field(default="", description="BlindPay instance ID")
    blindpay_base_url: str = Field(
        default="https://api.blindpay.com", description="BlindPay API base URL"
    )
    blindpay_network: str = Field(
        default="stellar_testnet", description="BlindPay blockchain network"
    )

    # ======================
    # Webhooks
    # ======================
    webhook_secret: Optional[str] = Field(
        default=None, description="HMAC-SHA256 secret for anchor webhooks"
    )

    # ======================
    # Flow control
    # ======================
    poll_interval_seconds: float = Field(
        default=5.0, description="Seconds between transaction status polls"
    )
    signable_poll_attempts: int = Field(
        default=60, description="Max polls while waiting for a signable transaction"
    )
    http_timeout_seconds: float = Field(
        default=30.0, description="Timeout for provider HTTP calls"
    )
    stellar_network_passphrase: str = Field(
        default="Test SDF Network ; September 2015",
        description="Stellar network passphrase used when signing",
    )

    # ======================
    # Stellar test anchor
    # ======================
    testanchor_domain: str = Field(
        default="testanchor.stellar.org",
        description="Home domain of the SEP anchor behind /api/testanchor",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_sandbox(self) -> bool:
        """Sandbox-only provider operations are allowed outside production."""
        return not self.is_production

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "webhook_secret": "***" if self.webhook_secret else "(not set)",
            "anchors": {
                "etherfuse": {
                    "base_url": self.etherfuse_base_url,
                    "api_key": "***" if self.etherfuse_api_key else "(not set)",
                },
                "alfredpay": {
                    "base_url": self.alfredpay_base_url,
                    "api_key": "***" if self.alfredpay_api_key else "(not set)",
                },
                "blindpay": {
                    "base_url": self.blindpay_base_url,
                    "instance_id": self.blindpay_instance_id or "(not set)",
                    "network": self.blindpay_network,
                    "api_key": "***" if self.blindpay_api_key else "(not set)",
                },
            },
            "polling": {
                "interval_seconds": self.poll_interval_seconds,
                "signable_attempts": self.signable_poll_attempts,
            },
            "testanchor_domain": self.testanchor_domain,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
