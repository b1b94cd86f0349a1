"""Application Settings - Central Configuration"""
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "formsync_dev"

    # Airtable OAuth client
    airtable_client_id: str = ""
    airtable_client_secret: str = ""
    airtable_redirect_uri: str = "http://localhost:8000/api/v1/auth/airtable/callback"
    airtable_auth_url: str = "https://airtable.com/oauth2/v1/authorize"
    airtable_token_url: str = "https://airtable.com/oauth2/v1/token"
    airtable_api_base_url: str = "https://api.airtable.com/v0"
    airtable_scopes: str = "data.records:read data.records:write schema.bases:read webhook:manage"

    # Pending authorization (PKCE state) lifetime
    auth_state_ttl_seconds: int = 600

    # Session tokens issued after the OAuth callback
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expires_days: int = 7

    # Fernet key(s) for Airtable tokens at rest, comma-separated, newest first
    encryption_key: str = ""

    # Outbound HTTP
    http_timeout_seconds: float = 15.0

    # Webhooks (change-notification subscriptions)
    webhook_base_url: str = "http://localhost:8000"
    require_webhook_signature: bool = False
    subscription_renewal_threshold_days: int = 6
    subscription_max_errors: int = 3

    # Scheduler
    scheduler_enabled: bool = True
    sweep_hour: int = 2  # Daily renewal sweep, UTC
    sweep_concurrency: int = 1

    # Forms
    strict_rule_dependencies: bool = False

    # Logging
    logs_path: str = "./logs"
    log_level: str = "INFO"

    # CORS - set to "*" to allow all origins
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Frontend URL (OAuth redirects)
    frontend_url: str = "http://localhost:5173"

    # Environment
    environment: str = "development"
    debug: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string to list"""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def encryption_keys(self) -> List[str]:
        """Parse encryption keys string to list"""
        return [key.strip() for key in self.encryption_key.split(",") if key.strip()]

    @property
    def airtable_scopes_list(self) -> List[str]:
        """Parse OAuth scopes string to list"""
        return self.airtable_scopes.split()

    @property
    def webhook_notification_url(self) -> str:
        """Public URL Airtable posts change notifications to"""
        return f"{self.webhook_base_url.rstrip('/')}/api/v1/webhooks/airtable"

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
