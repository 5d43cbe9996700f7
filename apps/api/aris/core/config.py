"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.04.00"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 8

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (for OAuth redirects back to the app)
    FRONTEND_URL: str = "http://localhost:3000"

    # Token Encryption (mail passwords, OAuth tokens, ERP keys, AI API keys)
    FERNET_KEY: str = ""

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60

    # AI (platform fallback when an org has not configured its own key)
    OPENAI_API_KEY: str = ""
    AI_DEFAULT_PROVIDER: str = "openai"
    AI_DEFAULT_MODEL: str = "gpt-4o-mini"

    # Microsoft Graph OAuth (Outlook / Microsoft 365 mailboxes)
    MICROSOFT_CLIENT_ID: str = ""
    MICROSOFT_CLIENT_SECRET: str = ""
    MICROSOFT_TENANT: str = "common"
    MICROSOFT_REDIRECT_URI: str = "http://localhost:8000/api/email-accounts/oauth/microsoft/callback"

    # Google OAuth (Gmail mailboxes)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = "http://localhost:8000/api/email-accounts/oauth/google/callback"

    # Email sync
    EMAIL_SYNC_DEFAULT_COUNT: int = 2500
    EMAIL_SYNC_BATCH_SIZE: int = 10
    EMAIL_CONTENT_CACHE_DAYS: int = 30

    # Job worker
    WORKER_POLL_INTERVAL_SECONDS: int = 10
    WORKER_BATCH_SIZE: int = 10

    # Follow-ups
    FOLLOWUP_DEFAULT_DAYS: int = 3

    # Billing provider webhooks
    SUBSCRIPTION_WEBHOOK_SECRET: str = ""

    # Metakocka ERP
    METAKOCKA_API_URL: str = "https://main.metakocka.si/rest/eshop/v1/json"
    METAKOCKA_TIMEOUT_SECONDS: float = 10.0

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only outside dev."""
        return self.ENV != "dev"


settings = Settings()
