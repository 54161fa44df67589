"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./tenant_guard.db"

    # Monitoring
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0

    # Set to True when running behind a proxy that sets X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Links in outbound mail
    FRONTEND_URL: str = "http://localhost:3000"
    MFA_ISSUER: str = "Tenant Guard"

    # Invitations
    INVITATION_EXPIRY_HOURS: int = 72
    INVITE_RESEND_COOLDOWN_MINUTES: int = 5
    MAX_INVITE_RESENDS: int = 3

    # Sessions
    SESSION_IDLE_TIMEOUT_MINUTES: int = 15
    SESSION_MAX_LIFETIME_HOURS: int = 24
    SESSION_INACTIVITY_PURGE_DAYS: int = 30

    # Lockout
    LOCKOUT_MAX_FAILED_ATTEMPTS: int = 5
    LOCKOUT_WINDOW_MINUTES: int = 60
    LOCKOUT_RESET_ON_SUCCESS: bool = False  # Only count failures after the latest success
    MASK_ACCOUNT_LOCKED: bool = False  # Render AccountLocked as InvalidCredentials to callers

    # Passwords
    PASSWORD_MIN_LENGTH: int = 12
    PASSWORD_HISTORY_DEPTH: int = 12
    PASSWORD_HISTORY_RETENTION_DAYS: int = 180

    # Retention
    AUDIT_RETENTION_DAYS: int = 90
    LOGIN_ATTEMPT_RETENTION_DAYS: int = 30

    # Outbound notifications
    NOTIFIER_MAX_WORKERS: int = 4

    @property
    def is_dev(self) -> bool:
        return self.ENV.lower() in ("dev", "development", "test")


settings = Settings()
