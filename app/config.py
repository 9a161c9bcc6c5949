from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False

    # Database settings (worker records live in the users table)
    SUPABASE_DB_URL: str | None = None

    # Redis settings
    UPSTASH_REDIS_REST_URL: str | None = None
    UPSTASH_REDIS_REST_TOKEN: str | None = None

    # Session tokens are issued by the auth service; we only verify them
    SESSION_JWT_SECRET: str | None = None
    SESSION_JWT_AUDIENCE: str | None = None
    SESSION_COOKIE_NAME: str = "session"

    # Twilio / TaskRouter settings
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_VALIDATE_SIGNATURE: bool = False
    TASKROUTER_WORKSPACE_SID: str | None = None
    TASKROUTER_ACTIVITY_AVAILABLE_SID: str | None = None
    TASKROUTER_ACTIVITY_UNAVAILABLE_SID: str | None = None
    TASKROUTER_ACTIVITY_OFFLINE_SID: str | None = None

    # Voicemail fallback
    VOICEMAIL_QUEUE_NAME: str = "Voicemail"
    VOICEMAIL_CANCEL_REASON: str = "Redirected to voicemail"
    VOICEMAIL_MARKER_TTL_SECONDS: int = 3600

    # Voicemail notifications (Resend)
    RESEND_API_KEY: str | None = None
    VOICEMAIL_NOTIFICATION_EMAIL: str | None = None
    VOICEMAIL_SENDER: str = "Voicemail <voicemail@example.com>"

    # Presence stream
    SSE_KEEPALIVE_SECONDS: float = 30.0
    SSE_STALL_TIMEOUT_SECONDS: float = 90.0

    # Proxy handling
    TRUST_X_FORWARDED_FOR: bool = False
    TRUSTED_PROXY_IPS: list[str] = []

    # =================================================================
    # DATABASE POOL SETTINGS - Simple and configurable
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)

    def activity_sids(self) -> dict[str, str | None]:
        """Map presence states to TaskRouter activity SIDs."""
        return {
            "available": self.TASKROUTER_ACTIVITY_AVAILABLE_SID,
            "unavailable": self.TASKROUTER_ACTIVITY_UNAVAILABLE_SID,
            "offline": self.TASKROUTER_ACTIVITY_OFFLINE_SID,
        }

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
