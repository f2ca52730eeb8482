"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "RFI Evaluation Tracker"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Database
    POSTGRES_USER: str = "rfitracker"
    POSTGRES_PASSWORD: str = "rfitracker"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "rfitracker"
    DATABASE_URL: Optional[str] = Field(None, validate_default=True)

    # Redis (chat notification fan-out queue)
    REDIS_URL: str = "redis://redis:6379/0"
    NOTIFICATION_FANOUT_MODE: str = "inline"  # inline, queue

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60

    # Chat stream timing (seconds)
    CHAT_MESSAGE_CHECK_INTERVAL: float = 1.0
    CHAT_HEARTBEAT_INTERVAL: float = 15.0
    CHAT_CONNECTION_MAX_AGE: float = 120.0

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Demo seeding - MUST be false in production
    SEED_DEMO: bool = False

    # Admin bootstrap - only used if no users exist in database
    ADMIN_BOOTSTRAP_EMAIL: Optional[str] = None
    ADMIN_BOOTSTRAP_PASSWORD: Optional[str] = None

    # Registration control
    ALLOW_PUBLIC_REGISTRATION: bool = True

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "rfitracker")
        password = data.get("POSTGRES_PASSWORD", "rfitracker")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "rfitracker")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Reject weak SECRET_KEY in production, warn in development."""
        weak_keys = {
            "your-secret-key-change-in-production",
            "change-me-in-production",
            "secret",
            "changeme",
        }
        is_weak = v in weak_keys or len(v) < 32
        if is_weak:
            if not info.data.get("DEBUG", False):
                raise ValueError(
                    "SECRET_KEY is weak or default. "
                    "Generate a strong key with: openssl rand -hex 32"
                )
            import warnings
            warnings.warn(
                "SECRET_KEY is weak or default! Set a strong key before deploying.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator('SEED_DEMO')
    @classmethod
    def validate_seed_demo(cls, v: bool, info) -> bool:
        """Prevent demo seeding in production."""
        if v and not info.data.get("DEBUG", False):
            raise ValueError(
                "SEED_DEMO=true is not allowed when DEBUG=false. "
                "Demo seeding creates predictable credentials."
            )
        return v

    @field_validator('NOTIFICATION_FANOUT_MODE')
    @classmethod
    def validate_fanout_mode(cls, v: str) -> str:
        if v not in ("inline", "queue"):
            raise ValueError("NOTIFICATION_FANOUT_MODE must be 'inline' or 'queue'")
        return v


settings = Settings()
