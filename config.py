"""
Application settings for the content-sharing backend.

All values come from the OS environment or a `.env` file next to this module.
Import the `settings` singleton instead of reading `os.getenv` directly.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).parent / ".env"


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = Field("", description="MongoDB connection string")
    DATABASE_NAME: str = Field("content_sharing", description="MongoDB database name")
    STORE_TIMEOUT_MS: int = Field(
        5000,
        description="Connect / server-selection / socket timeout for store calls (ms)",
    )

    # Sessions
    SECRET_KEY: str = Field("change-me", description="Signing key for session tokens")
    SESSION_ALGORITHM: str = Field("HS256")
    SESSION_TTL_DAYS: int = Field(7, description="Lifetime of a login session")
    COOKIE_NAME: str = Field("token")

    # Credentials
    BCRYPT_ROUNDS: int = Field(12)
    RESET_CODE_TTL_MINUTES: int = Field(15)
    RESET_CODE_DIGITS: int = Field(6)
    ADMIN_EMAIL: str = Field(
        "",
        description="Users registering with this email start out as admins",
    )

    # Runtime
    ENV: str = Field("dev", description="'dev' or 'prod'")
    LOG_LEVEL: str = Field("INFO")

    # Asset storage (Cloudinary)
    CLOUDINARY_CLOUD_NAME: str = Field("")
    CLOUDINARY_API_KEY: str = Field("")
    CLOUDINARY_API_SECRET: str = Field("")
    ASSET_FOLDER: str = Field("posts")
    ASSET_TIMEOUT_SECONDS: int = Field(30)

    @field_validator("ENV", mode="before")
    @classmethod
    def normalize_env(cls, v):
        return (v or "dev").strip().lower()

    @property
    def is_production(self) -> bool:
        return self.ENV == "prod"

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
