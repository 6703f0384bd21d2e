from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./adboard.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Submission rules
    MAX_ADS_PER_PHONE: int = 2
    MAX_IMAGE_BYTES: int = 2 * 1024 * 1024
    REJECT_UNKNOWN_CATEGORIES: bool = True
    # ISO region (e.g. "GB") for phone numbers typed without a +country code;
    # unset means every number must carry one
    PHONE_REGION: Optional[str] = None

    # Cloudinary asset host - used only when all three credentials are set
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_FOLDER: str = "free-ad-site-uploads"
    CLOUDINARY_MAX_WIDTH: int = 1000

    # Local asset store fallback, served under /uploads
    UPLOADS_DIR: str = "./uploads"

    @property
    def cloudinary_enabled(self) -> bool:
        return bool(
            self.CLOUDINARY_CLOUD_NAME
            and self.CLOUDINARY_API_KEY
            and self.CLOUDINARY_API_SECRET
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
