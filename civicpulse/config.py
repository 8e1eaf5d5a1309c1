"""
Configuration for CivicPulse Service
====================================

Environment variables:
- VERIFIER_WEBHOOK_URL: Before/after image verification webhook
- NOTIFIER_WEBHOOK_URL: Resolution notification webhook
- CATEGORIZER_WEBHOOK_URL: Image categorization webhook (optional)
- GEOCODER_URL: Nominatim-compatible reverse geocoding endpoint
- GEOCODER_ENABLED: Look up the area for new issues (default: true)
- WEBHOOK_TIMEOUT_SECONDS: Timeout for every outbound call (default: 30)
- MEDIA_ROOT / MEDIA_BASE_URL: Local image storage location and public URL
- CORS_ALLOW_ORIGINS: Comma separated list of allowed origins

Database and JWT settings are read by db/session.py and auth.py.
"""

from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # External collaborators
    verifier_webhook_url: Optional[str] = None
    notifier_webhook_url: Optional[str] = None
    categorizer_webhook_url: Optional[str] = None
    geocoder_url: str = "https://nominatim.openstreetmap.org/reverse"
    geocoder_enabled: bool = True
    geocoder_user_agent: str = "civicpulse-service/1.0"

    # Timeouts (seconds)
    webhook_timeout_seconds: float = 30.0

    # Image storage
    media_root: str = "./media"
    media_base_url: str = "/media"
    max_images_per_upload: int = 10
    allowed_image_extensions: str = "jpeg,jpg,png"

    # HTTP
    cors_allow_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:8000"

    # Service info
    service_version: str = "1.0.0"

    @property
    def image_extensions(self) -> List[str]:
        return [e.strip().lower().lstrip(".") for e in self.allowed_image_extensions.split(",") if e.strip()]

    def validate_webhook_config(self) -> List[str]:
        """Validate collaborator configuration, return list of warnings"""
        warnings = []

        if not self.verifier_webhook_url:
            warnings.append("VERIFIER_WEBHOOK_URL not set - issues cannot be resolved")
        if not self.notifier_webhook_url:
            warnings.append("NOTIFIER_WEBHOOK_URL not set - issues cannot be resolved")
        if not self.categorizer_webhook_url:
            warnings.append("CATEGORIZER_WEBHOOK_URL not set - using keyword categorization")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
