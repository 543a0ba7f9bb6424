"""
Centralized Settings Management using Pydantic Settings
Configuration with environment variable support.
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache


POSE_BACKENDS = ("auto", "mediapipe", "simulated")
DOMINANT_SIDES = ("right", "left")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Use .env file for local development.
    """

    # Application
    APP_NAME: str = "ServeSense Motion Analysis API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Environment: development, staging, production")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_JSON: bool = Field(default=False, description="Emit JSON logs (production)")
    LOG_FILE: Optional[str] = Field(default=None, description="Optional JSON log file")

    # CORS
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed origins"
    )
    CORS_ALLOW_CREDENTIALS: bool = False

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_ANALYZE: str = "20/hour"
    RATE_LIMIT_GLOBAL: str = "200/hour"

    # File Upload
    MAX_VIDEO_SIZE_MB: int = 200
    UPLOAD_DIR: str = "./data/uploads"
    SESSIONS_DIR: str = "./data/sessions"

    # Analysis
    POSE_BACKEND: str = Field(default="auto", description="auto, mediapipe or simulated")
    DOMINANT_SIDE: str = Field(default="right", description="Racket arm: right or left")

    @property
    def allowed_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def max_video_size_bytes(self) -> int:
        """Get max video size in bytes"""
        return self.MAX_VIDEO_SIZE_MB * 1024 * 1024

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    @field_validator("POSE_BACKEND")
    @classmethod
    def validate_pose_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in POSE_BACKENDS:
            raise ValueError(f"POSE_BACKEND must be one of {', '.join(POSE_BACKENDS)}")
        return v

    @field_validator("DOMINANT_SIDE")
    @classmethod
    def validate_dominant_side(cls, v: str) -> str:
        v = v.lower()
        if v not in DOMINANT_SIDES:
            raise ValueError(f"DOMINANT_SIDE must be one of {', '.join(DOMINANT_SIDES)}")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once per process.
    """
    return Settings()


# Convenience function for direct access
settings = get_settings()
