"""Pipeline configuration settings.

All configuration values are loaded from environment variables (.env file).
Defaults describe a single-host deployment with ffmpeg on PATH.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class QualityPresetSetting(BaseModel):
    """One entry of a quality catalog override (QUALITY_PRESETS)."""

    name: str
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    video_bitrate_kbps: int = Field(..., gt=0)
    max_bitrate_kbps: int = Field(..., gt=0)
    buffer_size_kbps: int = Field(..., gt=0)
    audio_bitrate_kbps: int = Field(..., gt=0)
    encoder_profile: str = "main"
    encoder_level: str = "3.1"


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "ABR Transcoding Pipeline"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # External tools
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    FFMPEG_THREADS: int = Field(default=0, ge=0)  # 0 lets ffmpeg decide
    FFMPEG_LOGLEVEL: str = "error"
    X264_PRESET: str = "medium"

    # Packaging
    SEGMENT_DURATION_SECONDS: int = Field(default=6, ge=1)

    # Encoding worker pool, shared by every job in the process
    WORKER_POOL_SIZE: int = Field(default=2, ge=1)

    # Per-process timeouts
    PROBE_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    ENCODE_TIMEOUT_SECONDS: float = Field(default=3600.0, gt=0)
    FRAME_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0)

    # Rendition retry policy
    RENDITION_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RENDITION_RETRY_INITIAL_DELAY: float = Field(default=2.0, ge=0)
    RENDITION_RETRY_MAX_DELAY: float = Field(default=60.0, ge=0)
    RENDITION_RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1.0)
    RENDITION_RETRY_JITTER: bool = True

    # Preview images
    THUMBNAIL_WIDTH: int = 400
    THUMBNAIL_HEIGHT: int = 225
    POSTER_WIDTH: int = 1280
    POSTER_HEIGHT: int = 720
    PREVIEW_JPEG_QUALITY: int = Field(default=2, ge=2, le=31)  # ffmpeg -q:v scale
    PREVIEWS_DURING_ENCODING: bool = True

    # Status tracking
    STATUS_HISTORY_LIMIT: int = Field(default=256, ge=1)
    JOB_RETENTION_SECONDS: float = Field(default=3600.0, ge=0)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Optional override of the built-in quality catalog (JSON list)
    QUALITY_PRESETS: Optional[list[QualityPresetSetting]] = None

    @field_validator("WORKER_POOL_SIZE")
    @classmethod
    def clamp_pool_to_cores(cls, value: int) -> int:
        """Encodes are CPU-bound; never run more of them than there are cores."""
        cores = os.cpu_count() or 1
        return min(value, cores)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
