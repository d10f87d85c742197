# FILE: capsule/config.py
"""
Configuration management for the Memory Capsule backend
Loads from environment variables with validation
"""
import os
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True
    )

    # Backend server
    backend_host: str = Field(default="0.0.0.0", alias="BACKEND_HOST")
    backend_port: int = Field(default=8787, alias="BACKEND_PORT")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Data paths
    data_dir: str = Field(default="./data", alias="DATA_DIR")
    metadata_dir: str = Field(default="./data/memories", alias="METADATA_DIR")
    logs_dir: str = Field(default="./logs", alias="LOGS_DIR")

    # Blob storage (S3-compatible, Cloudflare R2 by default)
    r2_account_id: Optional[str] = Field(default=None, alias="R2_ACCOUNT_ID")
    r2_access_key_id: Optional[str] = Field(default=None, alias="R2_ACCESS_KEY_ID")
    r2_secret_access_key: Optional[str] = Field(default=None, alias="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: Optional[str] = Field(default=None, alias="R2_BUCKET_NAME")
    r2_public_url: Optional[str] = Field(default=None, alias="R2_PUBLIC_URL")
    s3_endpoint_url: Optional[str] = Field(
        default=None,
        alias="S3_ENDPOINT_URL",
        description="Explicit S3 endpoint. When unset, the R2 endpoint is derived from R2_ACCOUNT_ID."
    )
    s3_region: str = Field(default="auto", alias="S3_REGION")
    upload_url_ttl_seconds: int = Field(default=360, alias="UPLOAD_URL_TTL_SECONDS")
    allowed_upload_types: List[str] = Field(default=["image/"], alias="ALLOWED_UPLOAD_TYPES")

    # Memory records
    code_length: int = Field(default=8, alias="CODE_LENGTH")
    code_max_attempts: int = Field(default=20, alias="CODE_MAX_ATTEMPTS")
    max_gallery_images: int = Field(default=5, alias="MAX_GALLERY_IMAGES")
    max_list_codes: int = Field(default=100, alias="MAX_LIST_CODES")
    verify_uploads: bool = Field(
        default=False,
        alias="VERIFY_UPLOADS",
        description="HEAD every newly referenced image before accepting it into a record"
    )

    # Telemetry
    telemetry_enabled: bool = Field(default=True, alias="TELEMETRY_ENABLED")
    telemetry_timezone: str = Field(default="UTC", alias="TELEMETRY_TIMEZONE")
    telemetry_retention_days: int = Field(default=30, alias="TELEMETRY_RETENTION_DAYS")

    # Security
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_rpm: int = Field(default=120, alias="RATE_LIMIT_RPM")
    trust_forwarded_for: bool = Field(
        default=False,
        alias="TRUST_FORWARDED_FOR",
        description="Key rate limits on X-Forwarded-For; enable only behind a proxy that sets it"
    )
    body_size_limit_kb: int = Field(default=256, alias="BODY_SIZE_LIMIT_KB")

    # CORS
    cors_origins: List[str] = Field(default=["*"], alias="CORS_ORIGINS")

    # Validators
    @field_validator("code_length")
    @classmethod
    def validate_code_length(cls, v):
        # The alphabet holds each digit twice, so 20 symbols at most
        if not 4 <= v <= 20:
            raise ValueError("code_length must be between 4 and 20")
        return v

    @field_validator("code_max_attempts")
    @classmethod
    def validate_code_max_attempts(cls, v):
        if not 1 <= v <= 100:
            raise ValueError("code_max_attempts must be between 1 and 100")
        return v

    @field_validator("max_gallery_images", "max_list_codes", "upload_url_ttl_seconds")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("value must be a positive integer")
        return v

    @field_validator("upload_url_ttl_seconds")
    @classmethod
    def validate_upload_ttl(cls, v):
        if v > 3600:
            raise ValueError("upload_url_ttl_seconds should stay within minutes, not hours")
        return v

    @property
    def resolved_s3_endpoint(self) -> Optional[str]:
        """S3 endpoint URL, derived from the R2 account when not set explicitly"""
        if self.s3_endpoint_url:
            return self.s3_endpoint_url
        if self.r2_account_id:
            return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"
        return None

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure directories exist
        for dir_path in [self.data_dir, self.metadata_dir, self.logs_dir]:
            os.makedirs(dir_path, exist_ok=True)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create singleton settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings (useful for testing)"""
    global _settings
    _settings = None
    return get_settings()
