"""Application configuration for the thumbnail resolver service."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class ResolverSettings(BaseSettings):
    """Runtime settings for the resolver API, built once at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    sizes: dict[str, str] = Field(default_factory=dict, validation_alias="PIXCACHE_SIZES")
    signing_secret: SecretStr = env_field(..., "PIXCACHE_SIGNING_SECRET")
    s3_bucket: Optional[str] = env_field(None, "PIXCACHE_S3_BUCKET")
    s3_region: Optional[str] = env_field(None, "PIXCACHE_S3_REGION")
    s3_endpoint_url: Optional[str] = env_field(None, "PIXCACHE_S3_ENDPOINT")
    s3_access_key_id: Optional[str] = env_field(None, "PIXCACHE_S3_ACCESS_KEY_ID")
    s3_secret_access_key: Optional[SecretStr] = env_field(None, "PIXCACHE_S3_SECRET_ACCESS_KEY")
    s3_storage_class: str = env_field("REDUCED_REDUNDANCY", "PIXCACHE_S3_STORAGE_CLASS")
    storage_path: Optional[Path] = env_field(None, "PIXCACHE_STORAGE_PATH")
    transform_crop: bool = env_field(False, "PIXCACHE_TRANSFORM_CROP")
    transform_quality: int = env_field(85, "PIXCACHE_TRANSFORM_QUALITY")
    cache_max_age: int = env_field(86400, "PIXCACHE_CACHE_MAX_AGE")
    origin_timeout_seconds: float = env_field(10.0, "PIXCACHE_ORIGIN_TIMEOUT")
    persist_queue_size: int = env_field(256, "PIXCACHE_PERSIST_QUEUE_SIZE")
    persist_workers: int = env_field(2, "PIXCACHE_PERSIST_WORKERS")
    persist_drain_timeout: float = env_field(10.0, "PIXCACHE_PERSIST_DRAIN_TIMEOUT")
    host: str = env_field("0.0.0.0", "PIXCACHE_HOST")
    port: int = env_field(8080, "PIXCACHE_PORT")
    metrics_token: Optional[SecretStr] = env_field(None, "PIXCACHE_METRICS_TOKEN")
    log_level: str = env_field("INFO", "PIXCACHE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "PIXCACHE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "PIXCACHE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "PIXCACHE_OTEL_SAMPLER_RATIO")

    @field_validator("s3_bucket", "s3_region", "s3_endpoint_url", "s3_access_key_id", mode="before")
    @classmethod
    def _blank_as_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("storage_path", mode="before")
    @classmethod
    def _blank_path_as_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("transform_quality")
    @classmethod
    def _check_quality(cls, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError("transform quality must be between 1 and 100")
        return value

    @property
    def caching_enabled(self) -> bool:
        return bool(self.s3_bucket) or self.storage_path is not None
