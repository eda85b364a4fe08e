# image_transformer/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal
from urllib.parse import urlsplit


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080

    # Output
    # "source" re-encodes into the sniffed input format when ?format= is absent
    default_output_format: Literal["source", "jpeg", "png", "webp", "avif"] = "webp"
    cache_max_age_seconds: int = 60 * 60 * 24 * 365  # outputs are deterministic in the query
    jpeg_quality: int = 75
    webp_quality: int = 75
    avif_quality: int = 60

    # Upstream fetch
    # Optional second-hop fetch endpoint (e.g. https://proxy.example.com/proxy/).
    # When set, the target URL is passed as ?url= and Referer/Origin are left
    # to the proxy.
    image_proxy_endpoint: str | None = None
    fetch_timeout_seconds: float = 30.0
    fetch_connect_timeout_seconds: float = 10.0
    max_source_size_mb: int = 25

    # Codecs
    max_image_pixels_millions: int = 50  # Pillow decompression-bomb ceiling
    warm_codecs_on_startup: bool = True

    # HTTP surface
    allowed_origins: list[str] = ["*"]
    enable_request_logging: bool = True
    enable_metrics: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def max_source_size_bytes(self) -> int:
        return self.max_source_size_mb * 1024 * 1024

    @property
    def max_image_pixels(self) -> int:
        return self.max_image_pixels_millions * 1_000_000

    def validate_required_for_production(self) -> list[str]:
        """Return settings that make a production deployment unusable"""
        if not self.is_production:
            return []

        problems = []
        if self.image_proxy_endpoint and not _is_http_url(self.image_proxy_endpoint):
            problems.append("image_proxy_endpoint")
        for field_name in ("jpeg_quality", "webp_quality", "avif_quality"):
            if not 1 <= getattr(self, field_name) <= 100:
                problems.append(field_name)
        return problems


def _is_http_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.image_proxy_endpoint and not _is_http_url(s.image_proxy_endpoint):
        warnings.append(
            "image_proxy_endpoint is not an absolute http(s) URL; every fetch will fail."
        )

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.cache_max_age_seconds <= 0:
        warnings.append("cache_max_age_seconds <= 0: responses will not be cached downstream.")

    if s.max_image_pixels_millions > 100:
        warnings.append(
            f"max_image_pixels_millions={s.max_image_pixels_millions}: "
            "large decode ceiling weakens decompression-bomb protection."
        )

    return warnings


def validate_or_warn(s: "Settings") -> list[str]:
    """
    In prod: enforce required settings (hard fail).
    In all envs: return warnings for the caller to log.
    """
    missing = s.validate_required_for_production()
    if missing:
        raise RuntimeError(f"Invalid settings for production: {', '.join(missing)}")

    return warn_on_risky_config(s)


settings = Settings()
