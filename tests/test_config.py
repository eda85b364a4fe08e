# tests/test_config.py
"""Tests for image_transformer/config.py"""
from __future__ import annotations

import pytest

from image_transformer.config import Settings, validate_or_warn


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettingsDefaults:
    def test_defaults(self):
        s = _settings()
        assert s.default_output_format == "webp"
        assert s.cache_max_age_seconds == 31536000
        assert s.image_proxy_endpoint is None
        assert s.max_source_size_bytes == 25 * 1024 * 1024
        assert s.max_image_pixels == 50_000_000

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("IMAGE_PROXY_ENDPOINT", "https://proxy.example.com/proxy/")
        monkeypatch.setenv("DEFAULT_OUTPUT_FORMAT", "source")
        s = Settings(_env_file=None)
        assert s.image_proxy_endpoint == "https://proxy.example.com/proxy/"
        assert s.default_output_format == "source"

    def test_staging_is_not_production(self):
        s = _settings(app_env="staging")
        assert s.is_production is False
        assert not hasattr(s, "is_staging")

    def test_invalid_output_format(self):
        with pytest.raises(ValueError):
            _settings(default_output_format="gif")


class TestValidateOrWarn:
    def test_clean_dev_config(self):
        assert validate_or_warn(_settings()) == []

    def test_relative_proxy_warns(self):
        warnings = validate_or_warn(_settings(image_proxy_endpoint="/proxy/"))
        assert any("image_proxy_endpoint" in w for w in warnings)

    def test_open_cors_in_prod_warns(self):
        warnings = validate_or_warn(_settings(app_env="prod"))
        assert any("allowed_origins" in w for w in warnings)

    def test_prod_rejects_bad_proxy(self):
        with pytest.raises(RuntimeError, match="image_proxy_endpoint"):
            validate_or_warn(_settings(app_env="prod", image_proxy_endpoint="ftp://proxy"))

    def test_prod_rejects_bad_quality(self):
        with pytest.raises(RuntimeError, match="webp_quality"):
            validate_or_warn(_settings(app_env="prod", webp_quality=0))
