"""Tests for application settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.core.config import MAX_ERASURE_GRACE_DAYS, Settings, get_settings


class TestSettings:
    def test_database_url_built_from_components(self) -> None:
        settings = Settings(
            database_url=None,
            postgres_user="u",
            postgres_password="p",
            postgres_host="db",
            postgres_port=6543,
            postgres_db="radar",
        )
        assert settings.database_url == "postgresql+asyncpg://u:p@db:6543/radar"

    def test_explicit_database_url_kept(self) -> None:
        settings = Settings(database_url="sqlite+aiosqlite:///tmp.db")
        assert settings.database_url == "sqlite+aiosqlite:///tmp.db"

    def test_cors_origins_from_comma_string(self) -> None:
        settings = Settings(cors_origins="http://a.example, http://b.example")
        assert settings.cors_origins == ["http://a.example", "http://b.example"]

    def test_cors_origins_from_json_string(self) -> None:
        settings = Settings(cors_origins='["http://a.example"]')
        assert settings.cors_origins == ["http://a.example"]

    def test_jwt_verification_keys_rotation(self) -> None:
        settings = Settings(jwt_secret_key="single", jwt_secret_keys="new, old,")
        assert settings.jwt_verification_keys == ["new", "old"]
        assert Settings(jwt_secret_key="single").jwt_verification_keys == ["single"]

    def test_erasure_grace_bounded(self) -> None:
        assert Settings(erasure_grace_days=0).erasure_grace_days == 0
        assert Settings(erasure_grace_days=MAX_ERASURE_GRACE_DAYS).erasure_grace_days == MAX_ERASURE_GRACE_DAYS
        with pytest.raises(ValidationError):
            Settings(erasure_grace_days=MAX_ERASURE_GRACE_DAYS + 1)
        with pytest.raises(ValidationError):
            Settings(erasure_grace_days=-1)

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()
