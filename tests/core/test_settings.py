"""Tests for ``pnp_ingest.core.settings``: env parsing and the bypass flag."""

from __future__ import annotations

import pytest

from pnp_ingest.core.settings import IngestSettings


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("PNP_ENCRYPTION_KEYS", "PNP_DATABASE_URL", "PNP_WORKERS", "BYPASS_LOCAL_STORAGE"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def _settings() -> IngestSettings:
    return IngestSettings(_env_file=None)


class TestDefaults:
    def test_defaults(self, clean_env):
        settings = _settings()
        assert settings.encryption_keys == []
        assert settings.retry_delay_seconds == 5.0
        assert settings.db_timeout_seconds == 30.0
        assert settings.workers == 4
        assert settings.bypass_local_storage is False
        assert settings.dead_letter_permanent is True
        assert settings.heartbeat_service == "pnp-api-oss"

    def test_kwargs(self, clean_env):
        settings = IngestSettings(_env_file=None, encryption_keys=["k1"], workers=8)
        assert settings.key_material() == [b"k1"]
        assert settings.workers == 8

    def test_workers_must_be_positive(self, clean_env):
        with pytest.raises(ValueError):
            IngestSettings(_env_file=None, workers=0)


class TestEncryptionKeys:
    def test_comma_separated(self, clean_env):
        clean_env.setenv("PNP_ENCRYPTION_KEYS", "primary, old ,")
        assert _settings().key_material() == [b"primary", b"old"]

    def test_json_list(self, clean_env):
        clean_env.setenv("PNP_ENCRYPTION_KEYS", '["a", "b"]')
        assert _settings().key_material() == [b"a", b"b"]

    def test_secret_not_in_repr(self, clean_env):
        clean_env.setenv("PNP_ENCRYPTION_KEYS", "super-secret")
        assert "super-secret" not in repr(_settings())


class TestBypassLocalStorage:
    def test_unprefixed_env_name(self, clean_env):
        clean_env.setenv("BYPASS_LOCAL_STORAGE", "true")
        assert _settings().bypass_local_storage is True

    @pytest.mark.parametrize("value", ["TRUE", "True", "1", "yes", "false", ""])
    def test_only_literal_true_enables(self, clean_env, value):
        """Anything but the exact string ``true`` keeps the database on."""
        clean_env.setenv("BYPASS_LOCAL_STORAGE", value)
        assert _settings().bypass_local_storage is False


class TestEnvOverrides:
    def test_prefixed(self, clean_env):
        clean_env.setenv("PNP_DATABASE_URL", "sqlite:///tmp.db")
        clean_env.setenv("PNP_WORKERS", "2")
        settings = _settings()
        assert settings.database_url == "sqlite:///tmp.db"
        assert settings.workers == 2
