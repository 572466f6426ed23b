"""
Tests for per-environment connection settings
"""
import pytest

from gateway.connections.env_config import (
    ConnectionConfig, EnvConfigStore, mask_secret, normalize_env_settings
)
from gateway.core.crypto import ENCRYPTED_PREFIX, decrypt_value, encrypt_value
from gateway.core.errors import DatabaseConnectionError, ValidationError
from gateway.models.application import ApplicationSettings, Environment

PREVIEW_URL = "postgresql://user:pw@preview-host:5432/app"
PRODUCTION_URL = "postgresql://user:pw@production-host:5432/app"


class TestNormalizeEnvSettings:
    """Test flattening of stored settings shapes"""

    def test_per_environment_shape(self):
        raw = {"preview": {"DATABASE_URL": "a"}, "production": {"DATABASE_URL": "b"}}
        assert normalize_env_settings(raw, "preview") == {"DATABASE_URL": "a"}
        assert normalize_env_settings(raw, Environment.PRODUCTION) == {"DATABASE_URL": "b"}

    def test_per_environment_shape_missing_environment(self):
        assert normalize_env_settings({"preview": {"DATABASE_URL": "a"}}, "production") == {}

    def test_flat_shape_is_preview_only(self):
        raw = {"DATABASE_URL": "a", "JWT_SECRET": "s"}
        assert normalize_env_settings(raw, "preview") == raw
        assert normalize_env_settings(raw, "production") == {}

    @pytest.mark.parametrize("raw", [None, "text", 3, ["DATABASE_URL"]])
    def test_non_dict(self, raw):
        assert normalize_env_settings(raw, "preview") == {}


class TestCrypto:
    """Test secret encryption at rest"""

    def test_round_trip(self):
        stored = encrypt_value("secret")
        assert stored.startswith(ENCRYPTED_PREFIX)
        assert decrypt_value(stored) == "secret"

    def test_encrypt_is_idempotent(self):
        stored = encrypt_value("secret")
        assert encrypt_value(stored) == stored

    def test_legacy_plaintext_passes_through(self):
        assert decrypt_value(PREVIEW_URL) == PREVIEW_URL

    def test_undecryptable_value(self):
        assert decrypt_value(ENCRYPTED_PREFIX + "garbage") is None


class TestEnvConfigStore:
    """Test reading and saving connection settings"""

    def record(self, db_session, app_id):
        db_session.expire_all()
        return db_session.query(ApplicationSettings).filter_by(application_id=app_id).one()

    def test_not_configured(self, db_session):
        with pytest.raises(DatabaseConnectionError) as exc:
            EnvConfigStore(db_session).get_connection_config("unknown-app", "preview")
        assert isinstance(exc.value, ConnectionError)
        assert exc.value.status_code == 503

    def test_unknown_environment(self, db_session):
        with pytest.raises(ValidationError):
            EnvConfigStore(db_session).get_connection_config("app", "staging")

    def test_save_and_resolve(self, db_session):
        store = EnvConfigStore(db_session)
        store.save_connection_config("app-1", "preview", PREVIEW_URL, "jwt")

        config = store.get_connection_config("app-1", "preview")

        assert config == ConnectionConfig(
            application_id="app-1",
            environment=Environment.PREVIEW,
            connection_secret=PREVIEW_URL,
            secondary_secret="jwt"
        )

    def test_secrets_encrypted_at_rest(self, db_session):
        EnvConfigStore(db_session).save_connection_config("app-1", "preview", PREVIEW_URL, "jwt")

        stored = self.record(db_session, "app-1").env_settings
        assert stored["DATABASE_URL"].startswith(ENCRYPTED_PREFIX)
        assert PREVIEW_URL not in str(stored)

    def test_flat_record_updated_in_place_for_preview(self, db_session):
        store = EnvConfigStore(db_session)
        store.save_connection_config("app-1", "preview", PREVIEW_URL)
        store.save_connection_config("app-1", "preview", PREVIEW_URL + "2")

        stored = self.record(db_session, "app-1").env_settings
        assert "preview" not in stored
        assert store.get_connection_config("app-1", "preview").connection_secret == PREVIEW_URL + "2"

    def test_first_production_save_migrates_shape(self, db_session):
        store = EnvConfigStore(db_session)
        store.save_connection_config("app-1", "preview", PREVIEW_URL)
        store.save_connection_config("app-1", "production", PRODUCTION_URL)

        stored = self.record(db_session, "app-1").env_settings
        assert set(stored) == {"preview", "production"}
        assert store.get_connection_config("app-1", "preview").connection_secret == PREVIEW_URL
        assert store.get_connection_config("app-1", "production").connection_secret == PRODUCTION_URL

    def test_environments_are_isolated(self, db_session):
        store = EnvConfigStore(db_session)
        store.save_connection_config("app-1", "preview", PREVIEW_URL)

        with pytest.raises(DatabaseConnectionError):
            store.get_connection_config("app-1", "production")

    def test_legacy_plaintext_record(self, db_session):
        db_session.add(ApplicationSettings(
            application_id="legacy",
            env_settings={"DATABASE_URL": PREVIEW_URL}
        ))
        db_session.commit()

        config = EnvConfigStore(db_session).get_connection_config("legacy", "preview")
        assert config.connection_secret == PREVIEW_URL
        assert config.secondary_secret is None

    def test_provider_without_secondary_secret_is_incomplete(self, db_session):
        store = EnvConfigStore(db_session)
        store.save_connection_config("app-1", "preview", "postgresql://u:p@db.abc.supabase.co:5432/postgres")

        with pytest.raises(DatabaseConnectionError) as exc:
            store.get_connection_config("app-1", "preview")
        assert "incomplete" in exc.value.message

    def test_mask_secret(self):
        masked = mask_secret(PREVIEW_URL)
        assert "pw" not in masked
        assert "preview-host" in masked
        assert mask_secret(None) is None
