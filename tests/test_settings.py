"""Tests for odin.storage.settings — typed settings store and token persistence."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from odin.errors import SettingsError
from odin.storage.connection import get_connection
from odin.storage.schema import init_db
from odin.storage.settings import (
    DEFAULT_SYNC_INTERVAL_MINUTES,
    AcledToken,
    get_settings,
    public_settings,
    save_acled_token,
    update_settings,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    init_db(path)
    return path


def _token(**overrides) -> AcledToken:
    values = {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "access_expires_at": NOW + timedelta(hours=1),
        "refresh_expires_at": NOW + timedelta(days=14),
    }
    values.update(overrides)
    return AcledToken(**values)


def test_defaults_after_init(db_path):
    settings = get_settings(db_path)
    assert settings.acled_email == ""
    assert settings.acled_token is None
    assert settings.sync_interval_minutes == DEFAULT_SYNC_INTERVAL_MINUTES
    assert settings.sipri_csv_path == ""


def test_init_seeds_interval_only_once(tmp_path):
    path = str(tmp_path / "seed.db")
    init_db(path, sync_interval_minutes=30)
    init_db(path, sync_interval_minutes=90)
    assert get_settings(path).sync_interval_minutes == 30


def test_update_writes_known_keys(db_path):
    update_settings(db_path, {"acled_email": "a@example.com", "sync_interval_minutes": 120})
    settings = get_settings(db_path)
    assert settings.acled_email == "a@example.com"
    assert settings.sync_interval_minutes == 120


class TestUpdateValidation:
    def test_unknown_key_rejects_whole_write(self, db_path):
        with pytest.raises(SettingsError, match="theme"):
            update_settings(db_path, {"acled_email": "a@example.com", "theme": "dark"})
        assert get_settings(db_path).acled_email == ""

    def test_token_keys_are_not_writable(self, db_path):
        with pytest.raises(SettingsError):
            update_settings(db_path, {"acled_access_token": "forged"})

    @pytest.mark.parametrize("value", [0, -5, "60", True])
    def test_interval_must_be_positive_int(self, db_path, value):
        with pytest.raises(SettingsError):
            update_settings(db_path, {"sync_interval_minutes": value})

    def test_string_keys_reject_non_strings(self, db_path):
        with pytest.raises(SettingsError):
            update_settings(db_path, {"ucdp_api_key": 1234})


class TestAcledToken:
    def test_round_trip(self, db_path):
        token = _token()
        save_acled_token(db_path, token)
        assert get_settings(db_path).acled_token == token

    def test_clear(self, db_path):
        save_acled_token(db_path, _token())
        save_acled_token(db_path, None)
        assert get_settings(db_path).acled_token is None

    def test_access_expiry_clamped_to_refresh_expiry(self):
        token = _token(
            access_expires_at=NOW + timedelta(days=30),
            refresh_expires_at=NOW + timedelta(days=14),
        )
        assert token.access_expires_at == token.refresh_expires_at

    def test_expired_once_refresh_lapses(self):
        token = _token()
        assert not token.is_expired(NOW)
        assert token.is_expired(NOW + timedelta(days=14))

    def test_malformed_stored_expiry_reads_as_absent(self, db_path):
        save_acled_token(db_path, _token())
        with get_connection(db_path) as conn:
            conn.execute(
                "UPDATE settings SET value = '\"not-a-date\"' WHERE key = 'acled_token_expiry'"
            )
        assert get_settings(db_path).acled_token is None


def test_public_settings_hide_secrets(db_path):
    update_settings(
        db_path,
        {"acled_email": "a@example.com", "acled_password": "hunter2", "ucdp_api_key": "k"},
    )
    save_acled_token(db_path, _token())
    public = public_settings(get_settings(db_path))
    assert public["acled_has_password"] is True
    assert public["ucdp_has_api_key"] is True
    assert "hunter2" not in str(public)
    assert "access-1" not in str(public)
