# tests/test_security.py
import pytest
from passlib.hash import pbkdf2_sha256

from sheetsync.core.config import settings
from sheetsync.core.exceptions import ConfigurationError, SecurityError
from sheetsync.core.security import get_config_value, validate_secret_code
from sheetsync.models.tables import CONFIG_SHEET


@pytest.fixture
def config_sheet(store, monkeypatch):
    monkeypatch.setattr(settings, "APP_CODE", None)
    monkeypatch.setattr(settings, "APP_CODE_HASH", None)
    sheet = store.create_sheet(CONFIG_SHEET, ["name", "value", "description"])
    sheet.append_rows([["APP_CODE", "s3cret", None], ["OTHER", 42, None]])
    return sheet


def test_get_config_value(store, config_sheet):
    assert get_config_value(store, "APP_CODE") == "s3cret"
    assert get_config_value(store, "OTHER") == "42"
    assert get_config_value(store, "MISSING") is None


def test_secret_from_config_sheet(store, config_sheet):
    assert validate_secret_code("s3cret", store) is True
    with pytest.raises(SecurityError, match="Invalid secret code"):
        validate_secret_code("wrong", store)
    with pytest.raises(SecurityError):
        validate_secret_code(None, store)


def test_numeric_secret_matches_text(store, config_sheet):
    config_sheet.set_rows(0, [["APP_CODE", 1234, None]])
    assert validate_secret_code(1234, store) is True


def test_placeholder_counts_as_unconfigured(store, config_sheet):
    config_sheet.set_rows(0, [["APP_CODE", "CHANGE_ME_1700000000000", None]])
    with pytest.raises(ConfigurationError, match="APP_CODE not configured"):
        validate_secret_code("CHANGE_ME_1700000000000", store)


def test_missing_config_sheet(store, monkeypatch):
    monkeypatch.setattr(settings, "APP_CODE", None)
    monkeypatch.setattr(settings, "APP_CODE_HASH", None)
    with pytest.raises(ConfigurationError):
        validate_secret_code("anything", store)


def test_settings_app_code_wins(store, config_sheet, monkeypatch):
    monkeypatch.setattr(settings, "APP_CODE", "from-env")
    assert validate_secret_code("from-env", store) is True
    with pytest.raises(SecurityError):
        validate_secret_code("s3cret", store)


def test_hashed_app_code(store, monkeypatch):
    monkeypatch.setattr(settings, "APP_CODE_HASH", pbkdf2_sha256.hash("hashed-code"))
    assert validate_secret_code("hashed-code", store) is True
    with pytest.raises(SecurityError):
        validate_secret_code("other", store)
