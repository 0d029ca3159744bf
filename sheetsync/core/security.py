# sheetsync/core/security.py
import logging
import secrets
from typing import Optional

from passlib.context import CryptContext

from sheetsync.core.config import settings
from sheetsync.core.exceptions import SecurityError, ConfigurationError
from sheetsync.core.store import RecordStore, is_blank
from sheetsync.models.tables import CONFIG_SHEET
from sheetsync.services.setup_service import APP_CODE_PLACEHOLDER_PREFIX

logger = logging.getLogger(__name__)

# Hashed APP_CODE values may use either scheme
pwd_context = CryptContext(
    schemes=["bcrypt", "pbkdf2_sha256"],
    deprecated="auto",
)


def get_config_value(store: RecordStore, name: str) -> Optional[str]:
    """Read a value from the name/value config sheet"""
    sheet = store.get_sheet(CONFIG_SHEET)
    if sheet is None:
        return None
    column_map = sheet.column_map()
    name_position = column_map.get("name", 0)
    value_position = column_map.get("value", 1)
    for row in sheet.get_all_rows():
        if len(row) <= max(name_position, value_position):
            continue
        if str(row[name_position] or "").strip() == name:
            value = row[value_position]
            return None if is_blank(value) else str(value).strip()
    return None


def get_app_code_hash(password: str) -> str:
    """Hash an APP_CODE for the APP_CODE_HASH setting"""
    return pwd_context.hash(password)


def validate_secret_code(provided: Optional[str], store: RecordStore) -> bool:
    """
    Check the secret sent by a client.

    APP_CODE_HASH wins over APP_CODE, and APP_CODE from settings wins over the
    config sheet. An unset code or the setup placeholder counts as unconfigured.
    """
    if settings.APP_CODE_HASH:
        if not provided or not pwd_context.verify(str(provided), settings.APP_CODE_HASH):
            logger.warning("Rejected request with invalid secret code")
            raise SecurityError("Invalid secret code")
        return True

    stored = settings.APP_CODE or get_config_value(store, "APP_CODE")
    if not stored or stored.startswith(APP_CODE_PLACEHOLDER_PREFIX):
        logger.error("APP_CODE is not configured")
        raise ConfigurationError("APP_CODE not configured in config sheet")

    if provided is None or not secrets.compare_digest(str(provided).encode("utf-8"), stored.encode("utf-8")):
        logger.warning("Rejected request with invalid secret code")
        raise SecurityError("Invalid secret code")
    return True
