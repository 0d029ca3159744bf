# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from sheetsync.api.dependencies import get_sync_service
from sheetsync.core.config import settings
from sheetsync.core.store import MemoryRecordStore
from sheetsync.services.sync_service import SyncService

APP_CODE = "correct-horse-battery"


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def service(store):
    return SyncService(store)


@pytest.fixture
def ready_service(service):
    """Service on a store where setup has created every sheet"""
    service.setup.setup_sheets()
    return service


@pytest.fixture
def add_records(store):
    """Append records (dicts keyed by column name) to a sheet in header order"""
    def _add(table_name, records):
        sheet = store.require_sheet(table_name)
        header = sheet.get_header()
        sheet.append_rows([[record.get(name) for name in header] for record in records])
    return _add


@pytest.fixture
def read_records(store):
    """Read a sheet back as a list of dicts keyed by column name"""
    def _read(table_name):
        sheet = store.require_sheet(table_name)
        header = sheet.get_header()
        return [dict(zip(header, row)) for row in sheet.get_all_rows()]
    return _read


@pytest.fixture
def app_code(monkeypatch):
    monkeypatch.setattr(settings, "APP_CODE", APP_CODE)
    monkeypatch.setattr(settings, "APP_CODE_HASH", None)
    return APP_CODE


@pytest.fixture
def client(ready_service):
    from sheetsync.main import app

    app.dependency_overrides[get_sync_service] = lambda: ready_service
    yield TestClient(app)
    app.dependency_overrides.clear()
