# tests/test_log_reader.py
import pytest

from sheetsync.core.exceptions import ValidationError
from sheetsync.models.change_log import CHANGE_LOG_COLUMNS
from sheetsync.models.tables import CONDENSED_CHANGE_LOG
from sheetsync.utils.timeutils import to_datetime


@pytest.fixture
def condensed(store):
    sheet = store.create_sheet(CONDENSED_CHANGE_LOG, CHANGE_LOG_COLUMNS)
    sheet.append_rows([
        [f"uuid-{n}", 203, f"m{n}", "I", to_datetime(1_700_000_000_000 + n)]
        for n in range(5)
    ])
    return sheet


def test_first_page(service, condensed):
    page = service.log_reader.read_condensed_log(0, 2)
    assert page.total_records == 5
    assert [e.table_key for e in page.entries] == ["m0", "m1"]


def test_last_partial_page(service, condensed):
    page = service.log_reader.read_condensed_log(4, 2)
    assert page.total_records == 5
    assert [e.table_key for e in page.entries] == ["m4"]


def test_offset_past_end(service, condensed):
    page = service.log_reader.read_condensed_log(10, 2)
    assert page.entries == []
    assert page.total_records == 5


def test_pages_cover_log_exactly_once(service, condensed):
    keys = []
    offset = 0
    while True:
        page = service.log_reader.read_condensed_log(offset, 2)
        if not page.entries:
            break
        keys.extend(e.table_key for e in page.entries)
        offset += 2
    assert keys == [f"m{n}" for n in range(5)]


def test_zero_limit_returns_only_total(service, condensed):
    page = service.log_reader.read_condensed_log(0, 0)
    assert page.entries == []
    assert page.total_records == 5


@pytest.mark.parametrize("offset, limit", [(-1, 2), (0, -1)])
def test_negative_paging_rejected(service, condensed, offset, limit):
    with pytest.raises(ValidationError):
        service.log_reader.read_condensed_log(offset, limit)


def test_missing_sheet_gives_empty_page(service):
    page = service.log_reader.read_condensed_log(0, 10)
    assert page.entries == []
    assert page.total_records == 0


def test_missing_timestamp_is_stamped(service, store):
    sheet = store.create_sheet(CONDENSED_CHANGE_LOG, CHANGE_LOG_COLUMNS)
    sheet.append_rows([["uuid-x", 203, "m9", "U", None]])
    page = service.log_reader.read_condensed_log(0, 10)
    assert page.entries[0].updated_at is not None
