# sheetsync/services/sync_service.py
import logging
from typing import Any, Dict, List, Optional

from sheetsync.core.config import settings
from sheetsync.core.exceptions import ValidationError
from sheetsync.core.store import RecordStore
from sheetsync.models.schema import SchemaRegistry
from sheetsync.models.tables import registry as default_registry
from sheetsync.services.change_log_service import ChangeLogService
from sheetsync.services.condenser import CondenserService
from sheetsync.services.consistency import ConsistencyService
from sheetsync.services.delta_sync import DeltaSyncService
from sheetsync.services.log_reader import LogReaderService
from sheetsync.services.setup_service import SetupService
from sheetsync.utils.timeutils import EPOCH_TIME_LOWEST_MILLISECONDS, to_epoch_millis

logger = logging.getLogger(__name__)


class SyncService:
    """Wires the sync components to one store and serves the endpoint operations"""

    def __init__(self, store: RecordStore, registry: Optional[SchemaRegistry] = None):
        self.store = store
        self.registry = registry or default_registry
        self.change_log = ChangeLogService(store, self.registry)
        self.condenser = CondenserService(store, self.registry)
        self.log_reader = LogReaderService(store)
        self.delta_sync = DeltaSyncService(store, self.registry, self.change_log)
        self.consistency = ConsistencyService(store, self.registry, self.change_log)
        self.setup = SetupService(store, self.registry)

    def setup_sheets(self) -> Dict[str, Any]:
        self.setup.setup_sheets()
        return {"success": True, "message": "Setup completed successfully"}

    def delta_pull(self, since: Any = None, offset: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        if since is None or (isinstance(since, str) and not since.strip()):
            since_ms = EPOCH_TIME_LOWEST_MILLISECONDS
        else:
            since_ms = to_epoch_millis(since)
            if since_ms is None:
                raise ValidationError(f"Invalid since value: {since!r}")
        offset = 0 if offset is None else offset
        limit = settings.DEFAULT_PAGE_SIZE if limit is None else limit
        if offset < 0:
            raise ValidationError(f"offset must not be negative, got {offset}")
        if limit < 0:
            raise ValidationError(f"limit must not be negative, got {limit}")

        # The first page re-derives the condensed log from the requested horizon
        if offset == 0:
            logger.info("Consolidating change log into condensed_change_log")
            self.condenser.write_condensed(since_ms)

        page = self.log_reader.read_condensed_log(offset, limit)
        log, table_records = self.delta_sync.fetch_table_records_for_changes(page.entries)
        return {
            "success": True,
            "log": [entry.to_dict() for entry in log],
            "totalRecords": page.total_records,
            "tableRecords": table_records,
        }

    def delta_push(self, log: Optional[List[Dict[str, Any]]], table_records: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if log is None:
            return {"error": "Missing log parameter"}
        processed = self.delta_sync.apply_delta_changes_batch(log, table_records)
        return {"success": True, "processed": processed}
