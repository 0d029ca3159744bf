# sheetsync/services/setup_service.py
import logging
from typing import Any, Dict, List, Optional

from sheetsync.core.exceptions import ConfigurationError
from sheetsync.core.store import RecordStore, Sheet, is_blank
from sheetsync.models.change_log import key_to_str
from sheetsync.models.schema import SchemaRegistry, TableDefinition, TableType
from sheetsync.models.tables import CONFIG_SHEET
from sheetsync.utils.timeutils import to_epoch_millis, utcnow

logger = logging.getLogger(__name__)

CONFIG_HEADER = ["name", "value", "description"]
APP_CODE_PLACEHOLDER_PREFIX = "CHANGE_ME_"
NOT_FOUND = "Not Found"


class SetupService:
    """Creates and maintains the sheets: config, log and data tables, lookup columns"""

    def __init__(self, store: RecordStore, registry: SchemaRegistry):
        self.store = store
        self.registry = registry

    def setup_config_sheet(self) -> Sheet:
        sheet = self.store.get_sheet(CONFIG_SHEET)
        if sheet is not None:
            return sheet
        sheet = self.store.create_sheet(CONFIG_SHEET, CONFIG_HEADER)
        placeholder = f"{APP_CODE_PLACEHOLDER_PREFIX}{to_epoch_millis(utcnow())}"
        sheet.append_rows([["APP_CODE", placeholder, "Shared secret clients send with every request"]])
        logger.warning("Config sheet created. IMPORTANT: change the APP_CODE value!")
        return sheet

    def setup_table_sheet(self, table_name: str) -> Sheet:
        """Create the sheet of a table, or bring an existing one in line with its definition"""
        definition = self.registry.get_by_name(table_name)
        if definition is None:
            raise ConfigurationError(f"Table '{table_name}' not found in table definitions")

        required = definition.header
        sheet = self.store.get_sheet(table_name)
        if sheet is None:
            sheet = self.store.create_sheet(table_name, required)
            logger.info(f"Sheet '{table_name}' created")
            return sheet

        current = sheet.get_header()
        if current == required:
            return sheet

        # Reorder by header text, add missing columns and drop unknown ones
        column_map = sheet.column_map()
        dropped = [name for name in current if str(name).strip() not in required]
        if dropped:
            logger.info(f"Dropping columns {dropped} from '{table_name}'")
        added = [name for name in required if name not in column_map]
        if added:
            logger.info(f"Adding columns {added} to '{table_name}'")

        rows = sheet.get_all_rows()
        reordered = [
            [row[column_map[name]] if name in column_map else None for name in required]
            for row in rows
        ]
        sheet.set_header(required)
        sheet.clear()
        sheet.set_rows(0, reordered)
        logger.info(f"Sheet '{table_name}' updated")
        return sheet

    def setup_sheets(self) -> str:
        self.setup_config_sheet()
        for table_name in self.registry.table_names:
            self.setup_table_sheet(table_name)
        self.refresh_all_lookup_columns()
        logger.info("Setup completed successfully")
        return "Setup completed! REMEMBER: Change APP_CODE in config sheet!"

    def clear_sheet(self, table_name: str) -> int:
        """Remove all data rows of a sheet, keeping its header; returns rows removed"""
        sheet = self.store.require_sheet(table_name)
        count = sheet.row_count()
        sheet.clear()
        logger.info(f"Cleared {count} rows from '{table_name}'")
        return count

    def clear_sheets_of_type(self, table_type: TableType) -> Dict[str, int]:
        cleared = {}
        for table_name in self.registry.tables_of_type(table_type):
            if self.store.get_sheet(table_name) is None:
                logger.warning(f"Sheet '{table_name}' not found, nothing to clear")
                continue
            cleared[table_name] = self.clear_sheet(table_name)
        return cleared

    # Lookup columns

    def _column_values(self, table_name: str, column: str, cache: Dict[Any, Dict[str, Any]]) -> Dict[str, Any]:
        """Map key -> value of a column (declared or lookup) of a table"""
        cache_key = (table_name, column)
        if cache_key in cache:
            return cache[cache_key]

        definition = self.registry.get_by_name(table_name)
        sheet = self.store.get_sheet(table_name)
        values: Dict[str, Any] = {}
        if sheet is not None:
            column_map = sheet.column_map()
            key_position = column_map.get(definition.key_column)
            lookup = definition.get_lookup_column(column)
            if key_position is not None:
                rows = sheet.get_all_rows()
                if lookup is not None:
                    # Lookup of a lookup: resolve it from its own source
                    resolved = self._lookup_values(definition, lookup.name, rows, column_map, cache)
                    for row, value in zip(rows, resolved):
                        key = key_to_str(row[key_position])
                        if key is not None and key not in values:
                            values[key] = value
                elif column in column_map:
                    position = column_map[column]
                    for row in rows:
                        key = key_to_str(row[key_position])
                        if key is not None and key not in values:
                            values[key] = row[position]
        cache[cache_key] = values
        return values

    def _lookup_values(self, definition: TableDefinition, lookup_name: str, rows: List[List[Any]],
                       column_map: Dict[str, int], cache: Dict[Any, Dict[str, Any]]) -> List[Any]:
        lookup = definition.get_lookup_column(lookup_name)
        foreign_key = definition.get_foreign_key(lookup.source_column)
        target_values = self._column_values(foreign_key.table, lookup.target_column, cache)
        source_position = column_map.get(lookup.source_column)
        resolved = []
        for row in rows:
            source = key_to_str(row[source_position]) if source_position is not None else None
            if source is None:
                resolved.append(None)
            else:
                resolved.append(target_values.get(source, NOT_FOUND))
        return resolved

    def refresh_lookup_columns(self, table_name: str, cache: Optional[Dict[Any, Dict[str, Any]]] = None) -> int:
        """Materialise every lookup column of a table; returns the number of rows refreshed"""
        definition = self.registry.get_by_name(table_name)
        if definition is None:
            raise ConfigurationError(f"Table '{table_name}' not found in table definitions")
        if not definition.lookup_columns:
            return 0
        sheet = self.store.require_sheet(table_name)
        column_map = sheet.column_map()
        rows = sheet.get_all_rows()
        if not rows:
            return 0

        cache = {} if cache is None else cache
        changed = False
        for lookup in definition.lookup_columns:
            position = column_map.get(lookup.name)
            if position is None:
                logger.warning(f"Lookup column '{lookup.name}' missing in sheet '{table_name}'")
                continue
            values = self._lookup_values(definition, lookup.name, rows, column_map, cache)
            for row, value in zip(rows, values):
                # Keep unused slots blank
                if all(is_blank(row[column_map[name]]) for name in definition.column_names if name in column_map):
                    value = None
                if row[position] != value:
                    row[position] = value
                    changed = True
        if changed:
            sheet.set_rows(0, rows)
        return len(rows)

    def refresh_all_lookup_columns(self) -> int:
        refreshed = 0
        cache: Dict[Any, Dict[str, Any]] = {}
        for table_name in self.registry.dependency_order():
            if self.store.get_sheet(table_name) is None:
                continue
            refreshed += self.refresh_lookup_columns(table_name, cache)
        return refreshed
