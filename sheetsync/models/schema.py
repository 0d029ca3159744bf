# sheetsync/models/schema.py
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, NamedTuple, Iterable

from sheetsync.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ColumnType(str, Enum):
    """Semantic column types"""
    UUID = "uuid"
    TABLE_INDEX = "table_index"
    ID = "id"
    INTEGER = "integer"
    AMOUNT = "amount"
    QUANTITY = "quantity"
    DOUBLE = "double"
    NAME = "name"
    STRING = "string"
    CURRENCY = "currency"
    UNIT_OF_MEASURE = "unit_of_measure"
    PERCENT = "percent"
    DESCRIPTION = "description"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"
    CHANGE_MODE = "change_mode"
    WEBSITE = "website"
    PHONE_NUMBER = "phone_number"
    EMAIL_ADDRESS = "email_address"
    ADDRESS = "address"
    GEO_LOCATION = "geo_location"


class TableType(str, Enum):
    METADATA = "METADATA"
    CONFIGURATION_DATA = "CONFIGURATION_DATA"
    MASTER_DATA = "MASTER_DATA"
    TRANSACTION_DATA = "TRANSACTION_DATA"
    LOG = "LOG"


class ForeignKey(NamedTuple):
    table: str
    column: str


class LookupColumn(NamedTuple):
    """A read-only column materialised by following `source_column` to `target_column`"""
    name: str
    source_column: str
    target_column: str


@dataclass(frozen=True)
class TableDefinition:
    """Immutable description of one table: columns, key, foreign keys and lookups"""
    name: str
    index: int
    type: TableType
    key_column: str
    columns: Tuple[Tuple[str, ColumnType], ...]
    foreign_keys: Dict[str, ForeignKey] = field(default_factory=dict)
    lookup_columns: Tuple[LookupColumn, ...] = ()
    is_sync_table: bool = True

    def __post_init__(self):
        names = [name for name, _ in self.columns]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate column name in table definition for table '{self.name}'")
        if self.key_column not in names:
            raise ConfigurationError(
                f"Key column '{self.key_column}' is not a declared column of table '{self.name}'"
            )
        for column in self.foreign_keys:
            if column not in names:
                raise ConfigurationError(
                    f"Foreign key column '{column}' is not a declared column of table '{self.name}'"
                )
        seen = set()
        for lookup in self.lookup_columns:
            if lookup.name in seen:
                raise ConfigurationError(
                    f"Duplicate lookup column name '{lookup.name}' found in table definition for table '{self.name}'"
                )
            if lookup.name in names:
                raise ConfigurationError(
                    f"Lookup column '{lookup.name}' shadows a declared column of table '{self.name}'"
                )
            if lookup.source_column not in self.foreign_keys:
                raise ConfigurationError(
                    f"Lookup column '{lookup.name}' of table '{self.name}' uses "
                    f"'{lookup.source_column}', which is not a foreign key column"
                )
            seen.add(lookup.name)

    @property
    def column_names(self) -> List[str]:
        return [name for name, _ in self.columns]

    @property
    def lookup_column_names(self) -> List[str]:
        return [lookup.name for lookup in self.lookup_columns]

    @property
    def header(self) -> List[str]:
        """Sheet header: declared columns followed by lookup columns"""
        return self.column_names + self.lookup_column_names

    def column_type(self, column_name: str) -> Optional[ColumnType]:
        for name, column_type in self.columns:
            if name == column_name:
                return column_type
        return None

    def is_timestamp_column(self, column_name: str) -> bool:
        return self.column_type(column_name) == ColumnType.TIMESTAMP

    def get_foreign_key(self, column_name: str) -> Optional[ForeignKey]:
        return self.foreign_keys.get(column_name)

    def get_lookup_column(self, lookup_name: str) -> Optional[LookupColumn]:
        for lookup in self.lookup_columns:
            if lookup.name == lookup_name:
                return lookup
        return None


class SchemaRegistry:
    """
    Read-only registry of every table definition.

    Construction validates the whole table graph and fails fast with a
    ConfigurationError, so a registry that exists is always consistent.
    """

    def __init__(self, definitions: Iterable[TableDefinition]):
        by_name: Dict[str, TableDefinition] = {}
        by_index: Dict[int, TableDefinition] = {}
        for definition in definitions:
            if definition.name in by_name:
                raise ConfigurationError(f"Duplicate table name '{definition.name}'")
            if definition.index in by_index:
                raise ConfigurationError(
                    f"Duplicate table index {definition.index} used by "
                    f"'{by_index[definition.index].name}' and '{definition.name}'"
                )
            by_name[definition.name] = definition
            by_index[definition.index] = definition

        for definition in by_name.values():
            for column, foreign_key in definition.foreign_keys.items():
                target = by_name.get(foreign_key.table)
                if target is None:
                    raise ConfigurationError(
                        f"Foreign key '{definition.name}.{column}' references unknown table '{foreign_key.table}'"
                    )
                if foreign_key.column not in target.column_names:
                    raise ConfigurationError(
                        f"Foreign key '{definition.name}.{column}' references unknown column "
                        f"'{foreign_key.table}.{foreign_key.column}'"
                    )
            for lookup in definition.lookup_columns:
                target = by_name[definition.foreign_keys[lookup.source_column].table]
                if lookup.target_column not in target.header:
                    raise ConfigurationError(
                        f"Lookup column '{definition.name}.{lookup.name}' targets unknown column "
                        f"'{target.name}.{lookup.target_column}'"
                    )

        self._by_name = by_name
        self._by_index = by_index
        self._dependency_order = self._sort_by_dependencies()

    def _sort_by_dependencies(self) -> List[str]:
        """Topological sort of the foreign key graph, parents before children"""
        order: List[str] = []
        state: Dict[str, int] = {}  # 1 = visiting, 2 = done

        def visit(name: str, path: List[str]):
            if state.get(name) == 2:
                return
            if state.get(name) == 1:
                cycle = " -> ".join(path + [name])
                raise ConfigurationError(f"Foreign key cycle detected: {cycle}")
            state[name] = 1
            for foreign_key in self._by_name[name].foreign_keys.values():
                # Self references do not constrain ordering
                if foreign_key.table != name:
                    visit(foreign_key.table, path + [name])
            state[name] = 2
            order.append(name)

        for name in self._by_name:
            visit(name, [])
        return order

    def get_by_name(self, name: str) -> Optional[TableDefinition]:
        return self._by_name.get(name)

    def get_by_index(self, index: int) -> Optional[TableDefinition]:
        return self._by_index.get(index)

    def get_table_index_by_name(self, name: str) -> Optional[int]:
        definition = self.get_by_name(name)
        return definition.index if definition else None

    def get_table_name_by_index(self, index: int) -> Optional[str]:
        definition = self.get_by_index(index)
        return definition.name if definition else None

    @property
    def table_names(self) -> List[str]:
        return list(self._by_name.keys())

    @property
    def sync_relevant_table_names(self) -> List[str]:
        """Tables eligible for change tracking, i.e. everything except the log tables"""
        return [name for name, definition in self._by_name.items() if definition.is_sync_table]

    def tables_of_type(self, table_type: TableType) -> List[str]:
        return [name for name, definition in self._by_name.items() if definition.type == table_type]

    def dependency_order(self) -> List[str]:
        return list(self._dependency_order)

    def reverse_dependency_order(self) -> List[str]:
        return list(reversed(self._dependency_order))
