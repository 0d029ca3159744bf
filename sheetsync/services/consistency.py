# sheetsync/services/consistency.py
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Set, Tuple

from sheetsync.core.store import RecordStore, is_blank
from sheetsync.models.change_log import ChangeMode, key_to_str
from sheetsync.models.schema import ForeignKey, SchemaRegistry, TableDefinition
from sheetsync.services.change_log_service import ChangeLogService
from sheetsync.utils.timeutils import to_iso, utcnow

# Set up logging
logger = logging.getLogger(__name__)


def _row_number(position: int) -> int:
    """Sheet row number of a data row position (row 1 is the header)"""
    return position + 2


def _position(row_number: int) -> int:
    return row_number - 2


class ConsistencyService:
    """
    Validates key integrity and foreign key references across all sync tables.

    In simulate mode nothing is changed and the report says what would be
    deleted. In cleanup mode flagged rows are deleted and the change log is
    told about it so clients drop or re-fetch the affected records.
    """

    def __init__(self, store: RecordStore, registry: SchemaRegistry, change_log: ChangeLogService):
        self.store = store
        self.registry = registry
        self.change_log = change_log

    # Statistics

    def record_count_statistics(self) -> Dict[str, Any]:
        """Count rows with a non-blank key in every table"""
        statistics: Dict[str, Any] = {"timestamp": to_iso(utcnow()), "tables": {}, "total_records": 0}
        for table_name in self.registry.table_names:
            definition = self.registry.get_by_name(table_name)
            sheet = self.store.get_sheet(table_name)
            if sheet is None:
                logger.warning(f"Sheet '{table_name}' not found")
                statistics["tables"][table_name] = {"count": 0, "status": "not_found"}
                continue
            if sheet.row_count() == 0:
                statistics["tables"][table_name] = {"count": 0, "status": "empty"}
                continue
            key_position = sheet.column_map().get(definition.key_column)
            if key_position is None:
                statistics["tables"][table_name] = {"count": 0, "status": "no_key_column"}
                continue
            count = sum(1 for row in sheet.get_all_rows() if not is_blank(row[key_position]))
            statistics["tables"][table_name] = {"count": count, "status": "ok"}
            statistics["total_records"] += count
        logger.info(f"Total records across all tables: {statistics['total_records']}")
        return statistics

    # Key integrity

    def check_key_integrity(self, table_name: str, simulate: bool = True) -> Dict[str, Any]:
        """Flag rows with data but no key, and every duplicate of a key after its first row"""
        definition = self.registry.get_by_name(table_name)
        result: Dict[str, Any] = {
            "table_name": table_name,
            "key_column": definition.key_column,
            "null_keys": 0,
            "duplicate_keys": 0,
            "duplicate_rows": 0,
            "total_issues": 0,
            "rows_to_delete": [],
            "deleted": 0,
            "would_delete": 0,
        }
        sheet = self.store.get_sheet(table_name)
        if sheet is None:
            logger.warning(f"Sheet '{table_name}' not found")
            return result
        key_position = sheet.column_map().get(definition.key_column)
        if key_position is None:
            logger.warning(f"Key column '{definition.key_column}' not found in sheet '{table_name}'")
            return result

        null_positions: List[int] = []
        positions_by_key: Dict[str, List[int]] = OrderedDict()
        for position, row in enumerate(sheet.get_all_rows()):
            # Completely blank rows are unused slots, not corruption
            if all(is_blank(cell) for cell in row):
                continue
            key = key_to_str(row[key_position])
            if key is None:
                null_positions.append(position)
            else:
                positions_by_key.setdefault(key, []).append(position)

        duplicate_groups = {key: positions for key, positions in positions_by_key.items() if len(positions) > 1}
        duplicate_positions = [position for positions in duplicate_groups.values() for position in positions[1:]]
        to_delete = sorted(set(null_positions + duplicate_positions))

        result["null_keys"] = len(null_positions)
        result["duplicate_keys"] = len(duplicate_groups)
        result["duplicate_rows"] = len(duplicate_positions)
        result["total_issues"] = len(null_positions) + len(duplicate_groups)
        result["rows_to_delete"] = [_row_number(position) for position in to_delete]

        if not to_delete:
            logger.info(f"{definition.key_column} integrity OK in '{table_name}'")
            return result

        logger.warning(
            f"{definition.key_column} integrity issues in '{table_name}': {len(null_positions)} empty keys, "
            f"{len(duplicate_groups)} duplicated keys ({len(duplicate_positions)} duplicate rows)"
        )
        if simulate:
            result["would_delete"] = len(to_delete)
        else:
            result["deleted"] = sheet.delete_rows(to_delete)
            if duplicate_groups:
                # The key survives in its first row, so clients must re-fetch it
                self.change_log.log_changes(table_name, list(duplicate_groups.keys()), ChangeMode.UPDATE)
            logger.info(f"Deleted {result['deleted']} rows with {definition.key_column} issues from '{table_name}'")
        return result

    # Referential integrity

    def _foreign_key_tables(self) -> List[str]:
        """Sync tables with foreign keys, most dependent first"""
        sync_tables = set(self.registry.sync_relevant_table_names)
        return [
            name for name in self.registry.reverse_dependency_order()
            if name in sync_tables and self.registry.get_by_name(name).foreign_keys
        ]

    def check_foreign_keys(self, simulate: bool = True,
                           excluded: Optional[Dict[str, Set[int]]] = None) -> List[Dict[str, Any]]:
        """
        Flag rows whose foreign keys point at missing records.

        Rows flagged in a table no longer count as valid targets, and the pass
        repeats until nothing new is flagged, so removing a parent always takes
        the children that reference it along.

        `excluded` maps table names to row positions that are already going
        away (key integrity problems found in simulate mode). Those rows are
        neither checked nor used as targets.
        """
        tables = self._foreign_key_tables()
        excluded = excluded or {}
        rows_cache: Dict[str, List[List[Any]]] = {}
        maps_cache: Dict[str, Dict[str, int]] = {}
        flagged: Dict[str, Dict[int, Dict[str, Any]]] = {name: OrderedDict() for name in tables}
        key_sets: Dict[Tuple[str, str], Set[str]] = {}
        errors: Dict[str, str] = {}

        def load(table_name: str) -> bool:
            if table_name in rows_cache:
                return True
            sheet = self.store.get_sheet(table_name)
            if sheet is None:
                logger.warning(f"Sheet '{table_name}' not found")
                return False
            rows_cache[table_name] = sheet.get_all_rows()
            maps_cache[table_name] = sheet.column_map()
            return True

        def target_keys(foreign_key: ForeignKey) -> Set[str]:
            # Cached per run, rebuilt only when rows of the table get flagged
            cache_key = (foreign_key.table, foreign_key.column)
            if cache_key in key_sets:
                return key_sets[cache_key]
            keys: Set[str] = set()
            if load(foreign_key.table):
                column_position = maps_cache[foreign_key.table].get(foreign_key.column)
                skipped = excluded.get(foreign_key.table, set())
                gone = flagged.get(foreign_key.table, {})
                if column_position is not None:
                    for position, row in enumerate(rows_cache[foreign_key.table]):
                        if position in skipped or position in gone:
                            continue
                        key = key_to_str(row[column_position])
                        if key is not None:
                            keys.add(key)
            key_sets[cache_key] = keys
            logger.debug(f"Loaded {len(keys)} values of '{foreign_key.column}' from table '{foreign_key.table}'")
            return keys

        changed = True
        while changed:
            changed = False
            for table_name in tables:
                if table_name in errors:
                    continue
                try:
                    if not load(table_name):
                        continue
                    definition = self.registry.get_by_name(table_name)
                    if self._flag_table(table_name, definition, rows_cache[table_name], maps_cache[table_name],
                                        flagged[table_name], excluded.get(table_name, set()), target_keys):
                        for cache_key in [k for k in key_sets if k[0] == table_name]:
                            del key_sets[cache_key]
                        changed = True
                except Exception as e:
                    logger.error(f"Error checking foreign keys of '{table_name}': {str(e)}", exc_info=True)
                    errors[table_name] = str(e)

        results = []
        for table_name in tables:
            invalid_records = list(flagged[table_name].values())
            result: Dict[str, Any] = {
                "table_name": table_name,
                "invalid_records": invalid_records,
                "deleted": 0,
                "would_delete": 0,
            }
            if table_name in errors:
                # Tables whose pass failed keep all their rows
                result["error"] = errors[table_name]
            elif invalid_records:
                if simulate:
                    result["would_delete"] = len(invalid_records)
                else:
                    self._delete_flagged(table_name, flagged[table_name], result)
            results.append(result)
        return results

    def _flag_table(self, table_name: str, definition: TableDefinition, rows: List[List[Any]],
                    column_map: Dict[str, int], flagged: Dict[int, Dict[str, Any]], skipped: Set[int],
                    target_keys) -> bool:
        key_position = column_map.get(definition.key_column)
        newly_flagged = False
        for position, row in enumerate(rows):
            if position in flagged or position in skipped:
                continue
            violations = []
            for column, foreign_key in definition.foreign_keys.items():
                column_position = column_map.get(column)
                if column_position is None:
                    continue
                value = key_to_str(row[column_position])
                # Empty references are optional
                if value is None:
                    continue
                if value not in target_keys(foreign_key):
                    violations.append({"column": column, "value": value, "target_table": foreign_key.table})
            if violations:
                flagged[position] = {
                    "row_number": _row_number(position),
                    "key_column": definition.key_column,
                    "key": key_to_str(row[key_position]) if key_position is not None else None,
                    "violations": violations,
                }
                newly_flagged = True
        if newly_flagged:
            logger.warning(f"Found {len(flagged)} invalid records in table '{table_name}'")
        return newly_flagged

    def _delete_flagged(self, table_name: str, flagged: Dict[int, Dict[str, Any]], result: Dict[str, Any]):
        try:
            sheet = self.store.require_sheet(table_name)
            result["deleted"] = sheet.delete_rows(list(flagged.keys()))
            keys = [record["key"] for record in flagged.values() if record["key"] is not None]
            self.change_log.log_changes(table_name, keys, ChangeMode.DELETE)
            logger.info(f"Deleted {result['deleted']} invalid records from table '{table_name}'")
        except Exception as e:
            logger.error(f"Error deleting invalid records from '{table_name}': {str(e)}", exc_info=True)
            result["error"] = str(e)

    # Full run

    def check_and_clean_all_tables(self, simulate: bool = True) -> Dict[str, Any]:
        """Key integrity on every sync table, then the foreign key pass; returns a summary report"""
        mode = "simulation" if simulate else "cleanup"
        logger.info(f"Consistency check started in {mode} mode")
        tables = self.registry.sync_relevant_table_names

        key_results = []
        for table_name in tables:
            try:
                key_results.append(self.check_key_integrity(table_name, simulate))
            except Exception as e:
                logger.error(f"Error checking key integrity of '{table_name}': {str(e)}", exc_info=True)
                key_results.append({"table_name": table_name, "total_issues": 0, "null_keys": 0,
                                    "duplicate_keys": 0, "duplicate_rows": 0, "deleted": 0,
                                    "would_delete": 0, "error": str(e)})

        # Cleanup has already deleted these rows, a simulation has to skip them
        excluded: Dict[str, Set[int]] = {}
        if simulate:
            for result in key_results:
                rows_to_delete = result.get("rows_to_delete")
                if rows_to_delete:
                    excluded[result["table_name"]] = {_position(row) for row in rows_to_delete}

        fk_results = self.check_foreign_keys(simulate, excluded)

        key_total = sum(r["total_issues"] for r in key_results)
        key_deleted = sum(r["deleted"] for r in key_results)
        key_would_delete = sum(r["would_delete"] for r in key_results)
        fk_total = sum(len(r["invalid_records"]) for r in fk_results)
        fk_deleted = sum(r["deleted"] for r in fk_results)
        fk_would_delete = sum(r["would_delete"] for r in fk_results)

        report = {
            "timestamp": to_iso(utcnow()),
            "mode": mode,
            "simulate": simulate,
            "tables_checked": len(tables),
            "key_issues": {
                "null_keys": sum(r["null_keys"] for r in key_results),
                "duplicate_keys": sum(r["duplicate_keys"] for r in key_results),
                "duplicate_rows": sum(r["duplicate_rows"] for r in key_results),
                "total": key_total,
                "deleted": key_deleted,
                "would_delete": key_would_delete,
            },
            "foreign_key_issues": {
                "total": fk_total,
                "deleted": fk_deleted,
                "would_delete": fk_would_delete,
            },
            "total_invalid": key_total + fk_total,
            "total_deleted": key_deleted + fk_deleted,
            "total_would_delete": key_would_delete + fk_would_delete,
            "key_results": key_results,
            "foreign_key_results": fk_results,
        }
        logger.info(
            f"Consistency check ({mode}) finished: {report['total_invalid']} issues, "
            f"{report['total_deleted']} deleted, {report['total_would_delete']} would be deleted"
        )
        return report
