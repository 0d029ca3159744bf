# sheetsync/models/tables.py
"""
Static table set of the purchase app.

Table indices group the tables: 1xx configuration, 2xx master data and
3xx transaction data. Pulled changes are served in index order.
"""
from sheetsync.models.schema import (
    ColumnType as T,
    ForeignKey,
    LookupColumn,
    SchemaRegistry,
    TableDefinition,
    TableType,
)

CHANGE_LOG = "change_log"
CONDENSED_CHANGE_LOG = "condensed_change_log"
CONFIG_SHEET = "config"

CHANGE_LOG_INDEX = -1
CONDENSED_CHANGE_LOG_INDEX = -2

_CURRENCY = ForeignKey("currencies", "name")
_UNIT_OF_MEASURE = ForeignKey("unit_of_measures", "name")

_LOG_COLUMNS = (
    ("uuid", T.UUID),
    ("table_index", T.TABLE_INDEX),
    ("table_key", T.STRING),
    ("change_mode", T.CHANGE_MODE),
    ("updated_at", T.TIMESTAMP),
)

TABLE_DEFINITIONS = (
    TableDefinition(
        name="unit_of_measures",
        index=101,
        type=TableType.CONFIGURATION_DATA,
        key_column="name",
        columns=(
            ("name", T.NAME),
            ("description", T.DESCRIPTION),
            ("number_of_decimal_places", T.INTEGER),
            ("is_default", T.BOOLEAN),
            ("updated_at", T.TIMESTAMP),
        ),
    ),
    TableDefinition(
        name="currencies",
        index=102,
        type=TableType.CONFIGURATION_DATA,
        key_column="name",
        columns=(
            ("name", T.NAME),
            ("description", T.DESCRIPTION),
            ("symbol", T.STRING),
            ("number_of_decimal_places", T.INTEGER),
            ("is_default", T.BOOLEAN),
            ("updated_at", T.TIMESTAMP),
        ),
    ),
    TableDefinition(
        name="manufacturers",
        index=201,
        type=TableType.MASTER_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("id", T.ID),
            ("name", T.NAME),
            ("description", T.DESCRIPTION),
            ("address", T.ADDRESS),
            ("phone_number", T.PHONE_NUMBER),
            ("email_address", T.EMAIL_ADDRESS),
            ("website", T.WEBSITE),
            ("updated_at", T.TIMESTAMP),
            ("photo_uuid", T.UUID),
        ),
    ),
    TableDefinition(
        name="vendors",
        index=202,
        type=TableType.MASTER_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("id", T.ID),
            ("name", T.NAME),
            ("description", T.DESCRIPTION),
            ("address", T.ADDRESS),
            ("geo_location", T.GEO_LOCATION),
            ("phone_number", T.PHONE_NUMBER),
            ("email_address", T.EMAIL_ADDRESS),
            ("website", T.WEBSITE),
            ("updated_at", T.TIMESTAMP),
            ("photo_uuid", T.UUID),
        ),
    ),
    TableDefinition(
        name="materials",
        index=203,
        type=TableType.MASTER_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("id", T.ID),
            ("name", T.NAME),
            ("description", T.DESCRIPTION),
            ("unit_of_measure", T.UNIT_OF_MEASURE),
            ("website", T.WEBSITE),
            ("updated_at", T.TIMESTAMP),
            ("photo_uuid", T.UUID),
        ),
        foreign_keys={"unit_of_measure": _UNIT_OF_MEASURE},
    ),
    TableDefinition(
        name="manufacturer_materials",
        index=204,
        type=TableType.MASTER_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("manufacturer_uuid", T.UUID),
            ("material_uuid", T.UUID),
            ("model", T.STRING),
            ("selling_lot_size", T.QUANTITY),
            ("max_retail_price", T.AMOUNT),
            ("currency", T.CURRENCY),
            ("website", T.WEBSITE),
            ("part_number", T.STRING),
            ("updated_at", T.TIMESTAMP),
            ("photo_uuid", T.UUID),
        ),
        foreign_keys={
            "currency": _CURRENCY,
            "manufacturer_uuid": ForeignKey("manufacturers", "uuid"),
            "material_uuid": ForeignKey("materials", "uuid"),
        },
        lookup_columns=(
            LookupColumn("manufacturer_name", "manufacturer_uuid", "name"),
            LookupColumn("material_name", "material_uuid", "name"),
            LookupColumn("unit_of_measure", "material_uuid", "unit_of_measure"),
        ),
    ),
    TableDefinition(
        name="vendor_price_lists",
        index=205,
        type=TableType.MASTER_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("manufacturer_material_uuid", T.UUID),
            ("vendor_uuid", T.UUID),
            ("rate", T.AMOUNT),
            ("rate_before_tax", T.AMOUNT),
            ("tax_amount", T.DOUBLE),
            ("tax_percent", T.PERCENT),
            ("currency", T.CURRENCY),
            ("updated_at", T.TIMESTAMP),
        ),
        foreign_keys={
            "manufacturer_material_uuid": ForeignKey("manufacturer_materials", "uuid"),
            "vendor_uuid": ForeignKey("vendors", "uuid"),
            "currency": _CURRENCY,
        },
        lookup_columns=(
            LookupColumn("vendor_name", "vendor_uuid", "name"),
            LookupColumn("manufacturer_name", "manufacturer_material_uuid", "manufacturer_name"),
            LookupColumn("material_name", "manufacturer_material_uuid", "material_name"),
            LookupColumn("model", "manufacturer_material_uuid", "model"),
            LookupColumn("selling_lot_size", "manufacturer_material_uuid", "selling_lot_size"),
            LookupColumn("max_retail_price", "manufacturer_material_uuid", "max_retail_price"),
            LookupColumn("unit_of_measure", "manufacturer_material_uuid", "unit_of_measure"),
        ),
    ),
    TableDefinition(
        name="projects",
        index=251,
        type=TableType.MASTER_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("name", T.NAME),
            ("description", T.DESCRIPTION),
            ("address", T.STRING),
            ("phone_number", T.STRING),
            ("geo_location", T.STRING),
            ("start_date", T.TIMESTAMP),
            ("end_date", T.TIMESTAMP),
            ("completed", T.BOOLEAN),
            ("updated_at", T.TIMESTAMP),
        ),
    ),
    TableDefinition(
        name="purchase_orders",
        index=301,
        type=TableType.TRANSACTION_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("id", T.ID),
            ("vendor_uuid", T.UUID),
            ("date", T.TIMESTAMP),
            ("base_price", T.AMOUNT),
            ("tax_amount", T.AMOUNT),
            ("total_amount", T.AMOUNT),
            ("currency", T.CURRENCY),
            ("order_date", T.TIMESTAMP),
            ("expected_delivery_date", T.TIMESTAMP),
            ("amount_paid", T.AMOUNT),
            ("amount_balance", T.AMOUNT),
            ("completed", T.BOOLEAN),
            ("basket_uuid", T.UUID),
            ("quotation_uuid", T.UUID),
            ("project_uuid", T.UUID),
            ("description", T.DESCRIPTION),
            ("delivery_address", T.ADDRESS),
            ("phone_number", T.PHONE_NUMBER),
            ("updated_at", T.TIMESTAMP),
        ),
        foreign_keys={
            "vendor_uuid": ForeignKey("vendors", "uuid"),
            "basket_uuid": ForeignKey("basket_headers", "uuid"),
            "quotation_uuid": ForeignKey("quotations", "uuid"),
            "project_uuid": ForeignKey("projects", "uuid"),
            "currency": _CURRENCY,
        },
        lookup_columns=(
            LookupColumn("vendor_name", "vendor_uuid", "name"),
        ),
    ),
    TableDefinition(
        name="purchase_order_items",
        index=302,
        type=TableType.TRANSACTION_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("purchase_order_uuid", T.UUID),
            ("manufacturer_material_uuid", T.UUID),
            ("material_uuid", T.UUID),
            ("model", T.STRING),
            ("quantity", T.QUANTITY),
            ("rate", T.AMOUNT),
            ("rate_before_tax", T.AMOUNT),
            ("base_price", T.AMOUNT),
            ("tax_percent", T.PERCENT),
            ("tax_amount", T.AMOUNT),
            ("total_amount", T.AMOUNT),
            ("currency", T.CURRENCY),
            ("basket_item_uuid", T.UUID),
            ("quotation_item_uuid", T.UUID),
            ("unit_of_measure", T.STRING),
            ("updated_at", T.TIMESTAMP),
        ),
        foreign_keys={
            "purchase_order_uuid": ForeignKey("purchase_orders", "uuid"),
            "manufacturer_material_uuid": ForeignKey("manufacturer_materials", "uuid"),
            "material_uuid": ForeignKey("materials", "uuid"),
            "basket_item_uuid": ForeignKey("basket_items", "uuid"),
            "quotation_item_uuid": ForeignKey("quotation_items", "uuid"),
            "unit_of_measure": _UNIT_OF_MEASURE,
            "currency": _CURRENCY,
        },
        lookup_columns=(
            LookupColumn("material_name", "material_uuid", "name"),
            LookupColumn("manufacturer_name", "manufacturer_material_uuid", "manufacturer_name"),
            LookupColumn("selling_lot_size", "manufacturer_material_uuid", "selling_lot_size"),
            LookupColumn("max_retail_price", "manufacturer_material_uuid", "max_retail_price"),
        ),
    ),
    TableDefinition(
        name="purchase_order_payments",
        index=303,
        type=TableType.TRANSACTION_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("purchase_order_uuid", T.UUID),
            ("date", T.TIMESTAMP),
            ("amount", T.AMOUNT),
            ("currency", T.CURRENCY),
            ("upi_ref_number", T.STRING),
            ("updated_at", T.TIMESTAMP),
        ),
        foreign_keys={
            "purchase_order_uuid": ForeignKey("purchase_orders", "uuid"),
            "currency": _CURRENCY,
        },
    ),
    TableDefinition(
        name="basket_headers",
        index=311,
        type=TableType.TRANSACTION_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("id", T.ID),
            ("date", T.TIMESTAMP),
            ("description", T.DESCRIPTION),
            ("expected_delivery_date", T.TIMESTAMP),
            ("total_price", T.AMOUNT),
            ("currency", T.CURRENCY),
            ("number_of_items", T.INTEGER),
            ("project_uuid", T.UUID),
            ("delivery_address", T.ADDRESS),
            ("phone_number", T.PHONE_NUMBER),
            ("updated_at", T.TIMESTAMP),
        ),
        foreign_keys={
            "project_uuid": ForeignKey("projects", "uuid"),
            "currency": _CURRENCY,
        },
    ),
    TableDefinition(
        name="basket_items",
        index=312,
        type=TableType.TRANSACTION_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("basket_uuid", T.UUID),
            ("id", T.ID),
            ("manufacturer_material_uuid", T.UUID),
            ("material_uuid", T.UUID),
            ("model", T.STRING),
            ("manufacturer_uuid", T.UUID),
            ("quantity", T.QUANTITY),
            ("unit_of_measure", T.STRING),
            ("max_retail_price", T.AMOUNT),
            ("price", T.AMOUNT),
            ("currency", T.CURRENCY),
            ("updated_at", T.TIMESTAMP),
        ),
        foreign_keys={
            "basket_uuid": ForeignKey("basket_headers", "uuid"),
            "manufacturer_material_uuid": ForeignKey("manufacturer_materials", "uuid"),
            "material_uuid": ForeignKey("materials", "uuid"),
            "manufacturer_uuid": ForeignKey("manufacturers", "uuid"),
            "unit_of_measure": _UNIT_OF_MEASURE,
            "currency": _CURRENCY,
        },
        lookup_columns=(
            LookupColumn("manufacturer_name", "manufacturer_uuid", "name"),
            LookupColumn("material_name", "material_uuid", "name"),
            LookupColumn("selling_lot_size", "manufacturer_material_uuid", "selling_lot_size"),
        ),
    ),
    TableDefinition(
        name="quotations",
        index=321,
        type=TableType.TRANSACTION_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("id", T.ID),
            ("basket_uuid", T.UUID),
            ("vendor_uuid", T.UUID),
            ("date", T.TIMESTAMP),
            ("expected_delivery_date", T.TIMESTAMP),
            ("base_price", T.AMOUNT),
            ("tax_amount", T.AMOUNT),
            ("total_amount", T.AMOUNT),
            ("currency", T.CURRENCY),
            ("number_of_available_items", T.INTEGER),
            ("number_of_unavailable_items", T.INTEGER),
            ("project_uuid", T.UUID),
            ("description", T.DESCRIPTION),
            ("updated_at", T.TIMESTAMP),
        ),
        foreign_keys={
            "basket_uuid": ForeignKey("basket_headers", "uuid"),
            "vendor_uuid": ForeignKey("vendors", "uuid"),
            "project_uuid": ForeignKey("projects", "uuid"),
            "currency": _CURRENCY,
        },
        lookup_columns=(
            LookupColumn("vendor_name", "vendor_uuid", "name"),
        ),
    ),
    TableDefinition(
        name="quotation_items",
        index=322,
        type=TableType.TRANSACTION_DATA,
        key_column="uuid",
        columns=(
            ("uuid", T.UUID),
            ("id", T.ID),
            ("quotation_uuid", T.UUID),
            ("basket_uuid", T.UUID),
            ("basket_item_uuid", T.UUID),
            ("vendor_price_list_uuid", T.UUID),
            ("item_available_with_vendor", T.BOOLEAN),
            ("manufacturer_material_uuid", T.UUID),
            ("material_uuid", T.UUID),
            ("model", T.STRING),
            ("quantity", T.QUANTITY),
            ("max_retail_price", T.AMOUNT),
            ("rate", T.AMOUNT),
            ("rate_before_tax", T.AMOUNT),
            ("base_price", T.AMOUNT),
            ("tax_percent", T.PERCENT),
            ("tax_amount", T.AMOUNT),
            ("total_amount", T.AMOUNT),
            ("currency", T.CURRENCY),
            ("unit_of_measure", T.STRING),
            ("updated_at", T.TIMESTAMP),
        ),
        foreign_keys={
            "quotation_uuid": ForeignKey("quotations", "uuid"),
            "basket_uuid": ForeignKey("basket_headers", "uuid"),
            "basket_item_uuid": ForeignKey("basket_items", "uuid"),
            "vendor_price_list_uuid": ForeignKey("vendor_price_lists", "uuid"),
            "manufacturer_material_uuid": ForeignKey("manufacturer_materials", "uuid"),
            "material_uuid": ForeignKey("materials", "uuid"),
            "unit_of_measure": _UNIT_OF_MEASURE,
            "currency": _CURRENCY,
        },
        lookup_columns=(
            LookupColumn("material_name", "material_uuid", "name"),
            LookupColumn("selling_lot_size", "manufacturer_material_uuid", "selling_lot_size"),
            LookupColumn("manufacturer_name", "manufacturer_material_uuid", "manufacturer_name"),
            LookupColumn("vendor_name", "vendor_price_list_uuid", "vendor_name"),
        ),
    ),
    TableDefinition(
        name=CHANGE_LOG,
        index=CHANGE_LOG_INDEX,
        type=TableType.LOG,
        key_column="uuid",
        columns=_LOG_COLUMNS,
        is_sync_table=False,
    ),
    TableDefinition(
        name=CONDENSED_CHANGE_LOG,
        index=CONDENSED_CHANGE_LOG_INDEX,
        type=TableType.LOG,
        key_column="uuid",
        columns=_LOG_COLUMNS,
        is_sync_table=False,
    ),
)

# Built once at import time and shared by every service
registry = SchemaRegistry(TABLE_DEFINITIONS)
