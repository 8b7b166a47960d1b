"""Catalog of synchronised entities: source queries, record types and remote tables."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from market_sync.models import (
    BalanceRecord,
    CustomerRecord,
    EntityKind,
    InventoryRecord,
    PriceFormulaRecord,
    PriceRecord,
    ProductBarcodeRecord,
)


class EntityDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    kind: EntityKind | None = None
    record_type: type[BaseModel]
    source_query: str
    remote_table: str
    remote_ddl: str
    conflict_columns: tuple[str, ...] = ()
    delete_key_columns: tuple[str, ...] = ("row_order_ref",)
    numeric_columns: tuple[str, ...] = ()
    touch_columns: tuple[str, ...] = ()

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(name for name in self.record_type.model_fields if name != "kind")

    @property
    def compared_columns(self) -> tuple[str, ...]:
        return tuple(name for name in self.columns if name not in self.delete_key_columns)

    def key_of(self, row: Mapping[str, Any]) -> Any:
        if len(self.delete_key_columns) == 1:
            return row[self.delete_key_columns[0]]
        return tuple(row[column] for column in self.delete_key_columns)


PRICE = EntityDefinition(
    name=EntityKind.PRICE.config_name,
    kind=EntityKind.PRICE,
    record_type=PriceRecord,
    source_query="""
        SELECT roworder AS row_order_ref,
               ic_code,
               COALESCE(unit_code, '') AS unit_code,
               COALESCE(from_qty, 0) AS from_qty,
               COALESCE(to_qty, 0) AS to_qty,
               from_date,
               to_date,
               COALESCE(sale_type::text, '') AS sale_type,
               COALESCE(sale_price1, 0) AS sale_price1,
               COALESCE(status::text, '') AS status,
               COALESCE(price_type::text, '') AS price_type,
               COALESCE(cust_code, '') AS cust_code,
               COALESCE(sale_price2, 0) AS sale_price2,
               COALESCE(cust_group_1, '') AS cust_group_1,
               COALESCE(price_mode::text, '') AS price_mode
        FROM ic_inventory_price
        WHERE roworder = %s AND ic_code IS NOT NULL AND ic_code <> ''
    """,
    remote_table="ic_inventory_price",
    remote_ddl="""
        CREATE TABLE IF NOT EXISTS ic_inventory_price (
            id SERIAL PRIMARY KEY,
            row_order_ref INTEGER NOT NULL,
            ic_code VARCHAR(50) NOT NULL,
            unit_code VARCHAR(20),
            from_qty DECIMAL(15,6) DEFAULT 0,
            to_qty DECIMAL(15,6) DEFAULT 0,
            from_date DATE,
            to_date DATE,
            sale_type VARCHAR(20),
            sale_price1 DECIMAL(15,6) DEFAULT 0,
            status VARCHAR(20),
            price_type VARCHAR(20),
            cust_code VARCHAR(50),
            sale_price2 DECIMAL(15,6) DEFAULT 0,
            cust_group_1 VARCHAR(50),
            price_mode VARCHAR(20),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (ic_code, unit_code, from_qty, cust_code, price_type)
        )
    """,
    conflict_columns=("ic_code", "unit_code", "from_qty", "cust_code", "price_type"),
    touch_columns=("updated_at",),
)

INVENTORY = EntityDefinition(
    name=EntityKind.INVENTORY.config_name,
    kind=EntityKind.INVENTORY,
    record_type=InventoryRecord,
    source_query="""
        SELECT roworder AS row_order_ref,
               code AS ic_code,
               COALESCE(name_1, '') AS name,
               COALESCE(item_type, 0) AS item_type,
               COALESCE(unit_standard, '') AS unit_standard_code
        FROM ic_inventory
        WHERE roworder = %s AND code IS NOT NULL AND code <> ''
    """,
    remote_table="ic_inventory",
    remote_ddl="""
        CREATE TABLE IF NOT EXISTS ic_inventory (
            row_order_ref INTEGER NOT NULL,
            ic_code VARCHAR(50) NOT NULL,
            name VARCHAR(255),
            item_type INTEGER DEFAULT 0,
            unit_standard_code VARCHAR(50),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (ic_code)
        )
    """,
    conflict_columns=("ic_code",),
)

PRODUCT_BARCODE = EntityDefinition(
    name=EntityKind.PRODUCT_BARCODE.config_name,
    kind=EntityKind.PRODUCT_BARCODE,
    record_type=ProductBarcodeRecord,
    source_query="""
        SELECT b.roworder AS row_order_ref,
               b.ic_code,
               b.barcode,
               COALESCE((SELECT i.name_1 FROM ic_inventory i WHERE i.code = b.ic_code LIMIT 1), '')
                   AS name,
               COALESCE(b.unit_code, '') AS unit_code,
               COALESCE((SELECT u.name_1 FROM ic_unit u WHERE u.code = b.unit_code LIMIT 1), '')
                   AS unit_name
        FROM ic_inventory_barcode b
        WHERE b.roworder = %s
          AND b.barcode IS NOT NULL AND b.barcode <> ''
          AND b.ic_code IS NOT NULL AND b.ic_code <> ''
    """,
    remote_table="ic_inventory_barcode",
    remote_ddl="""
        CREATE TABLE IF NOT EXISTS ic_inventory_barcode (
            row_order_ref INTEGER NOT NULL,
            ic_code VARCHAR(50) NOT NULL,
            barcode VARCHAR(100) NOT NULL,
            name VARCHAR(255),
            unit_code VARCHAR(20),
            unit_name VARCHAR(100),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (barcode)
        )
    """,
    conflict_columns=("barcode",),
)

CUSTOMER = EntityDefinition(
    name=EntityKind.CUSTOMER.config_name,
    kind=EntityKind.CUSTOMER,
    record_type=CustomerRecord,
    source_query="""
        SELECT roworder AS row_order_ref,
               code,
               COALESCE(price_level::text, '') AS price_level
        FROM ar_customer
        WHERE roworder = %s AND code IS NOT NULL AND code <> ''
    """,
    remote_table="ar_customer",
    remote_ddl="""
        CREATE TABLE IF NOT EXISTS ar_customer (
            row_order_ref INTEGER NOT NULL,
            code VARCHAR(50) NOT NULL,
            price_level VARCHAR(50),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (code)
        )
    """,
    conflict_columns=("code",),
)

PRICE_FORMULA = EntityDefinition(
    name=EntityKind.PRICE_FORMULA.config_name,
    kind=EntityKind.PRICE_FORMULA,
    record_type=PriceFormulaRecord,
    source_query="""
        SELECT roworder AS row_order_ref,
               ic_code,
               COALESCE(unit_code, '') AS unit_code,
               COALESCE(sale_type, 0) AS sale_type,
               COALESCE(price_0, '0') AS price_0,
               COALESCE(price_1, '0') AS price_1,
               COALESCE(price_2, '0') AS price_2,
               COALESCE(price_3, '0') AS price_3,
               COALESCE(price_4, '0') AS price_4,
               COALESCE(price_5, '0') AS price_5,
               COALESCE(price_6, '0') AS price_6,
               COALESCE(price_7, '0') AS price_7,
               COALESCE(price_8, '0') AS price_8,
               COALESCE(price_9, '0') AS price_9,
               COALESCE(tax_type, 0) AS tax_type,
               COALESCE(price_currency, 0) AS price_currency,
               COALESCE(currency_code, '') AS currency_code
        FROM ic_inventory_price_formula
        WHERE roworder = %s AND ic_code IS NOT NULL AND ic_code <> ''
    """,
    remote_table="ic_inventory_price_formula",
    remote_ddl="""
        CREATE TABLE IF NOT EXISTS ic_inventory_price_formula (
            row_order_ref INTEGER NOT NULL,
            ic_code VARCHAR(50) NOT NULL,
            unit_code VARCHAR(20) NOT NULL,
            sale_type INTEGER DEFAULT 0,
            price_0 VARCHAR(100),
            price_1 VARCHAR(100),
            price_2 VARCHAR(100),
            price_3 VARCHAR(100),
            price_4 VARCHAR(100),
            price_5 VARCHAR(100),
            price_6 VARCHAR(100),
            price_7 VARCHAR(100),
            price_8 VARCHAR(100),
            price_9 VARCHAR(100),
            tax_type INTEGER DEFAULT 0,
            price_currency INTEGER DEFAULT 0,
            currency_code VARCHAR(20),
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (ic_code, unit_code, sale_type, price_currency)
        )
    """,
    conflict_columns=("ic_code", "unit_code", "sale_type", "price_currency"),
)

BALANCE = EntityDefinition(
    name="balance",
    record_type=BalanceRecord,
    source_query="""
        SELECT ic_code,
               warehouse AS wh_code,
               ic_unit_code AS unit_code,
               COALESCE(balance_qty, 0) AS balance_qty
        FROM ic_balance
        WHERE ic_code IS NOT NULL AND ic_code <> ''
          AND warehouse IS NOT NULL AND warehouse <> ''
          AND ic_unit_code IS NOT NULL AND ic_unit_code <> ''
        ORDER BY ic_code, warehouse, ic_unit_code
    """,
    remote_table="ic_balance",
    remote_ddl="""
        CREATE TABLE IF NOT EXISTS ic_balance (
            ic_code VARCHAR(50) NOT NULL,
            wh_code VARCHAR(50) NOT NULL,
            unit_code VARCHAR(50) NOT NULL,
            balance_qty NUMERIC(18,3) DEFAULT 0,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (ic_code, wh_code, unit_code)
        )
    """,
    conflict_columns=("ic_code", "wh_code", "unit_code"),
    delete_key_columns=("ic_code", "wh_code", "unit_code"),
    numeric_columns=("balance_qty",),
    touch_columns=("updated_at",),
)

LOG_DRIVEN_ENTITIES: dict[EntityKind, EntityDefinition] = {
    definition.kind: definition
    for definition in (PRICE, INVENTORY, PRODUCT_BARCODE, CUSTOMER, PRICE_FORMULA)
    if definition.kind is not None
}

RECONCILED_ENTITIES: dict[str, EntityDefinition] = {BALANCE.name: BALANCE}


def definition_for(kind: EntityKind) -> EntityDefinition:
    return LOG_DRIVEN_ENTITIES[kind]
