from __future__ import annotations

from datetime import date
from enum import Enum, IntEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class EntityKind(IntEnum):
    """Stable codes written by the source triggers into the change log."""

    PRICE = 1
    INVENTORY = 2
    PRODUCT_BARCODE = 3
    CUSTOMER = 4
    PRICE_FORMULA = 5

    @property
    def config_name(self) -> str:
        return self.name.lower()

    @classmethod
    def from_name(cls, name: str) -> EntityKind:
        normalized = name.strip().lower().replace("-", "_")
        for kind in cls:
            if kind.config_name == normalized:
                return kind
        raise ValueError(f"Unknown entity kind: {name!r}")


class ChangeOperation(IntEnum):
    INSERT = 1
    UPDATE = 2
    DELETE = 3


class FailurePolicy(str, Enum):
    CONTINUE_ON_CHUNK_FAILURE = "continue_on_chunk_failure"
    ABORT_ON_FIRST_FAILURE = "abort_on_first_failure"


class ChangeLogRecord(BaseModel):
    """One trigger-written row of the change-log table."""

    model_config = ConfigDict(frozen=True)

    id: int
    entity_kind: EntityKind
    operation: ChangeOperation
    row_ref: int


class _SnapshotRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    row_order_ref: int

    @property
    def row_ref(self) -> int:
        return self.row_order_ref

    def remote_row(self) -> dict[str, Any]:
        return self.model_dump(exclude={"kind"})


class PriceRecord(_SnapshotRecord):
    kind: Literal[EntityKind.PRICE] = EntityKind.PRICE

    ic_code: str = Field(min_length=1)
    unit_code: str
    from_qty: float
    to_qty: float
    from_date: date | None = None
    to_date: date | None = None
    sale_type: str
    sale_price1: float
    status: str
    price_type: str
    cust_code: str
    sale_price2: float
    cust_group_1: str
    price_mode: str


class InventoryRecord(_SnapshotRecord):
    kind: Literal[EntityKind.INVENTORY] = EntityKind.INVENTORY

    ic_code: str = Field(min_length=1)
    name: str
    item_type: int
    unit_standard_code: str


class ProductBarcodeRecord(_SnapshotRecord):
    kind: Literal[EntityKind.PRODUCT_BARCODE] = EntityKind.PRODUCT_BARCODE

    ic_code: str = Field(min_length=1)
    barcode: str = Field(min_length=1)
    name: str
    unit_code: str
    unit_name: str


class CustomerRecord(_SnapshotRecord):
    kind: Literal[EntityKind.CUSTOMER] = EntityKind.CUSTOMER

    code: str = Field(min_length=1)
    price_level: str


class PriceFormulaRecord(_SnapshotRecord):
    kind: Literal[EntityKind.PRICE_FORMULA] = EntityKind.PRICE_FORMULA

    ic_code: str = Field(min_length=1)
    unit_code: str
    sale_type: int
    price_0: str
    price_1: str
    price_2: str
    price_3: str
    price_4: str
    price_5: str
    price_6: str
    price_7: str
    price_8: str
    price_9: str
    tax_type: int
    price_currency: int
    currency_code: str


EntitySnapshot = Annotated[
    Union[
        PriceRecord,
        InventoryRecord,
        ProductBarcodeRecord,
        CustomerRecord,
        PriceFormulaRecord,
    ],
    Field(discriminator="kind"),
]


class BalanceRecord(BaseModel):
    """Stock balance row; synchronised by full reconciliation, not the change log."""

    model_config = ConfigDict(frozen=True)

    ic_code: str = Field(min_length=1)
    wh_code: str = Field(min_length=1)
    unit_code: str = Field(min_length=1)
    balance_qty: float

    def remote_row(self) -> dict[str, Any]:
        return self.model_dump()


class ClassificationResult(BaseModel):
    kind: EntityKind
    records: list[ChangeLogRecord] = Field(default_factory=list)
    inserts: list[EntitySnapshot] = Field(default_factory=list)
    delete_keys: list[int] = Field(default_factory=list)
    skipped_row_refs: list[int] = Field(default_factory=list)

    @property
    def consumed_log_ids(self) -> list[int]:
        return [record.id for record in self.records]

    @property
    def is_empty(self) -> bool:
        return not self.records


class ApplyResult(BaseModel):
    deleted_rows: int = 0
    inserted_rows: int = 0
    failed_rows: int = 0
    failed_chunks: int = 0
    skipped_chunks: int = 0
    failed_keys: list[Any] = Field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return self.failed_rows == 0 and not self.aborted


class PruneResult(BaseModel):
    pruned: int = 0
    failed_ids: list[int] = Field(default_factory=list)


class ReconcileDiff(BaseModel):
    inserts: list[dict[str, Any]] = Field(default_factory=list)
    updates: list[dict[str, Any]] = Field(default_factory=list)
    deletes: list[tuple[Any, ...]] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.inserts or self.updates or self.deletes)


class EntitySyncReport(BaseModel):
    kind: EntityKind
    consumed: int = 0
    skipped: int = 0
    apply: ApplyResult = Field(default_factory=ApplyResult)
    prune: PruneResult = Field(default_factory=PruneResult)
    error: str | None = None


class ReconcileReport(BaseModel):
    table: str
    inserts: int = 0
    updates: int = 0
    deletes: int = 0
    apply: ApplyResult = Field(default_factory=ApplyResult)
    error: str | None = None
