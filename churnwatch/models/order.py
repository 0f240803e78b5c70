"""
Canonical order record

One fulfillment event as delivered by the ingestion/merge service. Field
names are snake_case; the merged dataset's column headers are accepted as
aliases so rows can be validated straight from the canonical export.
"""
from datetime import date, datetime
from functools import cached_property
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from churnwatch.utils.helpers import parse_order_date
from churnwatch.utils.logger import log

# Report-side columns, folded into ReportDetails
_REPORT_FIELDS = {
    "weight": ("report_weight", "Вес (report)"),
    "quantity": ("report_quantity", "Кол-во"),
    "warehouse": ("report_warehouse", "Склад (report)"),
    "status": ("report_status", "Статус (report)"),
    "order_date": ("report_order_date", "Дата заказа (report)"),
}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _to_float(value: Any) -> Optional[float]:
    value = _blank_to_none(value)
    if value is None:
        return None
    try:
        return float(str(value).replace(",", ".").replace(" ", ""))
    except ValueError:
        return None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    return int(number) if number is not None else None


class ReportDetails(BaseModel):
    """Report-side enrichment of an order; absent on unmatched rows"""
    model_config = ConfigDict(frozen=True)

    weight: Optional[float] = None
    quantity: Optional[int] = None
    warehouse: Optional[str] = None
    status: Optional[str] = None
    order_date: Optional[str] = None

    @field_validator("weight", mode="before")
    @classmethod
    def _coerce_weight(cls, v):
        return _to_float(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, v):
        return _to_int(v)

    @field_validator("warehouse", "status", "order_date", mode="before")
    @classmethod
    def _coerce_text(cls, v):
        if isinstance(v, (datetime, date)):
            return v.isoformat()
        return _blank_to_none(v)


class OrderRecord(BaseModel):
    """A single fulfillment order. Partner and order timestamp are required."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    partner: str = Field(min_length=1, validation_alias=AliasChoices("partner", "Партнер", "Партнёр"))
    order_date: str = Field(min_length=1, validation_alias=AliasChoices("order_date", "Дата заказа (orders)"))

    order_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("order_id", "ID заказа"))
    ds_order_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("ds_order_number", "№ заказа ДС"))
    order_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("order_type", "Тип заказа"))
    item_count: Optional[int] = Field(default=None, validation_alias=AliasChoices("item_count", "Товаров"))
    total_weight: Optional[float] = Field(default=None, validation_alias=AliasChoices("total_weight", "Общий вес"))
    warehouse: Optional[str] = Field(default=None, validation_alias=AliasChoices("warehouse", "Склад"))
    status: Optional[str] = Field(default=None, validation_alias=AliasChoices("status", "Статус"))
    marketplace: Optional[str] = Field(default=None, validation_alias=AliasChoices("marketplace", "Площадка"))
    sku: Optional[str] = Field(default=None, validation_alias=AliasChoices("sku", "Артикул"))
    direction: Optional[str] = Field(default=None, validation_alias=AliasChoices("direction", "Направление (расчёт)"))
    normalized_marketplace: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("normalized_marketplace", "Маркетплейс (норм.)")
    )
    source_file: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_file", "Файл-источник"))
    updated_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("updated_at", "Последнее обновление"))

    report: Optional[ReportDetails] = None

    @model_validator(mode="before")
    @classmethod
    def _collect_report_fields(cls, data):
        if not isinstance(data, dict) or "report" in data:
            return data

        data = dict(data)
        report = {}
        for name, keys in _REPORT_FIELDS.items():
            for key in keys:
                if key in data:
                    value = _blank_to_none(data.pop(key))
                    if value is not None:
                        report[name] = value
        data["report"] = report or None
        return data

    @field_validator("item_count", mode="before")
    @classmethod
    def _coerce_item_count(cls, v):
        return _to_int(v)

    @field_validator("total_weight", mode="before")
    @classmethod
    def _coerce_weight(cls, v):
        return _to_float(v)

    @field_validator(
        "partner", "order_date", "order_id", "ds_order_number", "order_type", "warehouse", "status",
        "marketplace", "sku", "direction", "normalized_marketplace", "source_file", "updated_at",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v):
        if isinstance(v, (datetime, date)):
            return v.isoformat()
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return _blank_to_none(v)

    @cached_property
    def ordered_at(self) -> Optional[datetime]:
        """Parsed order timestamp, None when the raw value matches no known format"""
        return parse_order_date(self.order_date)

    @property
    def has_report(self) -> bool:
        return self.report is not None


def load_order_records(rows: Iterable[Union[OrderRecord, Dict[str, Any]]]) -> List[OrderRecord]:
    """
    Validate a collection of rows into OrderRecords.

    Rows missing the partner or the order timestamp are skipped, never
    raised: they cannot take part in any aggregate.
    """
    records: List[OrderRecord] = []
    skipped = 0

    for row in rows:
        if isinstance(row, OrderRecord):
            records.append(row)
            continue
        try:
            records.append(OrderRecord.model_validate(row))
        except ValidationError as e:
            skipped += 1
            log.debug(f"Skipping order row: {e.error_count()} validation error(s)")

    if skipped:
        log.warning(f"Skipped {skipped} order rows without partner or order date")
    return records
