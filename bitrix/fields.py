"""Remote (Bitrix24) -> local field mappings.

Declared statically and checked once at startup by validate_field_maps():
every target must be a column of the local table, and neither sources nor
targets may repeat.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy import Table

from bitrix.parsing import parse_date, parse_decimal, parse_int, parse_text
from core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldMapping:
    source: str
    target: str
    parse: Callable[[Any], Any]


# UF_* field holding the price type; the portal-specific id comes from settings
PRICE_TYPE_FIELD = settings.PRICE_TYPE_FIELD

DEAL_FIELDS: Tuple[FieldMapping, ...] = (
    FieldMapping("ID", "id", parse_int),
    FieldMapping("TITLE", "title", parse_text),
    FieldMapping("CATEGORY_ID", "category_id", parse_int),
    FieldMapping(PRICE_TYPE_FIELD, "price_type", parse_int),
    FieldMapping("DATE_CREATE", "date_create", parse_date),
)

LINE_ITEM_FIELDS: Tuple[FieldMapping, ...] = (
    FieldMapping("PRODUCT_ID", "product_id", parse_int),
    FieldMapping("PRODUCT_NAME", "product_name", parse_text),
    FieldMapping("PRICE_BRUTTO", "price", parse_decimal),
    FieldMapping("DISCOUNT_SUM", "discount", parse_decimal),
)

# select для crm.deal.list: запрашиваем только то, что пишем в БД
DEAL_SELECT = [m.source for m in DEAL_FIELDS]


def map_record(raw: Dict[str, Any], mappings: Iterable[FieldMapping],
               extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    record = {m.target: m.parse(raw.get(m.source)) for m in mappings}
    if extra:
        record.update(extra)
    return record


def map_deal(raw: Dict[str, Any]) -> Dict[str, Any]:
    return map_record(raw, DEAL_FIELDS)


def map_line_item(raw: Dict[str, Any], deal_id: int) -> Dict[str, Any]:
    return map_record(raw, LINE_ITEM_FIELDS, extra={"deal_id": deal_id})


def validate_field_map(mappings: Iterable[FieldMapping], table: Table,
                       extra_targets: Iterable[str] = ()) -> None:
    mappings = tuple(mappings)
    sources = [m.source for m in mappings]
    targets = [m.target for m in mappings] + list(extra_targets)

    if not all(sources):
        raise ValueError(f"{table.name}: empty source field in mapping")
    if len(set(sources)) != len(sources):
        raise ValueError(f"{table.name}: duplicated source fields {sources}")
    if len(set(targets)) != len(targets):
        raise ValueError(f"{table.name}: duplicated target fields {targets}")

    columns = set(table.columns.keys())
    unknown = [t for t in targets if t not in columns]
    if unknown:
        raise ValueError(f"{table.name}: mapping targets are not columns: {unknown}")


def validate_field_maps() -> None:
    from models.deal import Deal
    from models.deal_product import DealProduct

    validate_field_map(DEAL_FIELDS, Deal.__table__)
    validate_field_map(LINE_ITEM_FIELDS, DealProduct.__table__, extra_targets=("deal_id",))
    logger.info("Field mappings validated")
