"""Tests for Bitrix value parsing and the remote-to-local field maps."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from bitrix.fields import (
    DEAL_FIELDS,
    LINE_ITEM_FIELDS,
    FieldMapping,
    map_deal,
    validate_field_map,
    validate_field_maps,
)
from bitrix.parsing import parse_date, parse_decimal, parse_int, parse_text
from models.deal import Deal
from models.deal_product import DealProduct


class TestParsing:
    @pytest.mark.parametrize("raw, expected", [
        ("68", 68), (68, 68), ("68.0", 68), (" 7 ", 7),
        ("", None), (None, None), ("abc", None), (True, None), ("inf", None), ("-inf", None),
    ])
    def test_parse_int(self, raw, expected):
        assert parse_int(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("3050000.00", Decimal("3050000.00")),
        ("3 050 000,00", Decimal("3050000.00")),
        ("1 250,5", Decimal("1250.5")),
        (12, Decimal("12")),
        (0.1, Decimal("0.1")),
        ("", None),
        ("n/a", None),
    ])
    def test_parse_decimal(self, raw, expected):
        assert parse_decimal(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("2025-09-23T03:00:00+03:00", date(2025, 9, 23)),
        ("2025-09-23T00:00:00Z", date(2025, 9, 23)),
        ("2025-09-23", date(2025, 9, 23)),
        ("", None),
        ("вчера", None),
    ])
    def test_parse_date(self, raw, expected):
        assert parse_date(raw) == expected

    def test_parse_text(self):
        assert parse_text(None) is None
        assert parse_text(15) == "15"


class TestFieldMaps:
    def test_shipped_maps_match_tables(self):
        validate_field_maps()

    def test_map_deal_ignores_unmapped_fields(self):
        deal = map_deal({"ID": "3", "TITLE": "X", "OPPORTUNITY": "100.00", "CATEGORY_ID": "68"})

        assert set(deal) == {m.target for m in DEAL_FIELDS}
        assert deal["id"] == 3
        assert deal["price_type"] is None

    def test_target_that_is_not_a_column_is_rejected(self):
        broken = DEAL_FIELDS + (FieldMapping("OPPORTUNITY", "opportunity", parse_decimal),)

        with pytest.raises(ValueError, match="not columns"):
            validate_field_map(broken, Deal.__table__)

    def test_duplicated_source_is_rejected(self):
        broken = LINE_ITEM_FIELDS + (FieldMapping("PRODUCT_ID", "deal_id", parse_int),)

        with pytest.raises(ValueError, match="duplicated source"):
            validate_field_map(broken, DealProduct.__table__)

    def test_duplicated_target_is_rejected(self):
        with pytest.raises(ValueError, match="duplicated target"):
            validate_field_map(LINE_ITEM_FIELDS, DealProduct.__table__,
                               extra_targets=("deal_id", "deal_id"))
