"""
Локальное хранилище сделок.

Запись идёт через upsert по уникальному ключу таблицы:
    deals           -> id
    deals_products  -> (deal_id, product_id)

Повторная запись с тем же ключом полностью заменяет значения строки
(поля, которых нет в записи, становятся NULL). Пакет пишется в одной
транзакции, каждая строка внутри своего SAVEPOINT: ошибка одной строки
откатывает только её, остальные коммитятся. Результат по каждой строке
возвращается вызывающему.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Table, and_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import StoreError, ValidationError
from models.database import engine as default_engine
from models.deal import Deal
from models.deal_product import DealProduct

logger = logging.getLogger(__name__)

# Таблица -> колонки уникального ключа, по которому идёт upsert
TABLES: Dict[str, Tuple[Table, Tuple[str, ...]]] = {
    "deals": (Deal.__table__, ("id",)),
    "deals_products": (DealProduct.__table__, ("deal_id", "product_id")),
}

_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass
class RowOutcome:
    index: int
    key: Dict[str, Any]
    ok: bool
    error: Optional[str] = None


@dataclass
class UpsertResult:
    table: str
    outcomes: List[RowOutcome] = field(default_factory=list)

    @property
    def written(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> List[RowOutcome]:
        return [o for o in self.outcomes if not o.ok]


class LocalStore:
    def __init__(self, bind: Optional[Engine] = None):
        self.engine = bind or default_engine
        insert = _INSERTS.get(self.engine.dialect.name)
        if insert is None:
            raise ValueError(f"Unsupported database dialect: {self.engine.dialect.name}")
        self._insert = insert

    def _table(self, table_name: str) -> Tuple[Table, Tuple[str, ...]]:
        if table_name not in TABLES:
            raise ValidationError(f"Unknown table: {table_name}", source="store")
        return TABLES[table_name]

    @staticmethod
    def _writable_columns(table: Table, key_columns: Sequence[str]) -> List[str]:
        # Синтетический автоинкрементный id не пишем
        return [
            c.name for c in table.columns
            if not (c.primary_key and c.name not in key_columns)
        ]

    def _upsert_statement(self, table: Table, key_columns: Sequence[str], columns: Sequence[str]):
        stmt = self._insert(table)
        update_columns = [c for c in columns if c not in key_columns]
        if not update_columns:
            return stmt.on_conflict_do_nothing(index_elements=list(key_columns))
        return stmt.on_conflict_do_update(
            index_elements=list(key_columns),
            set_={c: stmt.excluded[c] for c in update_columns},
        )

    def _validate_records(self, table_name: str, records: Sequence[Dict[str, Any]],
                          columns: Sequence[str], key_columns: Sequence[str]) -> None:
        if not records:
            raise ValidationError(f"No records to write into {table_name}", source="store.upsert_many")
        if not all(isinstance(r, dict) for r in records):
            raise ValidationError("Records must be dicts of field-value pairs", source="store.upsert_many")

        fields = set(records[0].keys())
        for r in records[1:]:
            if set(r.keys()) != fields:
                raise ValidationError(
                    f"Records for {table_name} must share the same fields", source="store.upsert_many"
                )
        unknown = fields - set(columns)
        if unknown:
            raise ValidationError(
                f"Unknown fields for {table_name}: {sorted(unknown)}", source="store.upsert_many"
            )
        missing_key = set(key_columns) - fields
        if missing_key:
            raise ValidationError(
                f"Records for {table_name} lack key fields: {sorted(missing_key)}", source="store.upsert_many"
            )

    def upsert_many(self, table_name: str, records: Sequence[Dict[str, Any]]) -> UpsertResult:
        """
        Вставляет или заменяет записи по уникальному ключу таблицы.

        Args:
            table_name: "deals" или "deals_products"
            records: Непустой список словарей с одинаковым набором полей

        Returns:
            UpsertResult с результатом по каждой строке

        Raises:
            ValidationError: Пустой/неоднородный пакет, неизвестная таблица или поле
            StoreError: Не записалось ни одной строки или транзакция не закоммитилась
        """
        table, key_columns = self._table(table_name)
        columns = self._writable_columns(table, key_columns)
        self._validate_records(table_name, records, columns, key_columns)

        stmt = self._upsert_statement(table, key_columns, columns)
        result = UpsertResult(table=table_name)

        try:
            with self.engine.begin() as conn:
                for index, record in enumerate(records):
                    key = {k: record[k] for k in key_columns}
                    params = {c: record.get(c) for c in columns}
                    try:
                        with conn.begin_nested():
                            conn.execute(stmt, params)
                        result.outcomes.append(RowOutcome(index=index, key=key, ok=True))
                    except SQLAlchemyError as e:
                        error = str(getattr(e, "orig", None) or e)
                        logger.error(f"Ошибка записи строки {key} в {table_name}: {error}")
                        result.outcomes.append(RowOutcome(index=index, key=key, ok=False, error=error))
        except SQLAlchemyError as e:
            logger.error(f"Не удалось записать пакет в {table_name}: {e}", exc_info=True)
            raise StoreError(f"Batch write into {table_name} failed: {e}", source="store.upsert_many")

        if result.written == 0:
            raise StoreError(
                f"None of {len(records)} rows were written into {table_name}: {result.failed[0].error}",
                source="store.upsert_many",
            )

        if result.failed:
            logger.warning(
                f"{table_name}: записано {result.written} из {len(records)} строк, "
                f"ошибок: {len(result.failed)}"
            )
        else:
            logger.info(f"{table_name}: записано {result.written} строк")
        return result

    def upsert_one(self, table_name: str, record: Dict[str, Any]) -> UpsertResult:
        if not isinstance(record, dict) or not record:
            raise ValidationError("Record must be a non-empty dict", source="store.upsert_one")
        return self.upsert_many(table_name, [record])

    def get_all(self, table_name: str) -> List[Dict[str, Any]]:
        table, _ = self._table(table_name)
        stmt = select(table).order_by(*table.primary_key.columns)
        return self._fetch(table_name, stmt)

    def get_filtered(self, table_name: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Выборка по равенству всех полей фильтра (AND)."""
        table, _ = self._table(table_name)
        if not filters or not isinstance(filters, dict):
            raise ValidationError("Filter must be a non-empty dict", source="store.get_filtered")
        unknown = set(filters) - set(table.columns.keys())
        if unknown:
            raise ValidationError(f"Unknown filter fields for {table_name}: {sorted(unknown)}",
                                  source="store.get_filtered")

        stmt = (
            select(table)
            .where(and_(*[table.c[name] == value for name, value in filters.items()]))
            .order_by(*table.primary_key.columns)
        )
        return self._fetch(table_name, stmt)

    def _fetch(self, table_name: str, stmt) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings().all()]
        except SQLAlchemyError as e:
            logger.error(f"Ошибка чтения из {table_name}: {e}", exc_info=True)
            raise StoreError(f"Read from {table_name} failed: {e}", source="store.read")
