import requests
from core.config import settings
from core.errors import DealNotFoundError, PaginationError, RemoteUnavailable
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, List, Generic, TypeVar
import logging
from bitrix.fields import DEAL_SELECT, map_deal, map_line_item
from bitrix.parsing import parse_int

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Bitrix24 отдаёт списки страницами по 50 записей
PAGE_SIZE = 50


class RemoteStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass
class RemoteResult(Generic[T]):
    """
    Результат обращения к Bitrix24.

    Клиент не бросает исключения: вызывающий сам решает, что делать
    с NOT_FOUND и UNAVAILABLE. В error лежит причина (без ссылки на вебхук).
    """
    status: RemoteStatus
    value: Optional[T] = None
    error: Optional[RemoteUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.status is RemoteStatus.OK

    @classmethod
    def success(cls, value: T) -> "RemoteResult[T]":
        return cls(status=RemoteStatus.OK, value=value)

    @classmethod
    def not_found(cls, error: RemoteUnavailable) -> "RemoteResult[T]":
        return cls(status=RemoteStatus.NOT_FOUND, error=error)

    @classmethod
    def unavailable(cls, error: RemoteUnavailable) -> "RemoteResult[T]":
        return cls(status=RemoteStatus.UNAVAILABLE, error=error)


class BitrixApiError(Exception):
    """Bitrix24 ответил ошибкой в теле ответа ({"error": ..., "error_description": ...})."""

    def __init__(self, method: str, status_code: int, error: str, description: str):
        super().__init__(f"{method}: HTTP {status_code}, {error or 'error'}: {description}")
        self.method = method
        self.status_code = status_code
        self.error = error
        self.description = description or ""

    @property
    def is_not_found(self) -> bool:
        return "not found" in self.description.lower() or self.error == "NOT_FOUND"


class BitrixDealsClient:
    """
    Клиент сделок Bitrix24 поверх входящего вебхука.

    Все методы ходят POST-запросом на {webhook}/{метод} с JSON-телом.
    Ссылка на вебхук является секретом, поэтому в логах и ошибках она заменяется на <webhook>.
    """

    def __init__(self, webhook_url: str, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = webhook_url.rstrip("/")
        self.timeout = timeout or settings.BITRIX_TIMEOUT
        self.session = session or requests.Session()

    def _redact(self, text: str) -> str:
        return str(text).replace(self.base_url, "<webhook>")

    def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{method}"
        res = self.session.post(url, json=payload, timeout=self.timeout)

        try:
            data = res.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and ("error" in data or "error_description" in data):
            raise BitrixApiError(method, res.status_code, data.get("error"), data.get("error_description"))
        res.raise_for_status()
        if not isinstance(data, dict):
            raise BitrixApiError(method, res.status_code, "INVALID_RESPONSE", "response is not a JSON object")
        return data

    def _unavailable(self, method: str, e: Exception, context: str) -> RemoteResult:
        if isinstance(e, requests.Timeout):
            message = f"Timeout при запросе {method} к Bitrix24 ({context}), timeout: {self.timeout}s"
        elif isinstance(e, requests.RequestException):
            status_code = getattr(getattr(e, "response", None), "status_code", "N/A")
            message = f"Ошибка сети при запросе {method} к Bitrix24 ({context}), status_code: {status_code}"
        else:
            message = f"Ошибка Bitrix24 при запросе {method} ({context})"
        detail = f"{message}, error: {self._redact(e)}"
        logger.error(detail)
        return RemoteResult.unavailable(RemoteUnavailable(detail, source=f"bitrix.{method}"))

    def get_deal_by_id(self, deal_id: Any) -> RemoteResult[Dict[str, Any]]:
        """
        Получает сделку по ID и приводит поля к схеме таблицы deals.

        Returns:
            OK со сделкой, NOT_FOUND если сделки нет, UNAVAILABLE при любой другой ошибке
        """
        method = "crm.deal.get"
        try:
            data = self._call(method, {"id": deal_id})
            raw = data.get("result")
            if not raw or not isinstance(raw, dict):
                logger.info(f"Сделка {deal_id} не найдена в Bitrix24 (пустой result)")
                return RemoteResult.not_found(
                    DealNotFoundError(f"Deal {deal_id} not found", source=f"bitrix.{method}")
                )
            deal = map_deal(raw)
            logger.debug(f"Получена сделка {deal_id} из Bitrix24")
            return RemoteResult.success(deal)
        except BitrixApiError as e:
            if e.is_not_found:
                logger.info(f"Сделка {deal_id} не найдена в Bitrix24: {e.description}")
                return RemoteResult.not_found(
                    DealNotFoundError(f"Deal {deal_id} not found", source=f"bitrix.{method}")
                )
            return self._unavailable(method, e, f"сделка {deal_id}")
        except requests.RequestException as e:
            return self._unavailable(method, e, f"сделка {deal_id}")
        except Exception as e:
            logger.error(
                f"Неожиданная ошибка при получении сделки {deal_id}. "
                f"Тип ошибки: {type(e).__name__}, error: {self._redact(e)}"
            )
            return self._unavailable(method, e, f"сделка {deal_id}")

    def list_deals_by_filter(self, filter: Dict[str, Any]) -> RemoteResult[List[Dict[str, Any]]]:
        """
        Получает все сделки по фильтру, обходя страницы по PAGE_SIZE.

        Обход: start=0; берём страницу, добавляем результаты; если total < PAGE_SIZE,
        это была единственная страница; иначе start += PAGE_SIZE, пока start < total.

        Если total меняется между страницами, не приходит вовсе или страница пуста
        при start < total, обход прерывается с PaginationError (статус UNAVAILABLE),
        частично собранные сделки не возвращаются.
        """
        method = "crm.deal.list"
        deals: List[Dict[str, Any]] = []
        start = 0
        total: Optional[int] = None

        try:
            while True:
                page = self._call(method, {
                    "filter": filter,
                    "select": DEAL_SELECT,
                    "order": {"ID": "ASC"},
                    "start": start,
                })

                items = page.get("result")
                page_total = parse_int(page.get("total"))
                if not isinstance(items, list) or page_total is None or page_total < 0:
                    raise PaginationError(
                        f"Malformed page at start={start}: total={page.get('total')!r}",
                        source=f"bitrix.{method}",
                    )
                if total is None:
                    total = page_total
                elif page_total != total:
                    raise PaginationError(
                        f"Total changed between pages at start={start}: {total} -> {page_total}",
                        source=f"bitrix.{method}",
                    )

                deals.extend(map_deal(item) for item in items)
                logger.debug(f"{method}: start={start}, получено {len(items)}, total={total}")

                if total < PAGE_SIZE:
                    break
                if not items:
                    raise PaginationError(
                        f"Empty page at start={start} while total={total}",
                        source=f"bitrix.{method}",
                    )
                start += PAGE_SIZE
                if start >= total:
                    break

        except PaginationError as e:
            logger.error(f"Нарушение протокола постраничной выборки Bitrix24: {e.detail}")
            return RemoteResult.unavailable(e)
        except (BitrixApiError, requests.RequestException) as e:
            return self._unavailable(method, e, f"фильтр {filter}, start={start}")
        except Exception as e:
            logger.error(
                f"Неожиданная ошибка в list_deals_by_filter. "
                f"Тип ошибки: {type(e).__name__}, error: {self._redact(e)}"
            )
            return self._unavailable(method, e, f"фильтр {filter}, start={start}")

        if len(deals) != total:
            logger.warning(f"{method}: total={total}, но получено {len(deals)} сделок")
        logger.info(f"Получено {len(deals)} сделок из Bitrix24 по фильтру {filter}")
        return RemoteResult.success(deals)

    def get_deal_line_items(self, deal_id: Any) -> RemoteResult[List[Dict[str, Any]]]:
        """Товарные позиции сделки (crm.deal.productrows.get) в схеме таблицы deals_products."""
        method = "crm.deal.productrows.get"
        try:
            data = self._call(method, {"id": deal_id})
            rows = data.get("result") or []
            if not isinstance(rows, list):
                raise BitrixApiError(method, 200, "INVALID_RESPONSE", "result is not a list")
            items = [map_line_item(row, deal_id=parse_int(deal_id)) for row in rows]
            logger.debug(f"Сделка {deal_id}: получено {len(items)} товарных позиций")
            return RemoteResult.success(items)
        except BitrixApiError as e:
            if e.is_not_found:
                logger.info(f"Сделка {deal_id} не найдена в Bitrix24 при запросе товаров")
                return RemoteResult.not_found(
                    DealNotFoundError(f"Deal {deal_id} not found", source=f"bitrix.{method}")
                )
            return self._unavailable(method, e, f"сделка {deal_id}")
        except requests.RequestException as e:
            return self._unavailable(method, e, f"сделка {deal_id}")
        except Exception as e:
            logger.error(
                f"Неожиданная ошибка при получении товаров сделки {deal_id}. "
                f"Тип ошибки: {type(e).__name__}, error: {self._redact(e)}"
            )
            return self._unavailable(method, e, f"сделка {deal_id}")
