"""
Синхронизация сделок Bitrix24 с локальной БД.

Каждый вызов независим: расшифровываем ссылку на вебхук, создаём клиента,
забираем данные, проверяем фильтр (воронка + тип цены) и пишем через LocalStore.
Состояние между вызовами не хранится.

Если задан deadline (time.monotonic()), он проверяется перед каждым запросом
в Bitrix24 и каждой записью в БД; после него записей больше не будет.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from bitrix.client import BitrixDealsClient, RemoteStatus
from bitrix.fields import PRICE_TYPE_FIELD
from core import crypto
from core.config import load_credential, save_credential, settings as default_settings
from core.errors import DecryptionError, EligibilityError, SyncTimeoutError, ValidationError
from core.log_config import LogType, log_event
from models.store import LocalStore, RowOutcome

logger = logging.getLogger(__name__)


@dataclass
class AddDealResult:
    deal: Dict[str, Any]
    line_items_written: int = 0
    failed: List[RowOutcome] = field(default_factory=list)


@dataclass
class PullDealsResult:
    deals: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[RowOutcome] = field(default_factory=list)
    remote_error: Optional[str] = None


@dataclass
class PullLineItemsResult:
    total: int = 0
    deals: List[Dict[str, Any]] = field(default_factory=list)
    unavailable_deal_ids: List[int] = field(default_factory=list)
    failed: List[RowOutcome] = field(default_factory=list)


class DealSyncService:
    def __init__(self, store: LocalStore, config=None,
                 client_factory: Callable[..., BitrixDealsClient] = BitrixDealsClient,
                 credential_loader: Optional[Callable[[], Optional[crypto.Credential]]] = None,
                 credential_saver: Optional[Callable[[crypto.Credential], Any]] = None,
                 deadline: Optional[float] = None):
        self.store = store
        self.settings = config or default_settings
        self.client_factory = client_factory
        self.credential_loader = credential_loader or (lambda: load_credential(self.settings.ENV_FILE))
        self.credential_saver = credential_saver or (lambda c: save_credential(c, self.settings.ENV_FILE))
        self.deadline = deadline

    # ---- helpers ----

    def _check_deadline(self, source: str) -> None:
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise SyncTimeoutError(f"Sync deadline exceeded before {source}", source=source)

    def _client(self) -> BitrixDealsClient:
        credential = self.credential_loader()
        if credential is None:
            raise DecryptionError("Bitrix24 link is not initialized, call init first", source="sync.credential")
        link = crypto.decrypt(credential.encrypted_link, credential.secret_key, credential.iv)
        return self.client_factory(link, timeout=self.settings.BITRIX_TIMEOUT)

    def eligibility_filter(self) -> Dict[str, Any]:
        return {
            "CATEGORY_ID": self.settings.ACCEPTED_CATEGORY_ID,
            PRICE_TYPE_FIELD: self.settings.ACCEPTED_PRICE_TYPE,
        }

    def is_eligible(self, deal: Dict[str, Any]) -> bool:
        return (
            deal.get("category_id") == self.settings.ACCEPTED_CATEGORY_ID
            and deal.get("price_type") == self.settings.ACCEPTED_PRICE_TYPE
        )

    # ---- operations ----

    def list_synced_deals_with_line_items(self) -> List[Dict[str, Any]]:
        """Сделки из БД с их товарными позициями."""
        deals = self.store.get_all("deals")
        items_by_deal: Dict[int, List[Dict[str, Any]]] = {}
        for item in self.store.get_all("deals_products"):
            items_by_deal.setdefault(item["deal_id"], []).append({
                "product_id": item["product_id"],
                "product_name": item["product_name"],
                "price": item["price"],
                "discount": item["discount"],
            })

        return [
            {
                "deal_id": deal["id"],
                "date_create": deal["date_create"],
                "deal_title": deal["title"],
                "line_items": items_by_deal.get(deal["id"], []),
            }
            for deal in deals
        ]

    def add_deal_by_id(self, deal_id: Any) -> AddDealResult:
        """
        Добавляет одну сделку (и её товары) по ID из Bitrix24.

        Raises:
            ValidationError: Не передан ID
            DealNotFoundError: Сделки нет в Bitrix24
            RemoteUnavailable: Bitrix24 недоступен
            EligibilityError: Сделка не из нужной воронки или с другим типом цены
        """
        source = "sync.add_deal_by_id"
        # Только целое положительное число: "12.9" или "inf" не округляем до чужой сделки
        try:
            parsed_id = int(str(deal_id).strip())
        except ValueError:
            raise ValidationError(f"Invalid deal id: {deal_id!r}", source=source)
        if isinstance(deal_id, bool) or parsed_id <= 0:
            raise ValidationError(f"Invalid deal id: {deal_id!r}", source=source)

        client = self._client()
        self._check_deadline(source)
        res = client.get_deal_by_id(parsed_id)
        if not res.ok:
            raise res.error

        deal = res.value
        if not self.is_eligible(deal):
            raise EligibilityError(
                f"Deal {parsed_id} is not in category {self.settings.ACCEPTED_CATEGORY_ID} "
                f"or price type is not {self.settings.ACCEPTED_PRICE_TYPE}",
                source=source,
            )

        self._check_deadline(source)
        self.store.upsert_one("deals", deal)
        result = AddDealResult(deal=deal)

        self._check_deadline(source)
        items_res = client.get_deal_line_items(parsed_id)
        if not items_res.ok:
            log_event(LogType.ERROR, source,
                      f"Deal {parsed_id} saved without product rows: {items_res.error.detail}")
        elif items_res.value:
            self._check_deadline(source)
            upsert = self.store.upsert_many("deals_products", items_res.value)
            result.line_items_written = upsert.written
            result.failed = upsert.failed

        log_event(LogType.ACCESS, source, f"Deal {parsed_id} and its product rows added to db")
        return result

    def pull_all_eligible_deals(self) -> PullDealsResult:
        """
        Забирает из Bitrix24 все сделки нужной воронки и типа цены и пишет их в БД.

        Недоступность Bitrix24 не считается ошибкой вызова: результат будет пустым,
        причина в remote_error и в логе.
        """
        source = "sync.pull_all_eligible_deals"
        client = self._client()
        self._check_deadline(source)

        res = client.list_deals_by_filter(self.eligibility_filter())
        if not res.ok:
            log_event(LogType.ERROR, source, f"Error getting deals from Bitrix24: {res.error.detail}")
            return PullDealsResult(remote_error=res.error.public_message)

        deals = []
        for deal in res.value:
            if self.is_eligible(deal):
                deals.append(deal)
            else:
                logger.warning(f"Сделка {deal.get('id')} не проходит фильтр, пропускаем")

        result = PullDealsResult(deals=deals)
        if not deals:
            logger.info("Подходящих сделок в Bitrix24 нет")
            return result

        self._check_deadline(source)
        upsert = self.store.upsert_many("deals", deals)
        result.failed = upsert.failed

        log_event(LogType.ACCESS, source, f"{upsert.written} deals added to db")
        return result

    def pull_line_items_for_all_stored_deals(self) -> PullLineItemsResult:
        """
        Для каждой сделки из БД забирает товарные позиции и пишет их одним пакетом.
        Сделки, по которым Bitrix24 не ответил, пропускаются и перечисляются в результате.
        """
        source = "sync.pull_line_items_for_all_stored_deals"
        client = self._client()
        deals = self.store.get_all("deals")
        result = PullLineItemsResult(total=len(deals), deals=deals)

        records: List[Dict[str, Any]] = []
        for deal in deals:
            self._check_deadline(source)
            res = client.get_deal_line_items(deal["id"])
            if res.status is RemoteStatus.OK:
                records.extend(res.value)
            else:
                result.unavailable_deal_ids.append(deal["id"])
                logger.warning(f"Товары сделки {deal['id']} не получены: {res.error.detail}")

        if result.unavailable_deal_ids:
            log_event(LogType.ERROR, source,
                      f"Product rows unavailable for deals {result.unavailable_deal_ids}")

        if records:
            self._check_deadline(source)
            upsert = self.store.upsert_many("deals_products", records)
            result.failed = upsert.failed

        log_event(LogType.ACCESS, source, f"Product rows of {len(deals)} deals added to db")
        return result

    def initialize_credential(self, secret_plaintext: Optional[str]) -> crypto.Credential:
        """Шифрует ссылку на входящий вебхук и сохраняет ключ, IV и шифротекст."""
        if not secret_plaintext or not str(secret_plaintext).strip():
            raise ValidationError("Необходимо предоставить ссылку входящего вебхука!",
                                  source="sync.initialize_credential")

        credential = crypto.initialize(str(secret_plaintext).strip())
        self.credential_saver(credential)
        log_event(LogType.ACCESS, "sync.initialize_credential", "Bitrix24 link initialized")
        return credential
