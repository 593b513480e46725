from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool
from typing import Optional
import logging
import time
from core.config import settings
from core.errors import ValidationError
from core.log_config import LogType, log_event, write_backlog
from deals.schemas import (
    AddDealResponse,
    ApiResponse,
    BacklogRequest,
    DealOut,
    DealsWithLineItemsResponse,
    InitRequest,
    PullDealsResponse,
    PullLineItemsResponse,
    RowFailureOut,
)
from deals.service import DealSyncService
from models.database import engine
from models.store import LocalStore

logger = logging.getLogger(__name__)

BASE_URL = "/dh_price_counter"

router = APIRouter(prefix=BASE_URL, tags=["deals"])

_store: Optional[LocalStore] = None


def get_store() -> LocalStore:
    global _store
    if _store is None:
        _store = LocalStore(engine)
    return _store


def get_sync_service(store: LocalStore = Depends(get_store)) -> DealSyncService:
    """Сервис на один запрос: с дедлайном SYNC_TIMEOUT_SECONDS от начала запроса."""
    return DealSyncService(
        store,
        deadline=time.monotonic() + settings.SYNC_TIMEOUT_SECONDS,
    )


def _failures(outcomes) -> list:
    return [RowFailureOut(key=o.key, error=o.error) for o in outcomes]


@router.post("/get_deals_with_productrows/", response_model=DealsWithLineItemsResponse)
def get_deals_with_productrows(service: DealSyncService = Depends(get_sync_service)):
    """Сделки из локальной БД вместе с товарными позициями."""
    data = service.list_synced_deals_with_line_items()
    return DealsWithLineItemsResponse(message="Сделки получены из бд", data=data)


@router.post("/add_deal_handler/", response_model=AddDealResponse)
async def add_deal_handler(request: Request, service: DealSyncService = Depends(get_sync_service)):
    """
    Обработчик исходящего вебхука Bitrix24 на создание/изменение сделки.

    ID берётся из query-параметра ID, а если его нет, из поля
    data[FIELDS][ID] формы или JSON-тела (так Bitrix24 присылает событие ONCRMDEALADD).
    """
    deal_id = request.query_params.get("ID")
    if not deal_id:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form = await request.form()
            deal_id = form.get("data[FIELDS][ID]")
        elif content_type.startswith("application/json"):
            try:
                body = await request.json()
            except ValueError:
                raise ValidationError("Request body is not valid JSON", source=f"{BASE_URL}/add_deal_handler/")
            if isinstance(body, dict):
                deal_id = body.get("data[FIELDS][ID]")
    if not deal_id:
        raise ValidationError("No deal id provided", source=f"{BASE_URL}/add_deal_handler/")

    result = await run_in_threadpool(service.add_deal_by_id, deal_id)
    return AddDealResponse(
        message="Сделка успешно записана в бд",
        deal=DealOut(**result.deal),
        line_items_written=result.line_items_written,
        failed_rows=_failures(result.failed),
    )


@router.post("/get_deals_from_bx_insert_in_db/", response_model=PullDealsResponse)
def get_deals_from_bx_insert_in_db(service: DealSyncService = Depends(get_sync_service)):
    result = service.pull_all_eligible_deals()
    message = "Сделки успешно записаны в бд"
    if result.remote_error:
        message = f"Сделки не получены из Bitrix24: {result.remote_error}"
    return PullDealsResponse(
        message=message,
        deals=[DealOut(**d) for d in result.deals],
        failed_rows=_failures(result.failed),
    )


@router.post("/get_deals_product_rows_from_bx_insert_in_db/", response_model=PullLineItemsResponse)
def get_deals_product_rows_from_bx_insert_in_db(service: DealSyncService = Depends(get_sync_service)):
    result = service.pull_line_items_for_all_stored_deals()
    return PullLineItemsResponse(
        message="Товарные позиции сделок успешно записаны в бд",
        total=result.total,
        deals=[DealOut(**d) for d in result.deals],
        unavailable_deal_ids=result.unavailable_deal_ids,
        failed_rows=_failures(result.failed),
    )


@router.post("/init/", response_model=ApiResponse)
def init(body: InitRequest, service: DealSyncService = Depends(get_sync_service)):
    """Сохраняет зашифрованную ссылку на входящий вебхук Bitrix24."""
    service.initialize_credential(body.bx_link)
    return ApiResponse(message="Система готова работать с вашим битриксом!")


@router.post("/write_backlog/", response_model=ApiResponse)
def write_backlog_handler(body: BacklogRequest):
    if body.data is None:
        raise ValidationError("No data provided", source=f"{BASE_URL}/write_backlog/")
    path = write_backlog(body.data, settings.BACKLOG_DIR)
    log_event(LogType.ACCESS, f"{BASE_URL}/write_backlog/", f"Backlog written to {path}")
    return ApiResponse(message="Данные сохранены")
