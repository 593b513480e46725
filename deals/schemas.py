from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ApiResponse(BaseModel):
    status: bool = True
    status_msg: str = "success"
    message: str


class ErrorResponse(ApiResponse):
    status: bool = False
    status_msg: str = "error"
    message: str = "Server error"


class DealOut(BaseModel):
    id: int
    title: Optional[str] = None
    category_id: Optional[int] = None
    price_type: Optional[int] = None
    date_create: Optional[date] = None


class LineItemOut(BaseModel):
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    price: Optional[float] = None
    discount: Optional[float] = None


class DealWithLineItems(BaseModel):
    deal_id: int
    date_create: Optional[date] = None
    deal_title: Optional[str] = None
    line_items: List[LineItemOut] = []


class RowFailureOut(BaseModel):
    key: Dict[str, Any]
    error: Optional[str] = None


class DealsWithLineItemsResponse(ApiResponse):
    data: List[DealWithLineItems]


class AddDealResponse(ApiResponse):
    deal: DealOut
    line_items_written: int = 0
    failed_rows: List[RowFailureOut] = []


class PullDealsResponse(ApiResponse):
    deals: List[DealOut]
    failed_rows: List[RowFailureOut] = []


class PullLineItemsResponse(ApiResponse):
    total: int
    deals: List[DealOut]
    unavailable_deal_ids: List[int] = []
    failed_rows: List[RowFailureOut] = []


class InitRequest(BaseModel):
    # Необязательное, чтобы отсутствие ссылки давало 400 с понятным сообщением, а не 422
    bx_link: Optional[str] = None


class BacklogRequest(BaseModel):
    data: Any = None
