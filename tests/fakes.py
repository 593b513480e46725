"""Fake Bitrix24 transport and payload builders for tests."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple

import requests

WEBHOOK = "https://example.bitrix24.ru/rest/1/s3cr3tt0ken/"
PRICE_TYPE_FIELD = "UF_CRM_1710140074001"


# ── Fake Bitrix24 transport ───────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, (dict, list)):
            return self._body
        raise ValueError("No JSON object could be decoded")

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


Handler = Callable[[Dict[str, Any]], Any]


class FakeBitrixSession:
    """requests.Session stand-in: POST {webhook}/{method} -> handlers[method](payload)."""

    def __init__(self):
        self.handlers: Dict[str, Handler] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.urls: List[str] = []

    def on(self, method: str, handler: Handler) -> "FakeBitrixSession":
        self.handlers[method] = handler
        return self

    def post(self, url, json=None, timeout=None):
        method = url.rsplit("/", 1)[-1]
        self.urls.append(url)
        self.calls.append((method, json))
        result = self.handlers[method](json)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, FakeResponse):
            return result
        return FakeResponse(200, result)

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [payload for m, payload in self.calls if m == method]


# ── Bitrix payload builders ───────────────────────────────────────────────


def bitrix_deal(deal_id: int, category_id: Any = "68", price_type: Any = "616",
                title: str | None = None, date_create: str = "2024-03-11T10:15:00+03:00") -> dict:
    return {
        "ID": str(deal_id),
        "TITLE": title or f"Deal #{deal_id}",
        "CATEGORY_ID": category_id,
        PRICE_TYPE_FIELD: price_type,
        "DATE_CREATE": date_create,
    }


def bitrix_product_row(product_id: int, price: str = "1500.00", discount: str = "0.00",
                       name: str | None = None) -> dict:
    return {
        "ID": str(product_id * 10),
        "PRODUCT_ID": product_id,
        "PRODUCT_NAME": name or f"Product {product_id}",
        "PRICE_BRUTTO": price,
        "DISCOUNT_SUM": discount,
        "QUANTITY": 1,
    }


def paged_deal_list(deals: List[dict]) -> Handler:
    """crm.deal.list handler serving `deals` in pages of 50 like Bitrix24 does."""

    def handler(payload):
        start = payload.get("start", 0)
        page = deals[start:start + 50]
        body = {"result": page, "total": len(deals)}
        if start + 50 < len(deals):
            body["next"] = start + 50
        return body

    return handler


def not_found(_payload=None) -> FakeResponse:
    return FakeResponse(400, {"error": "", "error_description": "Not found"})


