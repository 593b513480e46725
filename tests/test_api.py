"""HTTP surface: routes under /dh_price_counter/, response envelope, error mapping."""

from __future__ import annotations

import json
import os

import pytest
import requests
from fastapi.testclient import TestClient

from core.config import settings
from deals.router import BASE_URL, get_sync_service
from main import app
from tests.fakes import bitrix_deal, bitrix_product_row, not_found, paged_deal_list


@pytest.fixture
def api(make_service):
    service = make_service()
    app.dependency_overrides[get_sync_service] = lambda: service
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def _serve_deal_with_rows(bitrix, **deal_kwargs):
    bitrix.on("crm.deal.get", lambda payload: {"result": bitrix_deal(payload["id"], **deal_kwargs)})
    bitrix.on("crm.deal.productrows.get", lambda payload: {"result": [
        bitrix_product_row(1, price="300.00", discount="15.00"),
    ]})


class TestAddDealHandler:
    def test_id_from_query(self, api, bitrix, store):
        _serve_deal_with_rows(bitrix)

        res = api.post(f"{BASE_URL}/add_deal_handler/", params={"ID": "12"})

        assert res.status_code == 200
        body = res.json()
        assert body["status"] is True
        assert body["status_msg"] == "success"
        assert body["deal"]["id"] == 12
        assert body["line_items_written"] == 1
        assert [d["id"] for d in store.get_all("deals")] == [12]

    def test_id_from_outgoing_webhook_form(self, api, bitrix, store):
        _serve_deal_with_rows(bitrix)

        res = api.post(
            f"{BASE_URL}/add_deal_handler/",
            data={"event": "ONCRMDEALADD", "data[FIELDS][ID]": "34"},
        )

        assert res.status_code == 200
        assert res.json()["deal"]["id"] == 34
        assert bitrix.calls_to("crm.deal.get") == [{"id": 34}]

    def test_id_from_json_webhook_body(self, api, bitrix, store):
        _serve_deal_with_rows(bitrix)

        res = api.post(
            f"{BASE_URL}/add_deal_handler/",
            json={"event": "ONCRMDEALADD", "data[FIELDS][ID]": "34"},
        )

        assert res.status_code == 200
        assert res.json()["deal"]["id"] == 34
        assert [d["id"] for d in store.get_all("deals")] == [34]

    def test_json_body_without_id_is_400(self, api, bitrix):
        res = api.post(f"{BASE_URL}/add_deal_handler/", json={"event": "ONCRMDEALADD"})

        assert res.status_code == 400
        assert bitrix.calls == []

    def test_missing_id_is_400(self, api, bitrix):
        res = api.post(f"{BASE_URL}/add_deal_handler/")

        assert res.status_code == 400
        assert res.json()["status"] is False
        assert bitrix.calls == []

    def test_ineligible_deal_is_422(self, api, bitrix, store):
        _serve_deal_with_rows(bitrix, category_id="1")

        res = api.post(f"{BASE_URL}/add_deal_handler/", params={"ID": "12"})

        assert res.status_code == 422
        body = res.json()
        assert body["status"] is False
        assert body["status_msg"] == "error"
        assert store.get_all("deals") == []

    def test_unknown_deal_is_404(self, api, bitrix):
        bitrix.on("crm.deal.get", not_found)

        res = api.post(f"{BASE_URL}/add_deal_handler/", params={"ID": "12"})

        assert res.status_code == 404

    def test_unreachable_bitrix_is_502_without_token(self, api, bitrix):
        bitrix.on("crm.deal.get", lambda payload: requests.ConnectionError("down"))

        res = api.post(f"{BASE_URL}/add_deal_handler/", params={"ID": "12"})

        assert res.status_code == 502
        assert "s3cr3tt0ken" not in res.text


class TestPulls:
    def test_get_deals_from_bx_insert_in_db(self, api, bitrix, store):
        bitrix.on("crm.deal.list", paged_deal_list([bitrix_deal(i) for i in range(1, 4)]))

        res = api.post(f"{BASE_URL}/get_deals_from_bx_insert_in_db/")

        assert res.status_code == 200
        assert [d["id"] for d in res.json()["deals"]] == [1, 2, 3]
        assert len(store.get_all("deals")) == 3

    def test_pull_with_bitrix_down_is_still_200(self, api, bitrix):
        bitrix.on("crm.deal.list", lambda payload: requests.ConnectionError("down"))

        res = api.post(f"{BASE_URL}/get_deals_from_bx_insert_in_db/")

        assert res.status_code == 200
        assert res.json()["deals"] == []

    def test_get_deals_product_rows_from_bx_insert_in_db(self, api, bitrix, store):
        store.upsert_many("deals", [{"id": 1, "title": "A"}, {"id": 2, "title": "B"}])
        bitrix.on("crm.deal.productrows.get", lambda payload: {"result": [bitrix_product_row(5)]})

        res = api.post(f"{BASE_URL}/get_deals_product_rows_from_bx_insert_in_db/")

        assert res.status_code == 200
        body = res.json()
        assert body["total"] == 2
        assert body["unavailable_deal_ids"] == []
        assert len(store.get_all("deals_products")) == 2

    def test_get_deals_with_productrows(self, api, bitrix):
        _serve_deal_with_rows(bitrix, title="Кухня")
        api.post(f"{BASE_URL}/add_deal_handler/", params={"ID": "7"})

        res = api.post(f"{BASE_URL}/get_deals_with_productrows/")

        assert res.status_code == 200
        assert res.json()["data"] == [{
            "deal_id": 7,
            "date_create": "2024-03-11",
            "deal_title": "Кухня",
            "line_items": [{"product_id": 1, "product_name": "Product 1", "price": 300.0, "discount": 15.0}],
        }]


class TestInit:
    def test_init_without_link_is_400(self, api):
        res = api.post(f"{BASE_URL}/init/", json={})

        assert res.status_code == 400
        assert res.json() == {
            "status": False,
            "status_msg": "error",
            "message": "Необходимо предоставить ссылку входящего вебхука!",
        }

    def test_init_writes_encrypted_credential(self, api, sync_settings):
        res = api.post(f"{BASE_URL}/init/", json={"bx_link": "https://example.bitrix/webhook"})

        assert res.status_code == 200
        assert res.json()["status"] is True
        with open(sync_settings.ENV_FILE, encoding="utf-8") as f:
            text = f.read()
        assert "BX_LINK=" in text
        assert "example.bitrix" not in text


class TestBacklog:
    def test_write_backlog(self, api, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "BACKLOG_DIR", str(tmp_path / "backlogs"))

        res = api.post(f"{BASE_URL}/write_backlog/", json={"data": {"deal": 1, "note": "тест"}})

        assert res.status_code == 200
        files = os.listdir(tmp_path / "backlogs")
        assert len(files) == 1
        assert files[0].endswith(".json")
        with open(tmp_path / "backlogs" / files[0], encoding="utf-8") as f:
            assert json.load(f) == {"deal": 1, "note": "тест"}

    def test_write_backlog_without_data_is_400(self, api):
        res = api.post(f"{BASE_URL}/write_backlog/", json={})

        assert res.status_code == 400


def test_health(api):
    assert api.get("/health").json() == {"status": "healthy"}
