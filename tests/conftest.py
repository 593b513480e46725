"""Shared fixtures: in-memory SQLite store, fake Bitrix24 transport, sync service.

No real network or database file is touched: the Bitrix24 client gets a
session stand-in that routes each REST method to a handler and records the
calls, and every test gets its own in-memory database.
"""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402

from bitrix.client import BitrixDealsClient  # noqa: E402
from core import crypto  # noqa: E402
from core.config import Settings  # noqa: E402
from deals.service import DealSyncService  # noqa: E402
from models.database import init_db, make_engine  # noqa: E402
from models.store import LocalStore  # noqa: E402
from tests.fakes import WEBHOOK, FakeBitrixSession  # noqa: E402


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine) -> LocalStore:
    return LocalStore(engine)


@pytest.fixture
def bitrix() -> FakeBitrixSession:
    return FakeBitrixSession()


@pytest.fixture
def client(bitrix) -> BitrixDealsClient:
    return BitrixDealsClient(WEBHOOK, timeout=5, session=bitrix)


@pytest.fixture
def credential() -> crypto.Credential:
    return crypto.initialize(WEBHOOK)


@pytest.fixture
def sync_settings(tmp_path) -> Settings:
    return Settings(_env_file=None, ENV_FILE=str(tmp_path / ".env"))


@pytest.fixture
def make_service(store, bitrix, credential, sync_settings):
    """Build a DealSyncService wired to the fake transport; kwargs override defaults."""

    def factory(**overrides) -> DealSyncService:
        kwargs = dict(
            config=sync_settings,
            client_factory=lambda link, timeout=None: BitrixDealsClient(link, timeout=timeout, session=bitrix),
            credential_loader=lambda: credential,
        )
        kwargs.update(overrides)
        return DealSyncService(store, **kwargs)

    return factory
