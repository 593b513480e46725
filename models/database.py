from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from core.config import settings
import logging
import os

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """
    Создаёт engine. Поддерживаются SQLite и PostgreSQL.

    Для SQLite включаем внешние ключи и отдаём управление транзакциями
    SQLAlchemy: без этого pysqlite не поддерживает SAVEPOINT, а на нём
    построен построчный upsert.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


engine = make_engine(settings.DATABASE_URL)


def _ensure_sqlite_dir(bind: Engine) -> None:
    database = bind.url.database
    if bind.dialect.name != "sqlite" or not database or database == ":memory:":
        return
    directory = os.path.dirname(os.path.abspath(database))
    if not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)
        logger.info(f"Создана директория для БД: {directory}")


def init_db(bind: Engine = None):
    """Создаёт таблицы, если их ещё нет. Повторный вызов безопасен."""
    # Импортируем все модели для создания таблиц
    from models.deal import Deal  # noqa: F401
    from models.deal_product import DealProduct  # noqa: F401
    bind = bind or engine
    _ensure_sqlite_dir(bind)
    Base.metadata.create_all(bind=bind)
    logger.info("Таблицы deals и deals_products готовы")
