from pydantic_settings import BaseSettings
from typing import Optional
from dotenv import dotenv_values, set_key
import logging
import os

logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    # Учётные данные Bitrix24 (записываются через /init, в открытом виде не хранятся)
    CRYPTO_KEY: Optional[str] = None
    CRYPTO_IV: Optional[str] = None
    BX_LINK: Optional[str] = None

    DATABASE_URL: str = "sqlite:///./db/database.db"

    # Фильтр сделок: воронка и тип цены
    ACCEPTED_CATEGORY_ID: int = 68
    ACCEPTED_PRICE_TYPE: int = 616
    PRICE_TYPE_FIELD: str = "UF_CRM_1710140074001"

    BITRIX_TIMEOUT: float = 30
    SYNC_TIMEOUT_SECONDS: float = 20 * 60

    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Если задан, пишем error/info/access логи в файлы
    BACKLOG_DIR: str = os.path.join("logger", "backlogs")

    ENV_FILE: str = ".env"
    ALLOWED_ORIGINS: Optional[str] = None  # Через запятую; пусто = все
    PORT: int = 4560

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

settings = Settings()


def load_credential(env_file: Optional[str] = None):
    """
    Перечитывает ключ, IV и зашифрованную ссылку из .env.

    Вызывается при каждой синхронизации: после повторного /init
    новый ключ и ссылка подхватываются без перезапуска сервиса.
    Значения из .env важнее переменных окружения процесса (их пишет /init);
    переменные окружения используются, только если ключа в файле нет.

    Returns:
        Credential или None, если /init ещё не выполнялся
    """
    from core.crypto import Credential

    path = env_file or settings.ENV_FILE
    file_values = dotenv_values(path) if os.path.exists(path) else {}

    def _value(name: str) -> Optional[str]:
        return file_values.get(name) or os.environ.get(name)

    key, iv, link = _value("CRYPTO_KEY"), _value("CRYPTO_IV"), _value("BX_LINK")
    if not (key and iv and link):
        return None
    return Credential(secret_key=key, iv=iv, encrypted_link=link)


def save_credential(credential, env_file: Optional[str] = None) -> str:
    """
    Записывает ключ, IV и зашифрованную ссылку в .env.

    Остальные строки файла сохраняются. Возвращает путь к файлу.
    """
    path = os.path.abspath(env_file or settings.ENV_FILE)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    if not os.path.exists(path):
        open(path, "a", encoding="utf-8").close()

    set_key(path, "CRYPTO_KEY", credential.secret_key, quote_mode="never")
    set_key(path, "CRYPTO_IV", credential.iv, quote_mode="never")
    set_key(path, "BX_LINK", credential.encrypted_link, quote_mode="never")

    logger.info(f"Учётные данные Bitrix24 сохранены в {path}")
    return path
