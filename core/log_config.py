"""
Настройка логирования сервиса.

Все модули пишут через logging.getLogger(__name__). Если задан LOG_DIR,
дополнительно ведутся файлы по типам: error/, info/ и access/,
с ротацией в полночь.
"""

import enum
import json
import logging
import os
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime
from typing import Any, Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

access_logger = logging.getLogger("access")
sync_logger = logging.getLogger("sync")


class LogType(str, enum.Enum):
    ERROR = "error"
    INFO = "info"
    ACCESS = "access"


class _NotAccessFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith("access")


def _file_handler(log_dir: str, log_type: LogType, level: int) -> logging.Handler:
    directory = os.path.join(log_dir, log_type.value)
    os.makedirs(directory, exist_ok=True)
    handler = TimedRotatingFileHandler(
        os.path.join(directory, f"{log_type.value}.log"),
        when="midnight",
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )
    if not log_dir:
        return

    root = logging.getLogger()
    error_handler = _file_handler(log_dir, LogType.ERROR, logging.ERROR)
    info_handler = _file_handler(log_dir, LogType.INFO, logging.INFO)
    info_handler.addFilter(_NotAccessFilter())
    root.addHandler(error_handler)
    root.addHandler(info_handler)

    access_logger.setLevel(logging.INFO)
    access_logger.addHandler(_file_handler(log_dir, LogType.ACCESS, logging.INFO))


def log_event(log_type: LogType, source: str, detail: Union[str, BaseException]) -> None:
    """
    Пишет событие в лог соответствующего типа.

    Args:
        log_type: Тип записи (error, info, access)
        source: Источник события (эндпоинт, метод сервиса)
        detail: Сообщение или исключение
    """
    message = f"Source: {source} | Message: {detail}"
    if log_type is LogType.ERROR:
        exc_info = detail if isinstance(detail, BaseException) else None
        sync_logger.error(message, exc_info=exc_info)
    elif log_type is LogType.ACCESS:
        access_logger.info(message)
    else:
        sync_logger.info(message)


def write_backlog(data: Any, directory: str) -> str:
    """
    Сохраняет присланные данные в JSON-файл dd_mm_yyyy_hh_mm.json.

    Returns:
        Путь к записанному файлу
    """
    os.makedirs(directory, exist_ok=True)
    file_name = datetime.now().strftime("%d_%m_%Y_%H_%M") + ".json"
    path = os.path.join(directory, file_name)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2, default=str)
    logging.getLogger(__name__).info(f"Backlog записан в {path}")
    return path
