"""
Ошибки синхронизации.

Каждый класс знает HTTP-статус, с которым его отдаёт API, и
публичное сообщение. Детали (source, detail) идут только в лог.
"""

from typing import Optional

from core.log_config import LogType


class SyncError(Exception):
    status_code = 500
    public_message = "Server error"
    log_type = LogType.ERROR

    def __init__(self, detail: str, source: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.source = source or type(self).__name__


class ValidationError(SyncError):
    """Не передан или некорректен обязательный параметр."""
    status_code = 400

    @property
    def public_message(self) -> str:
        return self.detail


class EligibilityError(SyncError):
    """Сделка не проходит фильтр по воронке / типу цены."""
    status_code = 422

    @property
    def public_message(self) -> str:
        return self.detail


class DecryptionError(SyncError):
    """Не удалось расшифровать ссылку на вебхук."""
    status_code = 500
    public_message = "Bitrix24 link is not configured or cannot be decrypted"


class RemoteUnavailable(SyncError):
    status_code = 502
    public_message = "Bitrix24 is unavailable"


class DealNotFoundError(RemoteUnavailable):
    status_code = 404

    @property
    def public_message(self) -> str:
        return self.detail


class PaginationError(RemoteUnavailable):
    """Bitrix24 вернул несогласованный total при постраничной выборке."""


class StoreError(SyncError):
    status_code = 500
    public_message = "Database error"


class SyncTimeoutError(SyncError):
    status_code = 504
    public_message = "Sync timed out"
