# Импортируем для удобства
from .client import (
    PAGE_SIZE,
    BitrixDealsClient,
    RemoteResult,
    RemoteStatus,
)
from .fields import validate_field_maps

__all__ = [
    'PAGE_SIZE',
    'BitrixDealsClient',
    'RemoteResult',
    'RemoteStatus',
    'validate_field_maps',
]
