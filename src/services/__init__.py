"""SatuPintu service layer -- intake, routing, ticket lifecycle and notifications.

Services are constructed once in :func:`src.main.lifespan` and shared
through ``app.state``.  Modules that touch the Vertex AI SDK (``llm``
and, through it, ``classifier`` and ``address``) are not re-exported
here so that ``import src.services`` stays light.
"""

from __future__ import annotations

from src.services.cache import CacheManager, InMemoryCacheBackend, RedisCacheBackend
from src.services.errors import (
    Conflict,
    CooldownActive,
    DatastoreError,
    Forbidden,
    NotFound,
    SatuPintuError,
    ServiceUnavailable,
    Unauthorized,
    ValidationFailed,
)
from src.services.notifications import DeliveryResult, MockChannel, NotificationDispatcher
from src.services.store import InMemoryTicketStore, PostgrestTicketStore, TicketQuery

__all__ = [
    "CacheManager",
    "Conflict",
    "CooldownActive",
    "DatastoreError",
    "DeliveryResult",
    "Forbidden",
    "InMemoryCacheBackend",
    "InMemoryTicketStore",
    "MockChannel",
    "NotFound",
    "NotificationDispatcher",
    "PostgrestTicketStore",
    "RedisCacheBackend",
    "SatuPintuError",
    "ServiceUnavailable",
    "TicketQuery",
    "Unauthorized",
    "ValidationFailed",
]
