"""Notification service factory."""
from __future__ import annotations

import logging
from functools import lru_cache

from app.core.config import settings
from app.services.notifications.base import NotificationService
from app.services.notifications.noop import NoopNotificationService

logger = logging.getLogger(__name__)

_PROVIDERS = {"noop": NoopNotificationService}


@lru_cache
def get_notification_service() -> NotificationService:
    provider = settings.notifications_provider.lower()
    service_cls = _PROVIDERS.get(provider)
    if service_cls is None:
        logger.warning("Unknown notifications provider %r; using noop", provider)
        service_cls = NoopNotificationService
    return service_cls()
