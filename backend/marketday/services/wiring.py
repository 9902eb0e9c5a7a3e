"""Per-app service handles.

Providers are built once per Flask app and kept in ``app.extensions``; the
lifecycle orchestrator is assembled per request from them.
"""
from __future__ import annotations

import logging

from flask import current_app

from marketday.integrations.common import IntegrationDisabledError
from marketday.integrations.messaging.factory import build_messaging_provider
from marketday.integrations.payments.factory import build_payments_provider
from marketday.services.marketplace_store import MarketplaceStore
from marketday.services.notification_service import NotificationDispatcher
from marketday.services.order_lifecycle import OrderLifecycleOrchestrator

PAYMENTS_EXTENSION = "marketday.payments"
MESSAGING_EXTENSION = "marketday.messaging"


def register_providers(app) -> None:
    app.extensions[PAYMENTS_EXTENSION] = build_payments_provider(app.config)
    try:
        app.extensions[MESSAGING_EXTENSION] = build_messaging_provider(app.config)
    except IntegrationDisabledError:
        app.logger.info("messaging_disabled")
        app.extensions[MESSAGING_EXTENSION] = None


def payments_provider(app=None):
    app = app or current_app
    return app.extensions[PAYMENTS_EXTENSION]


def notification_dispatcher(app=None) -> NotificationDispatcher:
    app = app or current_app
    return NotificationDispatcher(app.extensions.get(MESSAGING_EXTENSION))


def lifecycle_orchestrator(app=None, *, clock=None) -> OrderLifecycleOrchestrator:
    app = app or current_app
    return OrderLifecycleOrchestrator(
        MarketplaceStore(),
        payments_provider(app),
        notification_dispatcher(app),
        logger=logging.getLogger("marketday.order_lifecycle"),
        clock=clock,
        default_cutoff_hours=app.config.get("DEFAULT_CUTOFF_HOURS"),
    )
