"""Operator alerting for kubesum.

Dispatches ReconcileAlert instances (malformed references, sources that
stay unavailable) to notification channels with built-in deduplication.

Exports:
    NotificationChannel    -- Abstract base for all channel implementations.
    NotificationDispatcher -- Sends an alert to all registered channels
                              without blocking the reconciliation loop.
    AlertDeduplicator      -- Cooldown per (namespace, workload_kind,
                              workload_name, reason) tuple.
    WebhookNotificationChannel -- Generic JSON POST webhook channel.
    build_notification_dispatcher -- Factory used by the application bootstrap.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import structlog

from kubesum.notifications.manager import (
    AlertDeduplicator,
    NotificationChannel,
    NotificationDispatcher,
)
from kubesum.notifications.webhook import WebhookNotificationChannel

if TYPE_CHECKING:
    from kubesum.models.config import NotificationConfig

_log = structlog.get_logger(component="notifications")

__all__ = [
    "AlertDeduplicator",
    "NotificationChannel",
    "NotificationDispatcher",
    "WebhookNotificationChannel",
    "build_notification_dispatcher",
]


def build_notification_dispatcher(config: NotificationConfig) -> NotificationDispatcher:
    """Build a NotificationDispatcher from environment-resolved secrets.

    ``webhook_secret_ref`` is the *name* of an environment variable whose
    value is the webhook URL (typically injected from a Secret).
    """
    channels: list[NotificationChannel] = []

    webhook_ref = config.webhook_secret_ref
    if webhook_ref:
        webhook_url = os.environ.get(webhook_ref, "")
        if webhook_url:
            try:
                channels.append(WebhookNotificationChannel(url=webhook_url))
                _log.info("webhook_channel_enabled")
            except ValueError as exc:
                _log.warning("webhook_channel_disabled", reason=str(exc))
        else:
            _log.debug("webhook_channel_skipped", reason="secret ref env var is empty")

    if not channels:
        _log.info("no_notification_channels_configured")

    return NotificationDispatcher(channels=channels)
