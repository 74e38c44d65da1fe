"""Notification dispatcher and deduplication for kubesum.

NotificationChannel    -- ABC every channel must implement.
NotificationDispatcher -- Fans out alerts to all registered channels;
                          failures in one channel never block others or
                          the reconciliation loop.
AlertDeduplicator      -- Enforces a cooldown per
                          (namespace, workload_kind, workload_name, reason).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

import structlog

from kubesum.models.alerts import ReconcileAlert
from kubesum.observability.metrics import notifications_total

_log = structlog.get_logger(component="notifications.manager")

_DEDUP_COOLDOWN = timedelta(minutes=30)


class NotificationChannel(ABC):
    """Abstract base class for all notification channels.

    ``send`` should not raise; return ``False`` instead.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Human-readable channel identifier used in metrics and logs."""

    @abstractmethod
    async def send(self, alert: ReconcileAlert) -> bool:
        """Deliver *alert* via this channel.

        Returns:
            True  -- message accepted by the remote endpoint.
            False -- delivery failed (already logged inside implementation).
        """


class AlertDeduplicator:
    """Suppresses duplicate alerts within a cooldown window.

    State is held in-process; restarting kubesum resets all cooldowns.
    """

    def __init__(self, cooldown: timedelta = _DEDUP_COOLDOWN) -> None:
        self._cooldown = cooldown
        # key -> last_sent timestamp (UTC)
        self._last_sent: dict[tuple[str, str, str, str], datetime] = {}

    def should_send(self, alert: ReconcileAlert) -> bool:
        """Return True if this alert should be dispatched."""
        key = (alert.namespace, alert.workload_kind, alert.workload_name, alert.reason)
        now = datetime.now(tz=UTC)
        last = self._last_sent.get(key)
        if last is not None and (now - last) < self._cooldown:
            _log.debug(
                "alert_suppressed_by_deduplicator",
                namespace=alert.namespace,
                workload=f"{alert.workload_kind}/{alert.workload_name}",
                reason=alert.reason,
                seconds_remaining=int((self._cooldown - (now - last)).total_seconds()),
            )
            return False
        self._last_sent[key] = now
        return True


class NotificationDispatcher:
    """Fan-out dispatcher that sends an alert to every registered channel.

    * Never raises: exceptions from individual channels are caught and logged.
    * Never blocks the caller: ``dispatch`` schedules the fan-out as a
      background task.
    """

    def __init__(
        self,
        channels: list[NotificationChannel],
        deduplicator: AlertDeduplicator | None = None,
    ) -> None:
        self._channels = channels
        self._deduplicator = deduplicator or AlertDeduplicator()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    def dispatch(self, alert: ReconcileAlert) -> None:
        """Schedule fan-out delivery of *alert* as a background task."""
        if not self._channels or not self._deduplicator.should_send(alert):
            return
        task = asyncio.ensure_future(self._fan_out(alert))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def stop(self) -> None:
        """Wait briefly for in-flight deliveries."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _fan_out(self, alert: ReconcileAlert) -> None:
        tasks = [self._send_one(channel, alert) for channel in self._channels]
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _send_one(self, channel: NotificationChannel, alert: ReconcileAlert) -> None:
        try:
            success = await channel.send(alert)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "notification_channel_unexpected_error",
                channel=channel.channel_name,
                alert_id=alert.alert_id,
                error=str(exc),
            )
            success = False

        label = "true" if success else "false"
        notifications_total.labels(channel=channel.channel_name, success=label).inc()

        if success:
            _log.info(
                "notification_sent",
                channel=channel.channel_name,
                alert_id=alert.alert_id,
                severity=alert.severity.value,
                namespace=alert.namespace,
                workload=f"{alert.workload_kind}/{alert.workload_name}",
            )
        else:
            _log.warning("notification_failed", channel=channel.channel_name, alert_id=alert.alert_id)
