"""Generic JSON webhook notification channel for kubesum.

Posts ReconcileAlert data as a JSON body to any configured HTTP endpoint.
"""

from __future__ import annotations

import httpx
import structlog

from kubesum.models.alerts import ReconcileAlert
from kubesum.notifications.manager import NotificationChannel

_log = structlog.get_logger(component="notifications.webhook")


class WebhookNotificationChannel(NotificationChannel):
    """Delivers alerts by POSTing a JSON payload to a configurable URL.

    Args:
        url:     Full endpoint URL.
        headers: Optional extra headers (e.g. Authorization).
        timeout: HTTP request timeout in seconds. Defaults to 10.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not url:
            raise ValueError("Webhook url must not be empty")
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def channel_name(self) -> str:
        return "webhook"

    async def send(self, alert: ReconcileAlert) -> bool:
        """POST *alert* as JSON; True on a 2xx response."""
        payload = build_payload(alert)
        request_headers = {"Content-Type": "application/json", **self._headers}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload, headers=request_headers)
                if response.is_success:
                    return True
                _log.warning(
                    "webhook_non_2xx_response",
                    status_code=response.status_code,
                    body=response.text[:200],
                    alert_id=alert.alert_id,
                )
                return False
        except httpx.TimeoutException:
            _log.warning("webhook_request_timeout", alert_id=alert.alert_id, url=self._url)
            return False
        except httpx.HTTPError as exc:
            _log.warning("webhook_http_error", error=str(exc), alert_id=alert.alert_id)
            return False


def build_payload(alert: ReconcileAlert) -> dict[str, object]:
    """Serialise *alert* to a plain dict for JSON encoding."""
    return {
        "alert_id": alert.alert_id,
        "severity": alert.severity.value,
        "workload": f"{alert.workload_kind}/{alert.namespace}/{alert.workload_name}",
        "namespace": alert.namespace,
        "reason": alert.reason,
        "summary": alert.summary,
        "detected_at": alert.detected_at.isoformat(),
        "failure_count": alert.failure_count,
    }
