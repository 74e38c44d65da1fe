"""Shared fixtures for kubesum integration tests.

Wires a real Controller (work queue, reconciler, state, notifications) to
the in-memory FakeCluster so tests can drive full watch -> reconcile ->
patch cycles without touching a real Kubernetes cluster.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import pytest

from kubesum.controller.manager import Controller
from kubesum.models.alerts import ReconcileAlert
from kubesum.models.config import KubesumConfig
from kubesum.models.sources import ObjectKind
from kubesum.notifications.manager import AlertDeduplicator, NotificationChannel, NotificationDispatcher
from tests.conftest import FakeCluster

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RecordingChannel(NotificationChannel):
    """Notification channel that keeps every alert it receives."""

    def __init__(self) -> None:
        self.alerts: list[ReconcileAlert] = []

    @property
    def channel_name(self) -> str:
        return "recording"

    async def send(self, alert: ReconcileAlert) -> bool:
        self.alerts.append(alert)
        return True


async def eventually(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll *predicate* until it holds or *timeout* elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)


async def source_changed(controller: Controller, kind: ObjectKind, name: str, namespace: str = "default") -> None:
    """Deliver a MODIFIED watch event for a source object."""
    event = {"metadata": {"namespace": namespace, "name": name}}
    await controller.handle_source_event(kind, "MODIFIED", event)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
async def controller(
    cluster: FakeCluster,
    config: KubesumConfig,
    channel: RecordingChannel,
) -> AsyncIterator[Controller]:
    """Controller that is constructed but not started; stopped on teardown."""
    notifier = NotificationDispatcher([channel], deduplicator=AlertDeduplicator())
    ctl = Controller(cluster, config, notifier=notifier)  # type: ignore[arg-type]
    yield ctl
    await ctl.stop()
    await notifier.stop()
