"""Application bootstrap for kubesum.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → cluster client
              → notifications → controller → drift detector → REST

Shutdown is graceful: components are stopped in reverse startup order.
Each component's stop error is caught and logged independently so that a
single failure does not prevent the rest from shutting down cleanly.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubesum.config import load_config
from kubesum.models.config import KubesumConfig
from kubesum.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


async def load_kubernetes_config() -> str:
    """Configure kubernetes-asyncio from the service account or kubeconfig.

    Returns the source used: ``in-cluster`` or ``kubeconfig``.
    """
    import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]

    try:
        k8s_config.load_incluster_config()
        return "in-cluster"
    except k8s_config.ConfigException:
        await k8s_config.load_kube_config()
        return "kubeconfig"


class KubesumApp:
    """Application root. Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already stopped)
    is safe.
    """

    def __init__(self, config: KubesumConfig | None = None) -> None:
        self.config: KubesumConfig | None = config

        self._k8s_client: object | None = None
        self._cluster: object | None = None
        self._notifications: object | None = None
        self._controller: object | None = None
        self._detector: object | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubesum starting", version=_kubesum_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Cluster client -------------------------------------------
        await self._start_cluster()

        # --- 5. Notification dispatcher ---------------------------------
        await self._start_notifications()

        # --- 6. Reconciliation controller --------------------------------
        await self._start_controller()

        # --- 7. Drift detector -------------------------------------------
        await self._start_detector()

        # --- 8. REST API ------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("kubesum started", port=self.config.api.port, api_enabled=self.config.api.enabled)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_k8s_client(self) -> None:
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            source = await load_kubernetes_config()
            self._log.info("k8s client configured", source=source)
            self._k8s_client = True
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_cluster(self) -> None:
        assert self._log is not None
        try:
            from kubesum.cluster import ClusterClient

            self._cluster = ClusterClient()
            self._log.info("cluster client started")
        except Exception as exc:
            raise _ComponentError("cluster", exc) from exc

    async def _start_notifications(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from kubesum.notifications import build_notification_dispatcher

            self._notifications = build_notification_dispatcher(config=self.config.notifications)
            self._log.info("notifications started")
        except Exception as exc:
            # Non-fatal: reconciliation works without alerts
            self._log.warning(
                "notification dispatcher failed to start; alerts will be suppressed",
                error=str(exc),
            )
            self._notifications = None

    async def _start_controller(self) -> None:
        """Full scan of opted-in workloads, then watchers and workers."""
        assert self._log is not None
        assert self.config is not None
        assert self._cluster is not None
        self._log.debug("starting controller")
        try:
            from kubesum.controller import Controller

            controller = Controller(
                cluster=self._cluster,  # type: ignore[arg-type]
                config=self.config,
                notifier=self._notifications,  # type: ignore[arg-type]
            )
            await controller.start()
            self._controller = controller
            self._log.info("controller started", workloads=len(controller.state))
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _start_detector(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._cluster is not None
        try:
            from kubesum.drift import DriftDetector
            from kubesum.fetcher import ContentFetcher
            from kubesum.graph import ReferenceGraphBuilder

            self._detector = DriftDetector(
                builder=ReferenceGraphBuilder(default_policy=self.config.checksum.default_normalization),
                fetcher=ContentFetcher(self._cluster),  # type: ignore[arg-type]
                algorithm=self.config.checksum.algorithm,
            )
            self._log.info("drift detector started")
        except Exception as exc:
            # Non-fatal: /drift answers 503
            self._log.warning("drift detector failed to start", error=str(exc))
            self._detector = None

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        if not self.config.api.enabled:
            self._log.info("rest api disabled (api.enabled=false)")
            return
        self._log.debug("starting rest api")
        try:
            import uvicorn  # type: ignore[import-untyped]

            from kubesum.api import build_app

            fastapi_app = build_app(
                controller=self._controller,
                detector=self._detector,
                cluster=self._cluster,
                config=self.config,
            )
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubesum shutting down")
        self._running = False

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_component("controller", self._controller)
        await self._stop_component("notifications", self._notifications)
        self._controller = None
        self._notifications = None
        await self._stop_k8s_client()
        log.info("kubesum stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        if self._k8s_client is None:
            return
        self._k8s_client = None
        log = self._log or get_logger("app")
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            api_client = k8s_client.ApiClient()
            await api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))


def _kubesum_version() -> str:
    from kubesum import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubesumApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app.running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
