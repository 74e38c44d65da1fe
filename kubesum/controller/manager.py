"""Reconciliation Controller.

Owns the continuous control loop:

    watch events / resync timer -> WorkQueue -> Reconciler -> patch

Per-workload failures are isolated: each error type gets its own policy
(retry with backoff, surface and alert, or re-diff) and nothing a single
workload does can stop the loop.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

from kubesum.cluster.client import ClusterClient, object_metadata
from kubesum.cluster.watcher import ResourceWatcher
from kubesum.controller.queue import WorkQueue
from kubesum.controller.reconciler import Reconciler
from kubesum.controller.selector import LabelSelector
from kubesum.controller.state import ReconciliationState
from kubesum.errors import (
    AttemptSupersededError,
    MalformedReferenceError,
    PatchConflictError,
    SourceUnavailableError,
    WorkloadNotFoundError,
)
from kubesum.fetcher.content_fetcher import ContentFetcher
from kubesum.graph.builder import ReferenceGraphBuilder
from kubesum.models.alerts import ReconcileAlert, Severity
from kubesum.models.config import KubesumConfig
from kubesum.models.sources import ObjectKind, SourceObjectRef
from kubesum.models.workloads import WorkloadKind, WorkloadRef
from kubesum.notifications.manager import NotificationDispatcher
from kubesum.observability.logging import get_logger
from kubesum.observability.metrics import reconcile_errors_total, reconciles_total

_log = get_logger("controller")


def backoff_delay(failures: int, base: float, cap: float) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... capped at *cap*."""
    if failures <= 0:
        return 0.0
    return float(min(base * (2 ** (failures - 1)), cap))


class Controller:
    """Checksum reconciliation controller for all opted-in workloads."""

    def __init__(
        self,
        cluster: ClusterClient,
        config: KubesumConfig,
        state: ReconciliationState | None = None,
        fetcher: ContentFetcher | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self.config = config
        self.state = state or ReconciliationState()
        self._cluster = cluster
        self._notifier = notifier
        self._selector = LabelSelector.parse(config.watch.opt_in_selector)
        self._builder = ReferenceGraphBuilder(default_policy=config.checksum.default_normalization)
        self._fetcher = fetcher or ContentFetcher(cluster)
        self._reconciler = Reconciler(
            cluster=cluster,
            fetcher=self._fetcher,
            builder=self._builder,
            state=self.state,
            selector=self._selector,
            patch_mode=config.controller.patch_mode,
            algorithm=config.checksum.algorithm,
        )
        self.queue = WorkQueue(process_fn=self.process, workers=config.controller.workers)
        self._watchers: list[ResourceWatcher] = []
        self._resync_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, watch: bool = True) -> None:
        """Full scan, then start workers, watchers and the resync timer."""
        await self.queue.start()
        await self.resync()
        if watch:
            self._watchers = self._build_watchers()
            for watcher in self._watchers:
                await watcher.start()
        self._resync_task = asyncio.create_task(self._resync_loop(), name="resync-timer")
        self._running = True
        _log.info(
            "controller_started",
            workloads=len(self.state),
            watchers=len(self._watchers),
            resync_interval=self.config.controller.resync_interval_seconds,
        )

    async def stop(self) -> None:
        self._running = False
        if self._resync_task is not None:
            self._resync_task.cancel()
            await asyncio.gather(self._resync_task, return_exceptions=True)
            self._resync_task = None
        for watcher in self._watchers:
            await watcher.stop()
        self._watchers = []
        await self.queue.stop()
        _log.info("controller_stopped")

    async def _resync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.controller.resync_interval_seconds)
            try:
                await self.resync()
            except Exception as exc:
                _log.warning("resync_failed", error=str(exc))

    async def resync(self) -> None:
        """Relist opted-in workloads, forget vanished ones and enqueue the rest."""
        watch = self.config.watch
        listed = await self._cluster.list_tracked_workloads(
            watch.workload_kinds, watch.namespaces, watch.opt_in_selector
        )
        current = {ref for ref, _obj in listed}
        for ref in self.state.known():
            if ref not in current:
                self._forget(ref)
        for ref in sorted(current):
            self.state.ensure(ref)
            self.queue.enqueue(ref)
        _log.debug("resync_enqueued", workloads=len(current))

    def reconcile_now(self, ref: WorkloadRef) -> None:
        """Manual trigger (REST API)."""
        self.queue.enqueue(ref)

    # ------------------------------------------------------------------
    # Watch event routing
    # ------------------------------------------------------------------

    def _build_watchers(self) -> list[ResourceWatcher]:
        watchers = []
        namespaces: list[str | None] = list(self.config.watch.namespaces) or [None]
        for namespace in namespaces:
            scope = namespace or "all"
            for kind in self.config.watch.workload_kinds:
                list_fn, kwargs = self._cluster.workload_list_fn(kind, namespace, self.config.watch.opt_in_selector)
                watchers.append(
                    ResourceWatcher(
                        name=f"{kind.value.lower()}-{scope}",
                        list_fn=list_fn,
                        list_kwargs=kwargs,
                        handler=self._workload_handler(kind),
                    )
                )
            for source_kind in ObjectKind:
                list_fn, kwargs = self._cluster.source_list_fn(source_kind, namespace)
                watchers.append(
                    ResourceWatcher(
                        name=f"{source_kind.value.lower()}-{scope}",
                        list_fn=list_fn,
                        list_kwargs=kwargs,
                        handler=self._source_handler(source_kind),
                        on_relist=self._on_source_relist,
                    )
                )
        return watchers

    def _workload_handler(self, kind: WorkloadKind) -> Any:
        async def _handle(event_type: str, obj: Any) -> None:
            await self.handle_workload_event(kind, event_type, obj)

        return _handle

    def _source_handler(self, kind: ObjectKind) -> Any:
        async def _handle(event_type: str, obj: Any) -> None:
            await self.handle_source_event(kind, event_type, obj)

        return _handle

    async def handle_workload_event(self, kind: WorkloadKind, event_type: str, obj: Any) -> None:
        namespace, name, _rv = object_metadata(obj)
        if not name:
            return
        ref = WorkloadRef(kind=kind, namespace=namespace, name=name)
        if event_type == "DELETED":
            self._forget(ref)
            return
        self.state.ensure(ref)
        self.queue.enqueue(ref)

    async def handle_source_event(self, kind: ObjectKind, event_type: str, obj: Any) -> None:
        namespace, name, _rv = object_metadata(obj)
        source = SourceObjectRef(kind=kind, namespace=namespace, name=name)
        for ref in sorted(self.state.workloads_for_source(source)):
            _log.debug("source_event_routed", source=str(source), event_type=event_type, workload=str(ref))
            self.queue.enqueue(ref)

    async def _on_source_relist(self, _items: list[Any]) -> None:
        # Source events may have been missed while disconnected.
        for ref in self.state.known():
            self.queue.enqueue(ref)

    def _forget(self, ref: WorkloadRef) -> None:
        self.state.forget(ref)
        self.queue.discard(ref)
        _log.info("workload_forgotten", workload=str(ref))

    # ------------------------------------------------------------------
    # Per-workload processing and error policy
    # ------------------------------------------------------------------

    async def process(self, ref: WorkloadRef, is_current: Any) -> None:
        """Run one reconcile attempt for *ref* and apply the error policy."""
        ctl = self.config.controller
        try:
            result = await self._reconciler.reconcile(ref, is_current)
        except AttemptSupersededError:
            reconciles_total.labels(outcome="superseded").inc()
            _log.debug("reconcile_superseded", workload=str(ref))
            return
        except WorkloadNotFoundError:
            self._forget(ref)
            return
        except MalformedReferenceError as exc:
            reconciles_total.labels(outcome="error").inc()
            reconcile_errors_total.labels(error="malformed_reference").inc()
            failures = self.state.record_failure(ref, exc)
            _log.error(
                "malformed_reference",
                workload=str(ref),
                source=str(exc.source),
                field_path=exc.field_path,
            )
            self._alert(ref, Severity.ERROR, "MalformedReference", str(exc), failures)
            return
        except SourceUnavailableError as exc:
            reconciles_total.labels(outcome="error").inc()
            reconcile_errors_total.labels(error="source_unavailable").inc()
            failures = self.state.record_failure(ref, exc)
            delay = backoff_delay(failures, ctl.backoff_base_seconds, ctl.backoff_max_seconds)
            if failures >= ctl.max_source_failures:
                _log.error(
                    "source_unavailable_surfaced",
                    workload=str(ref),
                    source=str(exc.source),
                    failures=failures,
                    retry_in=delay,
                )
                if failures == ctl.max_source_failures:
                    self._alert(ref, Severity.ERROR, "SourceUnavailable", str(exc), failures)
            else:
                _log.warning(
                    "source_unavailable_retry",
                    workload=str(ref),
                    source=str(exc.source),
                    failures=failures,
                    retry_in=delay,
                )
            self.queue.enqueue_after(ref, delay)
            return
        except PatchConflictError as exc:
            reconciles_total.labels(outcome="error").inc()
            reconcile_errors_total.labels(error="patch_conflict").inc()
            failures = self.state.record_failure(ref, exc)
            delay = backoff_delay(failures, ctl.backoff_base_seconds, ctl.backoff_max_seconds)
            _log.warning("patch_conflict_retry", workload=str(ref), failures=failures, retry_in=delay)
            self.queue.enqueue_after(ref, delay)
            return
        except Exception as exc:
            reconciles_total.labels(outcome="error").inc()
            reconcile_errors_total.labels(error=type(exc).__name__).inc()
            failures = self.state.record_failure(ref, exc)
            delay = backoff_delay(failures, ctl.backoff_base_seconds, ctl.backoff_max_seconds)
            _log.error("reconcile_failed", workload=str(ref), error=str(exc), failures=failures, retry_in=delay)
            self.queue.enqueue_after(ref, delay)
            return

        reconciles_total.labels(outcome=result.outcome.value).inc()

    def _alert(self, ref: WorkloadRef, severity: Severity, reason: str, summary: str, failures: int) -> None:
        if self._notifier is None:
            return
        self._notifier.dispatch(
            ReconcileAlert(
                severity=severity,
                workload_kind=ref.kind.value,
                workload_name=ref.name,
                namespace=ref.namespace,
                reason=reason,
                summary=summary,
                detected_at=datetime.now(tz=UTC),
                failure_count=failures,
            )
        )
