"""Watch-stream loop with reconnect, exponential back-off and relist recovery.

One ResourceWatcher streams one list endpoint. On start, and whenever the
server reports the resourceVersion as expired (410 Gone), it relists and
hands the full item list to ``on_relist`` so the consumer can catch up on
events it missed while disconnected.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any

from kubernetes_asyncio import watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from kubesum.cluster.client import ListFn, object_metadata
from kubesum.observability.logging import get_logger

EventHandler = Callable[[str, Any], Awaitable[None]]
RelistHandler = Callable[[list[Any]], Awaitable[None]]

_WATCH_TIMEOUT_SECONDS = 300
_BACKOFF_MAX_SECONDS = 30.0


def _list_resource_version(result: Any) -> str | None:
    if isinstance(result, dict):
        return (result.get("metadata") or {}).get("resourceVersion")
    metadata = getattr(result, "metadata", None)
    return getattr(metadata, "resource_version", None)


def _list_items(result: Any) -> list[Any]:
    if isinstance(result, dict):
        return list(result.get("items") or [])
    return list(getattr(result, "items", None) or [])


class ResourceWatcher:
    """Streams watch events for one list endpoint into an async handler."""

    def __init__(
        self,
        name: str,
        list_fn: ListFn,
        list_kwargs: dict[str, Any],
        handler: EventHandler,
        on_relist: RelistHandler | None = None,
    ) -> None:
        self.name = name
        self._list_fn = list_fn
        self._list_kwargs = list_kwargs
        self._handler = handler
        self._on_relist = on_relist
        self._task: asyncio.Task[None] | None = None
        self._watch: Any = None
        self._log = get_logger(f"cluster.watcher.{name}")

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name=f"watch-{self.name}")

    async def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _relist(self) -> str | None:
        result = await self._list_fn(**self._list_kwargs)
        items = _list_items(result)
        self._log.info("watch_relisted", items=len(items))
        if self._on_relist is not None:
            await self._on_relist(items)
        return _list_resource_version(result)

    async def _run(self) -> None:
        resource_version: str | None = None
        backoff = 1.0

        while True:
            try:
                if resource_version is None:
                    resource_version = await self._relist()

                self._watch = watch.Watch()
                async with self._watch.stream(
                    self._list_fn,
                    resource_version=resource_version,
                    timeout_seconds=_WATCH_TIMEOUT_SECONDS,
                    **self._list_kwargs,
                ) as stream:
                    async for event in stream:
                        event_type = str(event.get("type", ""))
                        obj = event.get("object")
                        if event_type == "ERROR":
                            code = obj.get("code") if isinstance(obj, dict) else getattr(obj, "code", None)
                            if code == 410:
                                self._log.info("watch_resource_version_expired")
                                resource_version = None
                                break
                            self._log.warning("watch_error_event", code=code)
                            continue
                        _ns, _name, rv = object_metadata(obj)
                        if rv:
                            resource_version = rv
                        await self._handler(event_type, obj)
                        backoff = 1.0
            except asyncio.CancelledError:
                raise
            except ApiException as exc:
                if exc.status == 410:
                    self._log.info("watch_resource_version_expired")
                    resource_version = None
                    continue
                self._log.warning("watch_api_error", status=exc.status, retry_in=round(backoff, 1))
                await asyncio.sleep(backoff * (0.5 + random.random()))  # noqa: S311
                backoff = min(backoff * 2, _BACKOFF_MAX_SECONDS)
            except Exception as exc:
                self._log.warning("watch_stream_error", error=str(exc), retry_in=round(backoff, 1))
                await asyncio.sleep(backoff * (0.5 + random.random()))  # noqa: S311
                backoff = min(backoff * 2, _BACKOFF_MAX_SECONDS)
