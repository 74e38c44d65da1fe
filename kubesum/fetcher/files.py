"""Filesystem source reader for offline audits.

Layout, one file per key holding the original (unencoded) bytes::

    <root>/<namespace>/configmap/<name>/<key>
    <root>/<namespace>/secret/<name>/<key>
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from kubesum.models.sources import SourceObject, SourceObjectRef

_DIR_NAMES = {"ConfigMap": "configmap", "Secret": "secret"}


class FileSourceReader:
    """Reads source objects from a directory tree instead of the cluster."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _object_dir(self, ref: SourceObjectRef) -> Path:
        return self._root / ref.namespace / _DIR_NAMES[ref.kind.value] / ref.name

    async def read_source(self, ref: SourceObjectRef) -> SourceObject | None:
        return await asyncio.to_thread(self._read_sync, ref)

    def _read_sync(self, ref: SourceObjectRef) -> SourceObject | None:
        directory = self._object_dir(ref)
        if not directory.is_dir():
            return None
        data = {path.name: path.read_bytes() for path in sorted(directory.iterdir()) if path.is_file()}
        return SourceObject(kind=ref.kind, namespace=ref.namespace, name=ref.name, data=data)
