"""Cluster API access for kubesum.

Submodules:
    client   -- ClusterClient: source reads, workload list/get/patch.
    watcher  -- ResourceWatcher: reconnecting watch loop with relist recovery.
"""

from kubesum.cluster.client import ClusterClient, decode_source, object_metadata
from kubesum.cluster.watcher import ResourceWatcher

__all__ = ["ClusterClient", "ResourceWatcher", "decode_source", "object_metadata"]
