"""kubesum: checksum-driven rollout reconciler for Secret/ConfigMap consumers."""

__version__ = "0.1.0"
