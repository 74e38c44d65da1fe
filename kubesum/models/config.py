"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

from kubesum.models.sources import NormalizationPolicy
from kubesum.models.workloads import WorkloadKind


@dataclass
class WatchConfig:
    """Which workloads participate in checksum tracking."""

    namespaces: list[str] = field(default_factory=list)  # empty -> all namespaces
    workload_kinds: list[WorkloadKind] = field(
        default_factory=lambda: [WorkloadKind.DEPLOYMENT, WorkloadKind.DEPLOYMENT_CONFIG]
    )
    opt_in_selector: str = "kubesum.io/enabled=true"


@dataclass
class ControllerConfig:
    """Reconciliation controller configuration."""

    resync_interval_seconds: int = 300
    workers: int = 4
    max_source_failures: int = 5
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    patch_mode: str = "env"  # env | annotation


@dataclass
class ChecksumConfig:
    """Checksum engine configuration."""

    algorithm: str = "sha256"
    default_normalization: NormalizationPolicy = NormalizationPolicy.PRESERVE


@dataclass
class NotificationConfig:
    """Notification system configuration."""

    webhook_secret_ref: str = ""


@dataclass
class APIConfig:
    """REST API configuration."""

    enabled: bool = True
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubesumConfig:
    """Top-level kubesum configuration."""

    watch: WatchConfig = field(default_factory=WatchConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    checksum: ChecksumConfig = field(default_factory=ChecksumConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
