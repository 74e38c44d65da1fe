"""Configuration loading from environment variables."""

from __future__ import annotations

import hashlib
import os
import re

from kubesum.models.config import (
    APIConfig,
    ChecksumConfig,
    ControllerConfig,
    KubesumConfig,
    LogConfig,
    NotificationConfig,
    WatchConfig,
)
from kubesum.models.sources import NormalizationPolicy
from kubesum.models.workloads import WorkloadKind

_INTERVAL_UNITS = {"s": 1, "m": 60, "h": 3600}


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBESUM_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _env_list(key: str, default: str = "") -> list[str]:
    return [item.strip() for item in _env(key, default).split(",") if item.strip()]


def parse_interval(value: str) -> int:
    """Parse ``30s``, ``5m`` or ``1h`` into seconds."""
    match = re.match(r"^([0-9]+)(s|m|h)$", value)
    if not match:
        raise ValueError(f"Invalid interval format: {value}")
    return int(match.group(1)) * _INTERVAL_UNITS[match.group(2)]


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_patch_mode(value: str) -> str:
    if value.lower() not in ("env", "annotation"):
        raise ValueError(f"Invalid patch mode: {value}. Must be 'env' or 'annotation'")
    return value.lower()


def _validate_algorithm(value: str) -> str:
    if value.lower() not in hashlib.algorithms_guaranteed or value.lower().startswith("shake"):
        raise ValueError(f"Unsupported hash algorithm: {value}")
    return value.lower()


def _parse_kinds(values: list[str]) -> list[WorkloadKind]:
    kinds = [WorkloadKind(v) for v in values]
    if not kinds:
        raise ValueError("At least one workload kind must be watched")
    return kinds


def load_config() -> KubesumConfig:
    """Load configuration from KUBESUM_* environment variables."""
    return KubesumConfig(
        watch=WatchConfig(
            namespaces=_env_list("NAMESPACES"),
            workload_kinds=_parse_kinds(_env_list("WORKLOAD_KINDS", "Deployment,DeploymentConfig")),
            opt_in_selector=_env("OPT_IN_SELECTOR", "kubesum.io/enabled=true"),
        ),
        controller=ControllerConfig(
            resync_interval_seconds=max(parse_interval(_env("RESYNC_INTERVAL", "5m")), 10),
            workers=_env_int("WORKERS", 4, min_val=1, max_val=64),
            max_source_failures=_env_int("MAX_SOURCE_FAILURES", 5, min_val=1, max_val=100),
            backoff_base_seconds=_env_float("BACKOFF_BASE", 1.0),
            backoff_max_seconds=_env_float("BACKOFF_MAX", 60.0),
            patch_mode=_validate_patch_mode(_env("PATCH_MODE", "env")),
        ),
        checksum=ChecksumConfig(
            algorithm=_validate_algorithm(_env("HASH_ALGORITHM", "sha256")),
            default_normalization=NormalizationPolicy(_env("DEFAULT_NORMALIZATION", "preserve")),
        ),
        notifications=NotificationConfig(
            webhook_secret_ref=_env("NOTIFICATIONS_WEBHOOK_SECRET_REF", ""),
        ),
        api=APIConfig(
            enabled=_env_bool("API_ENABLED", True),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
