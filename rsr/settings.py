from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("RSR_DB_PATH", "rsr.db")
    docker_network: str = os.getenv("RSR_DOCKER_NETWORK", "rsr")
    api_url: str = os.getenv("RSR_API_URL", "http://localhost:8000")

    # Registry server shape
    catalog_label_key: str = os.getenv("RSR_CATALOG_LABEL_KEY", "olm.catalogSource")
    grpc_port: int = _env_int("RSR_GRPC_PORT", 50051)
    readiness_delay_s: int = _env_int("RSR_READINESS_DELAY_S", 5)
    liveness_delay_s: int = _env_int("RSR_LIVENESS_DELAY_S", 10)

    # Digest probing
    probe_attempts: int = _env_int("RSR_PROBE_ATTEMPTS", 10)
    probe_backoff_s: float = _env_float("RSR_PROBE_BACKOFF_S", 10.0)

    # Pull the image before every workload create, even for non-probe workloads.
    always_pull: bool = _env_bool("RSR_ALWAYS_PULL", False)


settings = Settings()
