from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class SidecarDefaults:
    """Hard-coded fallbacks used when neither annotations nor config set a value."""

    container_name: str = "daprd"
    image: str = "docker.io/daprio/daprd:latest"
    daprd_binary: str = "/daprd"
    debugger_binary: str = "/dlv"
    mode: str = "kubernetes"
    http_port: int = 3500
    api_grpc_port: int = 50001
    internal_grpc_port: int = 50002
    public_port: int = 3501
    metrics_port: int = 9090
    debug_port: int = 40000
    listen_addresses: str = "[::1],127.0.0.1"
    app_protocol: str = "http"
    log_level: str = "info"
    app_max_concurrency: int = -1
    http_max_request_size: int = -1
    http_read_buffer_size: int = -1
    graceful_shutdown_seconds: int = -1
    metrics_enabled: bool = True
    health_path: Tuple[str, ...] = ("v1.0", "healthz")
    probe_delay_seconds: int = 3
    probe_timeout_seconds: int = 3
    probe_period_seconds: int = 6
    probe_failure_threshold: int = 3
    socket_volume_name: str = "dapr-unix-domain-socket"
    token_secret_key: str = "token"


DEFAULTS = SidecarDefaults()


__all__ = ["DEFAULTS", "SidecarDefaults"]
