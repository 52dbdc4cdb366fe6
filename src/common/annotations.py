"""Annotation keys and typed lookups shared across the injector components."""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import List, Mapping, Tuple

logger = logging.getLogger(__name__)

ANNOTATION_PREFIX = "dapr.io"

KEY_ENABLED = f"{ANNOTATION_PREFIX}/enabled"
KEY_APP_ID = f"{ANNOTATION_PREFIX}/app-id"
KEY_APP_PORT = f"{ANNOTATION_PREFIX}/app-port"
KEY_APP_PROTOCOL = f"{ANNOTATION_PREFIX}/app-protocol"
KEY_APP_SSL = f"{ANNOTATION_PREFIX}/app-ssl"
KEY_CONFIG = f"{ANNOTATION_PREFIX}/config"
KEY_LOG_LEVEL = f"{ANNOTATION_PREFIX}/log-level"
KEY_LOG_AS_JSON = f"{ANNOTATION_PREFIX}/log-as-json"
KEY_ENABLE_API_LOGGING = f"{ANNOTATION_PREFIX}/enable-api-logging"
KEY_APP_MAX_CONCURRENCY = f"{ANNOTATION_PREFIX}/app-max-concurrency"
KEY_ENABLE_METRICS = f"{ANNOTATION_PREFIX}/enable-metrics"
KEY_METRICS_PORT = f"{ANNOTATION_PREFIX}/metrics-port"
KEY_ENABLE_DEBUG = f"{ANNOTATION_PREFIX}/enable-debug"
KEY_DEBUG_PORT = f"{ANNOTATION_PREFIX}/debug-port"
KEY_ENABLE_PROFILING = f"{ANNOTATION_PREFIX}/enable-profiling"
KEY_API_TOKEN_SECRET = f"{ANNOTATION_PREFIX}/api-token-secret"
KEY_APP_TOKEN_SECRET = f"{ANNOTATION_PREFIX}/app-token-secret"
KEY_SIDECAR_IMAGE = f"{ANNOTATION_PREFIX}/sidecar-image"
KEY_SIDECAR_IMAGE_PULL_POLICY = f"{ANNOTATION_PREFIX}/sidecar-image-pull-policy"
KEY_PLACEMENT_ADDRESSES = f"{ANNOTATION_PREFIX}/placement-host-address"
KEY_LISTEN_ADDRESSES = f"{ANNOTATION_PREFIX}/sidecar-listen-addresses"
KEY_HTTP_MAX_REQUEST_SIZE = f"{ANNOTATION_PREFIX}/http-max-request-size"
KEY_HTTP_READ_BUFFER_SIZE = f"{ANNOTATION_PREFIX}/http-read-buffer-size"
KEY_GRACEFUL_SHUTDOWN_SECONDS = f"{ANNOTATION_PREFIX}/graceful-shutdown-seconds"
KEY_DISABLE_BUILTIN_K8S_SECRET_STORE = f"{ANNOTATION_PREFIX}/disable-builtin-k8s-secret-store"
KEY_UNIX_DOMAIN_SOCKET_PATH = f"{ANNOTATION_PREFIX}/unix-domain-socket-path"
KEY_VOLUME_MOUNTS_READ_ONLY = f"{ANNOTATION_PREFIX}/volume-mounts"
KEY_VOLUME_MOUNTS_READ_WRITE = f"{ANNOTATION_PREFIX}/volume-mounts-rw"
KEY_ENV = f"{ANNOTATION_PREFIX}/env"
KEY_CPU_LIMIT = f"{ANNOTATION_PREFIX}/sidecar-cpu-limit"
KEY_MEMORY_LIMIT = f"{ANNOTATION_PREFIX}/sidecar-memory-limit"
KEY_CPU_REQUEST = f"{ANNOTATION_PREFIX}/sidecar-cpu-request"
KEY_MEMORY_REQUEST = f"{ANNOTATION_PREFIX}/sidecar-memory-request"
KEY_LIVENESS_PROBE_DELAY = f"{ANNOTATION_PREFIX}/sidecar-liveness-probe-delay-seconds"
KEY_LIVENESS_PROBE_TIMEOUT = f"{ANNOTATION_PREFIX}/sidecar-liveness-probe-timeout-seconds"
KEY_LIVENESS_PROBE_PERIOD = f"{ANNOTATION_PREFIX}/sidecar-liveness-probe-period-seconds"
KEY_LIVENESS_PROBE_THRESHOLD = f"{ANNOTATION_PREFIX}/sidecar-liveness-probe-threshold"
KEY_READINESS_PROBE_DELAY = f"{ANNOTATION_PREFIX}/sidecar-readiness-probe-delay-seconds"
KEY_READINESS_PROBE_TIMEOUT = f"{ANNOTATION_PREFIX}/sidecar-readiness-probe-timeout-seconds"
KEY_READINESS_PROBE_PERIOD = f"{ANNOTATION_PREFIX}/sidecar-readiness-probe-period-seconds"
KEY_READINESS_PROBE_THRESHOLD = f"{ANNOTATION_PREFIX}/sidecar-readiness-probe-threshold"

_INT_RE = re.compile(r"[+-]?[0-9]+")
_DURATION_PART = re.compile(r"([0-9]+(?:\.[0-9]*)?|\.[0-9]+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def get_string(annotations: Mapping[str, str], key: str, default: str = "") -> str:
    """Return the raw annotation value, even when empty, or ``default`` if absent."""

    value = annotations.get(key)
    if value is None:
        return default
    return value


def get_non_empty_string(annotations: Mapping[str, str], key: str, default: str = "") -> str:
    """Like :func:`get_string`, but a blank value also yields ``default``."""

    value = (annotations.get(key) or "").strip()
    return value or default


def get_int(annotations: Mapping[str, str], key: str, default: int) -> int:
    value = annotations.get(key)
    if value is None:
        return default
    text = value.strip()
    if not _INT_RE.fullmatch(text):
        logger.warning("annotation %s=%r is not an integer; using default %d", key, value, default)
        return default
    return int(text)


def get_bool(annotations: Mapping[str, str], key: str, default: bool = False) -> bool:
    """Only the literal ``"true"`` enables a flag once the key is present."""

    value = annotations.get(key)
    if value is None:
        return default
    return value == "true"


def parse_duration(value: str) -> timedelta:
    """Parse plain seconds (``"5"``) or a Go-style duration (``"1m30s"``).

    Raises ``ValueError`` when the string is neither.
    """

    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    sign = 1.0
    if text[0] in "+-":
        if text[0] == "-":
            sign = -1.0
        text = text[1:]
    if text.isascii() and text.isdigit():
        return timedelta(seconds=sign * int(text))
    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * total)


def get_duration(annotations: Mapping[str, str], key: str, default: timedelta) -> timedelta:
    value = annotations.get(key)
    if value is None:
        return default
    try:
        return parse_duration(value)
    except ValueError:
        logger.warning("annotation %s=%r is not a duration; using default %s", key, value, default)
        return default


def split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def split_pairs(value: str, separator: str = ":") -> List[Tuple[str, str]]:
    """Split comma-separated ``name<sep>value`` elements on the first separator.

    Elements without the separator, or with an empty name, are dropped.
    """

    pairs: List[Tuple[str, str]] = []
    for item in split_list(value):
        name, found, rest = item.partition(separator)
        name = name.strip()
        if not found or not name:
            logger.warning("dropping malformed element %r (expected name%svalue)", item, separator)
            continue
        pairs.append((name, rest.strip()))
    return pairs


def get_list(annotations: Mapping[str, str], key: str) -> List[str]:
    return split_list(annotations.get(key) or "")


def get_pairs(annotations: Mapping[str, str], key: str, separator: str = ":") -> List[Tuple[str, str]]:
    return split_pairs(annotations.get(key) or "", separator)


__all__ = [
    "ANNOTATION_PREFIX",
    "get_bool",
    "get_duration",
    "get_int",
    "get_list",
    "get_non_empty_string",
    "get_pairs",
    "get_string",
    "parse_duration",
    "split_list",
    "split_pairs",
]
