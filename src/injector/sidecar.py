"""Assemble the daprd sidecar container for a pod.

Every setting is resolved as: annotation (when present and valid), then the
explicit config field, then :class:`~src.injector.defaults.SidecarDefaults`.
Malformed annotations never fail the build; only an unusable image reference
raises :class:`~src.injector.guards.InjectionError`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from src.common import annotations as ann

from .defaults import DEFAULTS, SidecarDefaults
from .guards import InjectionError
from .probes import build_probe, get_probe_http_handler
from .tolerations import requires_explicit_entrypoint

logger = logging.getLogger(__name__)

PULL_POLICIES = ("Always", "Never", "IfNotPresent")
DEFAULT_PULL_POLICY = "IfNotPresent"

WINDOWS_ADMIN_USER = "ContainerAdministrator"
SSL_CERT_DIR_ENV = "SSL_CERT_DIR"

API_TOKEN_ENV = "DAPR_API_TOKEN"
APP_TOKEN_ENV = "APP_API_TOKEN"
TRUST_ANCHORS_ENV = "DAPR_TRUST_ANCHORS"
CERT_CHAIN_ENV = "DAPR_CERT_CHAIN"
CERT_KEY_ENV = "DAPR_CERT_KEY"
IDENTITY_ENV = "SENTRY_LOCAL_IDENTITY"

REGISTRY_RE = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*"
    r"|\[[0-9a-fA-F:]+\])(?::[0-9]+)?$"
)
REPOSITORY_RE = re.compile(
    r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*"
    r"(?::[\w][\w.-]{0,127})?"
    r"(?:@[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,})?$"
)
QUANTITY_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[KMGTPE]i|[numkMGTPE]|[eE][+-]?\d+)?$")

_RESOURCE_ANNOTATIONS = (
    ("limits", "cpu", ann.KEY_CPU_LIMIT),
    ("limits", "memory", ann.KEY_MEMORY_LIMIT),
    ("requests", "cpu", ann.KEY_CPU_REQUEST),
    ("requests", "memory", ann.KEY_MEMORY_REQUEST),
)


@dataclass(frozen=True)
class ImplicitEntrypoint:
    """The image entrypoint runs the invocation carried entirely in ``args``."""

    args: Tuple[str, ...]

    @property
    def command(self) -> Tuple[str, ...]:
        return ()


@dataclass(frozen=True)
class ExplicitEntrypoint:
    command: Tuple[str, ...]
    args: Tuple[str, ...]


Entrypoint = Union[ImplicitEntrypoint, ExplicitEntrypoint]


@dataclass(frozen=True)
class SidecarConfig:
    app_id: str = ""
    annotations: Mapping[str, str] = field(default_factory=dict)
    sidecar_image: str = ""
    image_pull_policy: str = ""
    namespace: str = ""
    control_plane_address: str = ""
    placement_address: str = ""
    sentry_address: str = ""
    mtls_enabled: bool = False
    identity: str = ""
    socket_volume_mount: Optional[Dict[str, Any]] = None
    tolerations: Tuple[Dict[str, Any], ...] = ()
    ignore_entrypoint_tolerations: str = ""
    trust_anchors: str = ""
    cert_chain: str = ""
    cert_key: str = ""
    defaults: SidecarDefaults = DEFAULTS


@dataclass
class ContainerSpec:
    name: str
    image: str
    image_pull_policy: str
    entrypoint: Entrypoint
    env: List[Dict[str, Any]] = field(default_factory=list)
    ports: List[Dict[str, Any]] = field(default_factory=list)
    resources: Dict[str, Dict[str, str]] = field(default_factory=dict)
    liveness_probe: Optional[Dict[str, Any]] = None
    readiness_probe: Optional[Dict[str, Any]] = None
    security_context: Dict[str, Any] = field(default_factory=dict)
    volume_mounts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def command(self) -> List[str]:
        return list(self.entrypoint.command)

    @property
    def args(self) -> List[str]:
        return list(self.entrypoint.args)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "image": self.image,
            "imagePullPolicy": self.image_pull_policy,
        }
        if self.command:
            data["command"] = self.command
        data["args"] = self.args
        if self.env:
            data["env"] = [dict(entry) for entry in self.env]
        if self.ports:
            data["ports"] = [dict(port) for port in self.ports]
        if self.resources:
            data["resources"] = {kind: dict(values) for kind, values in self.resources.items()}
        if self.liveness_probe is not None:
            data["livenessProbe"] = self.liveness_probe
        if self.readiness_probe is not None:
            data["readinessProbe"] = self.readiness_probe
        if self.security_context:
            data["securityContext"] = self.security_context
        if self.volume_mounts:
            data["volumeMounts"] = [dict(mount) for mount in self.volume_mounts]
        return data


def get_pull_policy(*candidates: Optional[str]) -> str:
    """Return the first candidate that is a known pull policy, else ``IfNotPresent``."""

    for policy in candidates:
        if policy in PULL_POLICIES:
            return policy
        if policy:
            logger.warning("ignoring unknown image pull policy %r", policy)
    return DEFAULT_PULL_POLICY


def is_valid_image_reference(image: str) -> bool:
    """Docker reference grammar: ``[registry/]repository[:tag][@digest]``."""

    if not image:
        return False
    first, sep, rest = image.partition("/")
    # Like docker, only treat the first component as a registry if it looks like a host.
    if sep and ("." in first or ":" in first or first == "localhost" or first.startswith("[")):
        return bool(REGISTRY_RE.match(first)) and bool(REPOSITORY_RE.match(rest))
    return bool(REPOSITORY_RE.match(image))


def log_as_json_enabled(annotations: Mapping[str, str]) -> bool:
    return ann.get_bool(annotations, ann.KEY_LOG_AS_JSON, False)


def get_graceful_shutdown_seconds(annotations: Mapping[str, str], defaults: SidecarDefaults = DEFAULTS) -> int:
    disabled = defaults.graceful_shutdown_seconds
    # An unparseable value resolves to the negative default and is disabled below.
    duration = ann.get_duration(annotations, ann.KEY_GRACEFUL_SHUTDOWN_SECONDS, timedelta(seconds=disabled))
    seconds = duration.total_seconds()
    if seconds < 0:
        return disabled
    return int(seconds)


def parse_env_string(value: str) -> List[Dict[str, Any]]:
    """Parse ``KEY=VALUE,KEY2=VALUE2`` into container env entries."""

    return [{"name": name, "value": val} for name, val in ann.split_pairs(value, "=")]


def _resolve_image(config: SidecarConfig) -> str:
    image = (config.annotations.get(ann.KEY_SIDECAR_IMAGE) or "").strip()
    if image:
        if not is_valid_image_reference(image):
            raise InjectionError(f"invalid sidecar image reference {image!r}")
        return image
    return config.sidecar_image or config.defaults.image


def _resolve_listen_addresses(annotations: Mapping[str, str], defaults: SidecarDefaults) -> str:
    addresses = ann.get_list(annotations, ann.KEY_LISTEN_ADDRESSES)
    return ",".join(addresses) or defaults.listen_addresses


def _resolve_placement_address(config: SidecarConfig) -> str:
    return ann.get_string(config.annotations, ann.KEY_PLACEMENT_ADDRESSES, config.placement_address)


def _resolve_resources(annotations: Mapping[str, str]) -> Dict[str, Dict[str, str]]:
    resources: Dict[str, Dict[str, str]] = {}
    for kind, resource, key in _RESOURCE_ANNOTATIONS:
        value = (annotations.get(key) or "").strip()
        if not value:
            continue
        if not QUANTITY_RE.match(value):
            logger.warning("annotation %s=%r is not a resource quantity; ignoring", key, value)
            continue
        resources.setdefault(kind, {})[resource] = value
    return resources


def _probe(config: SidecarConfig, delay_key: str, timeout_key: str, period_key: str, threshold_key: str) -> Dict[str, Any]:
    defaults = config.defaults
    annotations = config.annotations
    handler = get_probe_http_handler(defaults.http_port, *defaults.health_path)
    return build_probe(
        handler,
        initial_delay_seconds=ann.get_int(annotations, delay_key, defaults.probe_delay_seconds),
        timeout_seconds=ann.get_int(annotations, timeout_key, defaults.probe_timeout_seconds),
        period_seconds=ann.get_int(annotations, period_key, defaults.probe_period_seconds),
        failure_threshold=ann.get_int(annotations, threshold_key, defaults.probe_failure_threshold),
    )


def build_daprd_args(config: SidecarConfig) -> List[str]:
    """Flag list handed to daprd, in a fixed order."""

    annotations = config.annotations
    defaults = config.defaults
    metrics_enabled = ann.get_bool(annotations, ann.KEY_ENABLE_METRICS, defaults.metrics_enabled)
    api_logging = ann.get_bool(annotations, ann.KEY_ENABLE_API_LOGGING, False)
    disable_secret_store = ann.get_bool(annotations, ann.KEY_DISABLE_BUILTIN_K8S_SECRET_STORE, False)

    args = [
        "--mode", defaults.mode,
        "--dapr-http-port", str(defaults.http_port),
        "--dapr-grpc-port", str(defaults.api_grpc_port),
        "--dapr-internal-grpc-port", str(defaults.internal_grpc_port),
        "--dapr-listen-addresses", _resolve_listen_addresses(annotations, defaults),
        "--dapr-public-port", str(defaults.public_port),
        "--app-port", ann.get_string(annotations, ann.KEY_APP_PORT),
        "--app-id", config.app_id,
        "--control-plane-address", config.control_plane_address,
        "--app-protocol", ann.get_non_empty_string(annotations, ann.KEY_APP_PROTOCOL, defaults.app_protocol),
        "--placement-host-address", _resolve_placement_address(config),
        "--config", ann.get_string(annotations, ann.KEY_CONFIG),
        "--log-level", ann.get_non_empty_string(annotations, ann.KEY_LOG_LEVEL, defaults.log_level),
        "--app-max-concurrency", str(ann.get_int(annotations, ann.KEY_APP_MAX_CONCURRENCY, defaults.app_max_concurrency)),
        "--sentry-address", config.sentry_address,
        f"--enable-metrics={str(metrics_enabled).lower()}",
        "--metrics-port", str(ann.get_int(annotations, ann.KEY_METRICS_PORT, defaults.metrics_port)),
        "--dapr-http-max-request-size",
        str(ann.get_int(annotations, ann.KEY_HTTP_MAX_REQUEST_SIZE, defaults.http_max_request_size)),
        "--dapr-http-read-buffer-size",
        str(ann.get_int(annotations, ann.KEY_HTTP_READ_BUFFER_SIZE, defaults.http_read_buffer_size)),
        "--dapr-graceful-shutdown-seconds", str(get_graceful_shutdown_seconds(annotations, defaults)),
        f"--enable-api-logging={str(api_logging).lower()}",
        f"--disable-builtin-k8s-secret-store={str(disable_secret_store).lower()}",
    ]
    if log_as_json_enabled(annotations):
        args.append("--log-as-json")
    if ann.get_bool(annotations, ann.KEY_APP_SSL, False):
        args.append("--app-ssl")
    if ann.get_bool(annotations, ann.KEY_ENABLE_PROFILING, False):
        args.append("--enable-profiling")
    if config.mtls_enabled:
        args.append("--enable-mtls")
    return args


def build_entrypoint(config: SidecarConfig) -> Entrypoint:
    defaults = config.defaults
    invocation = [defaults.daprd_binary, *build_daprd_args(config)]
    if ann.get_bool(config.annotations, ann.KEY_ENABLE_DEBUG, False):
        debug_port = ann.get_int(config.annotations, ann.KEY_DEBUG_PORT, defaults.debug_port)
        invocation = [
            defaults.debugger_binary,
            f"--listen=:{debug_port}",
            "--accept-multiclient",
            "--headless=true",
            "--log",
            "--api-version=2",
            "exec",
            defaults.daprd_binary,
            "--",
            *invocation[1:],
        ]
    if requires_explicit_entrypoint(config.tolerations, config.ignore_entrypoint_tolerations):
        return ExplicitEntrypoint(command=(invocation[0],), args=tuple(invocation[1:]))
    return ImplicitEntrypoint(args=tuple(invocation))


def _build_env(config: SidecarConfig, user_env: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    annotations = config.annotations
    env: List[Dict[str, Any]] = [
        {"name": "NAMESPACE", "value": config.namespace},
        {"name": "POD_NAME", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
    ]
    env.extend(user_env)
    env.extend(
        [
            {"name": TRUST_ANCHORS_ENV, "value": config.trust_anchors},
            {"name": CERT_CHAIN_ENV, "value": config.cert_chain},
            {"name": CERT_KEY_ENV, "value": config.cert_key},
            {"name": IDENTITY_ENV, "value": config.identity},
        ]
    )
    for env_name, key in ((API_TOKEN_ENV, ann.KEY_API_TOKEN_SECRET), (APP_TOKEN_ENV, ann.KEY_APP_TOKEN_SECRET)):
        secret = ann.get_string(annotations, key)
        if secret:
            env.append(
                {
                    "name": env_name,
                    "valueFrom": {"secretKeyRef": {"name": secret, "key": config.defaults.token_secret_key}},
                }
            )
    return env


def _build_security_context(user_env: List[Dict[str, Any]]) -> Dict[str, Any]:
    context: Dict[str, Any] = {"allowPrivilegeEscalation": False}
    # Windows containers need administrator rights to install certificates from SSL_CERT_DIR.
    if any(entry["name"] == SSL_CERT_DIR_ENV for entry in user_env):
        context["windowsOptions"] = {"runAsUserName": WINDOWS_ADMIN_USER}
    return context


def build_sidecar_container(config: SidecarConfig) -> ContainerSpec:
    annotations = config.annotations
    defaults = config.defaults
    image = _resolve_image(config)
    pull_policy = get_pull_policy(
        ann.get_non_empty_string(annotations, ann.KEY_SIDECAR_IMAGE_PULL_POLICY),
        config.image_pull_policy,
    )
    user_env = parse_env_string(ann.get_string(annotations, ann.KEY_ENV))

    container = ContainerSpec(
        name=defaults.container_name,
        image=image,
        image_pull_policy=pull_policy,
        entrypoint=build_entrypoint(config),
        env=_build_env(config, user_env),
        ports=[
            {"name": "dapr-http", "containerPort": defaults.http_port},
            {"name": "dapr-grpc", "containerPort": defaults.api_grpc_port},
            {"name": "dapr-internal", "containerPort": defaults.internal_grpc_port},
            {
                "name": "dapr-metrics",
                "containerPort": ann.get_int(annotations, ann.KEY_METRICS_PORT, defaults.metrics_port),
            },
        ],
        resources=_resolve_resources(annotations),
        liveness_probe=_probe(
            config,
            ann.KEY_LIVENESS_PROBE_DELAY,
            ann.KEY_LIVENESS_PROBE_TIMEOUT,
            ann.KEY_LIVENESS_PROBE_PERIOD,
            ann.KEY_LIVENESS_PROBE_THRESHOLD,
        ),
        readiness_probe=_probe(
            config,
            ann.KEY_READINESS_PROBE_DELAY,
            ann.KEY_READINESS_PROBE_TIMEOUT,
            ann.KEY_READINESS_PROBE_PERIOD,
            ann.KEY_READINESS_PROBE_THRESHOLD,
        ),
        security_context=_build_security_context(user_env),
    )
    if config.socket_volume_mount is not None:
        container.volume_mounts = [dict(config.socket_volume_mount)]
    logger.debug("built sidecar for app %s (explicit entrypoint: %s)", config.app_id, bool(container.command))
    return container


__all__ = [
    "ContainerSpec",
    "Entrypoint",
    "ExplicitEntrypoint",
    "ImplicitEntrypoint",
    "SidecarConfig",
    "build_daprd_args",
    "build_entrypoint",
    "build_sidecar_container",
    "get_graceful_shutdown_seconds",
    "get_pull_policy",
    "is_valid_image_reference",
    "log_as_json_enabled",
    "parse_env_string",
]
